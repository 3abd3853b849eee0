"""
Credit Service Factory

Factory for creating CreditService and LifecycleCoordinator with real dependencies.
This is the ONLY module that imports concrete implementations.
"""

import logging
from typing import Optional

from core.config_manager import ConfigManager
from core.postgres_client import PostgresClientWrapper

from .credit_repository import CreditRepository
from .credit_service import CreditService
from .customer_repository import CustomerMirrorRepository
from .lifecycle_coordinator import LifecycleCoordinator

logger = logging.getLogger(__name__)


def create_credit_service(
    config: Optional[ConfigManager] = None,
    event_bus=None,
    db: Optional[PostgresClientWrapper] = None,
) -> CreditService:
    """
    Create CreditService with all real dependencies

    Args:
        config: Optional config manager (creates default if not provided)
        event_bus: Optional event bus for event publishing
        db: Optional shared PostgreSQL pool wrapper

    Returns:
        CreditService backed by the PostgreSQL repository
    """
    # Initialize config if not provided
    if config is None:
        config = ConfigManager("credit_service")

    repository = CreditRepository(db=db, config=config)

    return CreditService(
        repository=repository,
        event_bus=event_bus,
    )


def create_lifecycle_coordinator(
    credit_service: CreditService,
    config: Optional[ConfigManager] = None,
    db: Optional[PostgresClientWrapper] = None,
) -> LifecycleCoordinator:
    """
    Create LifecycleCoordinator reading the customer mirror from PostgreSQL

    Args:
        credit_service: Ledger the coordinator drives
        config: Optional config manager (creates default if not provided)
        db: Optional shared PostgreSQL pool wrapper

    Returns:
        LifecycleCoordinator instance
    """
    if config is None:
        config = ConfigManager("credit_service")

    customer_mirror = None
    try:
        customer_mirror = CustomerMirrorRepository(db=db, config=config)
        logger.info(f"✅ Customer mirror configured: {customer_mirror.table}")
    except ValueError as e:
        logger.warning(f"⚠️ Customer mirror disabled: {e}")

    return LifecycleCoordinator(
        credit_service=credit_service,
        customer_mirror=customer_mirror,
    )


__all__ = ["create_credit_service", "create_lifecycle_coordinator"]
