#!/usr/bin/env python3
"""Service-level configuration

Settings owned by a single microservice process: HTTP port, feature switches
for the event bus and scheduler, and the location of the mirrored customer
records the monthly refresh job reads.
"""
import os
from dataclasses import dataclass

def _bool(val: str) -> bool:
    return val.lower() == "true"

def _int(val: str, default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default


@dataclass
class ServiceConfig:
    """Per-service runtime settings"""

    service_name: str = "credit_service"
    service_host: str = "0.0.0.0"
    service_port: int = 8229
    debug: bool = False
    log_level: str = "INFO"

    # ===========================================
    # Event bus
    # ===========================================
    nats_enabled: bool = True

    # ===========================================
    # Scheduled jobs
    # ===========================================
    scheduler_enabled: bool = True
    # Monthly gift refresh, 1st of every month at 00:00 UTC
    monthly_refresh_cron: str = "0 0 1 * *"

    # ===========================================
    # Mirrored subscription-provider records
    # ===========================================
    customer_mirror_table: str = "revenuecat.customers"

    @classmethod
    def from_env(cls, service_name: str = "credit_service") -> 'ServiceConfig':
        """Load service configuration from environment variables"""
        env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
        return cls(
            service_name=service_name,
            service_host=os.getenv("SERVICE_HOST", "0.0.0.0"),
            service_port=_int(os.getenv("SERVICE_PORT", "8229"), 8229),
            debug=_bool(os.getenv("DEBUG", "true" if env == "development" else "false")),
            log_level=os.getenv("LOG_LEVEL", "DEBUG" if env == "development" else "INFO"),
            nats_enabled=_bool(os.getenv("NATS_ENABLED", "true")),
            scheduler_enabled=_bool(os.getenv("SCHEDULER_ENABLED", "true")),
            monthly_refresh_cron=os.getenv("MONTHLY_REFRESH_CRON", "0 0 1 * *"),
            customer_mirror_table=os.getenv("CUSTOMER_MIRROR_TABLE", "revenuecat.customers"),
        )
