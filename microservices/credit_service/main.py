"""
Credit Microservice API

Two-bucket (gift / paid) credit ledger kept in sync with subscription
entitlements and one-off purchases.
"""

import logging
import os
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

# Add parent directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../.."))
from core.config_manager import ConfigManager
from core.logger import setup_service_logger
from core.nats_client import create_event_bus
from core.postgres_client import PostgresClientWrapper

from .credit_repository import CreditRepository
from .credit_service import CreditService
from .events.models import CreditStreamConfig
from .factory import create_credit_service, create_lifecycle_coordinator
from .lifecycle_coordinator import LifecycleCoordinator
from .models import (
    USE_CREDITS_AMOUNT,
    ConsumptionResult,
    CreditBalance,
    CustomerUpdateRequest,
    HealthCheckResponse as HealthResponse,
    LifecycleOutcome,
    RefundCreditsRequest,
    TransactionListResponse,
    UseCreditsRequest,
)
from .protocols import CreditBalanceNotFoundError, InsufficientCreditsError

# Initialize configuration manager
config_manager = ConfigManager("credit_service")
config = config_manager.get_service_config()

# Configure logging
logger = setup_service_logger(
    "credit_service",
    level=config.log_level.upper(),
    config=config_manager.get_logging_config(),
)

# Print configuration info (development environment)
if config.debug:
    config_manager.print_config_summary(show_secrets=False)

# Global variables
credit_service: Optional[CreditService] = None
coordinator: Optional[LifecycleCoordinator] = None
repository: Optional[CreditRepository] = None
db: Optional[PostgresClientWrapper] = None
event_bus = None  # NATS event bus
scheduler = None  # APScheduler for the monthly gift refresh
SERVICE_PORT = config.service_port or 8229


async def run_monthly_refresh():
    """Scheduled job: restore gift credits for users with an active entitlement"""
    if not coordinator:
        logger.warning("⚠️ Monthly refresh skipped: coordinator not initialized")
        return
    try:
        await coordinator.refresh_monthly_gift_credits()
    except Exception as e:
        logger.error(f"❌ Monthly gift refresh failed: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management"""
    global credit_service, coordinator, repository, db, event_bus, scheduler

    try:
        db = PostgresClientWrapper("credit_service", config=config_manager)

        # Initialize NATS JetStream event bus
        if config.nats_enabled:
            try:
                event_bus = await create_event_bus("credit_service", config=config_manager)
                logger.info("✅ Event bus initialized successfully")

            except Exception as e:
                logger.warning(
                    f"⚠️  Failed to initialize event bus: {e}. Continuing without event subscriptions."
                )
                event_bus = None

        # Create credit service using factory (with or without event bus)
        credit_service = create_credit_service(
            config=config_manager, event_bus=event_bus, db=db
        )

        # Initialize repository connection
        repository = credit_service.repository
        await repository.initialize()

        coordinator = create_lifecycle_coordinator(credit_service, config=config_manager, db=db)

        # Subscribe to events if event bus is available
        if event_bus:
            try:
                from .events import get_event_handlers

                handler_map = get_event_handlers(coordinator)

                for pattern, handler_func in handler_map.items():
                    await event_bus.subscribe_to_events(
                        pattern=pattern,
                        handler=handler_func,
                        durable=f"{CreditStreamConfig.CONSUMER_PREFIX}-{pattern.replace('.', '-').replace('*', 'all')}-consumer",
                    )
                    logger.info(f"✅ Subscribed to {pattern}")

                logger.info(
                    f"✅ Credit event subscriber started ({len(handler_map)} event patterns)"
                )

            except Exception as e:
                logger.warning(f"⚠️  Failed to subscribe to events: {e}")

        # Start monthly refresh scheduler (APScheduler)
        if config.scheduler_enabled and coordinator.customer_mirror is not None:
            try:
                from apscheduler.schedulers.asyncio import AsyncIOScheduler
                from apscheduler.triggers.cron import CronTrigger

                scheduler = AsyncIOScheduler(timezone="UTC")

                scheduler.add_job(
                    run_monthly_refresh,
                    CronTrigger.from_crontab(config.monthly_refresh_cron, timezone="UTC"),
                    id='monthly_gift_refresh_job',
                    replace_existing=True,
                )

                scheduler.start()
                logger.info(f"✅ Monthly gift refresh scheduler started ('{config.monthly_refresh_cron}' UTC)")

            except Exception as e:
                logger.warning(f"⚠️  Failed to start monthly refresh scheduler: {e}")
                scheduler = None

        logger.info(f"✅ Credit service started on port {SERVICE_PORT}")
        yield

    except Exception as e:
        logger.error(f"Failed to initialize credit service: {e}")
        raise
    finally:
        # Cleanup resources
        if scheduler:
            try:
                scheduler.shutdown()
                logger.info("✅ Monthly refresh scheduler stopped")
            except Exception as e:
                logger.error(f"❌ Failed to stop scheduler: {e}")

        if event_bus:
            try:
                await event_bus.close()
                logger.info("Credit event bus closed")
            except Exception as e:
                logger.error(f"Error closing event bus: {e}")

        if db:
            await db.close()
            logger.info("Credit service database connections closed")


# Create FastAPI application
app = FastAPI(
    title="Credit Service",
    description="Gift / paid credit ledger driven by subscription entitlements and purchases",
    version="1.0.0",
    lifespan=lifespan,
)


# ====================
# Dependency Injection
# ====================


async def get_credit_service() -> CreditService:
    """Get credit service instance"""
    if not credit_service:
        raise HTTPException(status_code=503, detail="Credit service not initialized")
    return credit_service


async def get_lifecycle_coordinator() -> LifecycleCoordinator:
    """Get lifecycle coordinator instance"""
    if not coordinator:
        raise HTTPException(status_code=503, detail="Credit service not initialized")
    return coordinator


# ====================
# Health Check
# ====================


@app.get("/api/v1/credits/health", response_model=HealthResponse)
@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Basic health check"""
    dependencies = {}

    # Check database connection
    try:
        if db:
            result = await db.health_check()
            dependencies["database"] = "healthy" if result and result.get('healthy') else "unhealthy"
        else:
            dependencies["database"] = "unhealthy"
    except Exception:
        dependencies["database"] = "unhealthy"

    # Check event bus (is_connected is a property)
    if event_bus:
        dependencies["event_bus"] = "healthy" if event_bus.is_connected else "unhealthy"
    else:
        dependencies["event_bus"] = "not_configured"

    dependencies["scheduler"] = "healthy" if scheduler and scheduler.running else "not_configured"

    status = "healthy" if all(v in ["healthy", "not_configured"] for v in dependencies.values()) else "degraded"

    return HealthResponse(
        status=status,
        service="credit_service",
        port=SERVICE_PORT,
        version="1.0.0",
        timestamp=datetime.now(timezone.utc).isoformat(),
        dependencies=dependencies,
    )


# ====================
# Balance Operations
# ====================


@app.get("/api/v1/credits/{user_id}/balance", response_model=CreditBalance)
async def get_balance(
    user_id: str,
    service: CreditService = Depends(get_credit_service)
):
    """Get the user's balance, creating an empty one on first access"""
    try:
        return await service.get_or_create_balance(user_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error getting credit balance: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@app.post("/api/v1/credits/{user_id}/use", response_model=ConsumptionResult)
async def use_credits(
    user_id: str,
    request: Optional[UseCreditsRequest] = None,
    service: CreditService = Depends(get_credit_service)
):
    """Spend the fixed per-use amount, gift credits first"""
    request = request or UseCreditsRequest()
    try:
        return await service.consume_credits(
            user_id,
            USE_CREDITS_AMOUNT,
            usage_type=request.usage_type,
            usage_id=request.usage_id,
        )
    except InsufficientCreditsError as e:
        raise HTTPException(status_code=412, detail=str(e))
    except CreditBalanceNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error using credits: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@app.post("/api/v1/credits/{user_id}/refund", response_model=CreditBalance)
async def refund_credits(
    user_id: str,
    request: RefundCreditsRequest,
    service: CreditService = Depends(get_credit_service)
):
    """Refund paid credits (clamped at zero)"""
    try:
        return await service.refund_credits(user_id, request.amount, reason=request.reason)
    except CreditBalanceNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error refunding credits: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


# ====================
# Transaction History
# ====================


@app.get("/api/v1/credits/{user_id}/transactions", response_model=TransactionListResponse)
async def get_transactions(
    user_id: str,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    service: CreditService = Depends(get_credit_service)
):
    """Get credit transaction history, newest first"""
    try:
        transactions = await service.get_user_transactions(user_id, limit=limit, offset=offset)
        return TransactionListResponse(
            uid=user_id,
            transactions=transactions,
            count=len(transactions),
            limit=limit,
            offset=offset,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error getting credit transactions: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


# ====================
# Customer Update Intake
# ====================


@app.post("/api/v1/credits/customer-updates", response_model=LifecycleOutcome)
async def ingest_customer_update(
    request: CustomerUpdateRequest,
    lifecycle: LifecycleCoordinator = Depends(get_lifecycle_coordinator)
):
    """Apply a customer document change (same payload as customer.updated)"""
    try:
        return await lifecycle.process_customer_update(request.user_id, request.before, request.after)
    except Exception as e:
        logger.error(f"Error processing customer update: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


# ====================
# Error Handling
# ====================


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception in {request.url}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"detail": "Internal server error occurred"})


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "microservices.credit_service.main:app",
        host=config.service_host,
        port=SERVICE_PORT,
        reload=config.debug,
        log_level=config.log_level.lower(),
    )
