"""
Credit Service Event Publishers

Publish events for credit ledger mutations.
Publishing failures are logged, never raised to the caller.
"""

import logging
from typing import Optional

from core.nats_client import Event, ServiceSource

from .models import (
    CreditConsumedEventData,
    CreditEventType,
    CreditGiftClearedEventData,
    CreditGiftResetEventData,
    CreditPaidAddedEventData,
    CreditRefundedEventData,
)

logger = logging.getLogger(__name__)


async def _publish(event_bus, event_type: CreditEventType, uid: str, data) -> None:
    event = Event(
        event_type=event_type,
        source=ServiceSource.CREDIT_SERVICE,
        data=data.model_dump(mode='json'),
        subject=uid,
    )
    await event_bus.publish_event(event)


# ============================================================================
# Credit Ledger Event Publishers
# ============================================================================


async def publish_credit_consumed(
    event_bus,
    transaction_id: Optional[str],
    uid: str,
    amount: int,
    used_gift: int,
    used_paid: int,
    usage_type: str,
    gift_after: int,
    paid_after: int,
    usage_id: Optional[str] = None,
):
    """
    Publish credit.consumed event

    Args:
        event_bus: NATS event bus instance
        transaction_id: Ledger transaction ID
        uid: User who spent credits
        amount: Credits spent
        used_gift: Portion taken from gift_credit
        used_paid: Portion taken from paid_credit
        usage_type: What the credits were spent on
        gift_after: gift_credit after consumption
        paid_after: paid_credit after consumption
        usage_id: Usage identifier (optional)
    """
    try:
        event_data = CreditConsumedEventData(
            transaction_id=transaction_id,
            uid=uid,
            amount=amount,
            used_gift=used_gift,
            used_paid=used_paid,
            usage_type=usage_type,
            usage_id=usage_id,
            gift_after=gift_after,
            paid_after=paid_after,
        )
        await _publish(event_bus, CreditEventType.CREDIT_CONSUMED, uid, event_data)
        logger.info(f"Published credit.consumed for user {uid}: {amount} credits")

    except Exception as e:
        logger.error(f"Failed to publish credit.consumed: {e}")


async def publish_credit_paid_added(
    event_bus,
    transaction_id: Optional[str],
    uid: str,
    amount: int,
    paid_after: int,
    product_id: Optional[str] = None,
    purchase_id: Optional[str] = None,
):
    """Publish credit.paid_added event"""
    try:
        event_data = CreditPaidAddedEventData(
            transaction_id=transaction_id,
            uid=uid,
            amount=amount,
            product_id=product_id,
            purchase_id=purchase_id,
            paid_after=paid_after,
        )
        await _publish(event_bus, CreditEventType.CREDIT_PAID_ADDED, uid, event_data)
        logger.info(f"Published credit.paid_added for user {uid}: {amount} credits")

    except Exception as e:
        logger.error(f"Failed to publish credit.paid_added: {e}")


async def publish_credit_gift_reset(
    event_bus,
    transaction_id: Optional[str],
    uid: str,
    gift_credit: int,
    paid_credit: int,
):
    """Publish credit.gift_reset event"""
    try:
        event_data = CreditGiftResetEventData(
            transaction_id=transaction_id,
            uid=uid,
            gift_credit=gift_credit,
            paid_credit=paid_credit,
        )
        await _publish(event_bus, CreditEventType.CREDIT_GIFT_RESET, uid, event_data)
        logger.info(f"Published credit.gift_reset for user {uid}")

    except Exception as e:
        logger.error(f"Failed to publish credit.gift_reset: {e}")


async def publish_credit_gift_cleared(
    event_bus,
    transaction_id: Optional[str],
    uid: str,
    cleared_amount: int,
    paid_credit: int,
):
    """Publish credit.gift_cleared event"""
    try:
        event_data = CreditGiftClearedEventData(
            transaction_id=transaction_id,
            uid=uid,
            cleared_amount=cleared_amount,
            paid_credit=paid_credit,
        )
        await _publish(event_bus, CreditEventType.CREDIT_GIFT_CLEARED, uid, event_data)
        logger.info(f"Published credit.gift_cleared for user {uid}")

    except Exception as e:
        logger.error(f"Failed to publish credit.gift_cleared: {e}")


async def publish_credit_refunded(
    event_bus,
    transaction_id: Optional[str],
    uid: str,
    requested_amount: int,
    refunded_amount: int,
    paid_after: int,
    reason: Optional[str] = None,
):
    """
    Publish credit.refunded event

    Args:
        event_bus: NATS event bus instance
        transaction_id: Ledger transaction ID
        uid: User whose credits were refunded
        requested_amount: Amount the refund asked for
        refunded_amount: paid_credit actually removed (clamped at balance)
        paid_after: paid_credit after the refund
        reason: Refund reason (optional)
    """
    try:
        event_data = CreditRefundedEventData(
            transaction_id=transaction_id,
            uid=uid,
            requested_amount=requested_amount,
            refunded_amount=refunded_amount,
            paid_after=paid_after,
            reason=reason,
        )
        await _publish(event_bus, CreditEventType.CREDIT_REFUNDED, uid, event_data)
        logger.info(f"Published credit.refunded for user {uid}: {refunded_amount}/{requested_amount}")

    except Exception as e:
        logger.error(f"Failed to publish credit.refunded: {e}")
