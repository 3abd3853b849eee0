"""
Credit Service Event Package

Event-driven architecture for credit service:
- Publishing: Credit ledger events (consumed, paid_added, gift_reset, etc.)
- Subscription: Customer updates from the subscription-provider mirror
"""

from .models import (
    CreditEventType,
    CreditSubscribedEventType,
    CreditStreamConfig,
    CreditConsumedEventData,
    CreditPaidAddedEventData,
    CreditGiftResetEventData,
    CreditGiftClearedEventData,
    CreditRefundedEventData,
)

from .publishers import (
    publish_credit_consumed,
    publish_credit_paid_added,
    publish_credit_gift_reset,
    publish_credit_gift_cleared,
    publish_credit_refunded,
)

from .handlers import get_event_handlers, handle_customer_updated

__all__ = [
    # Event models
    "CreditEventType",
    "CreditSubscribedEventType",
    "CreditStreamConfig",
    "CreditConsumedEventData",
    "CreditPaidAddedEventData",
    "CreditGiftResetEventData",
    "CreditGiftClearedEventData",
    "CreditRefundedEventData",
    # Publishers
    "publish_credit_consumed",
    "publish_credit_paid_added",
    "publish_credit_gift_reset",
    "publish_credit_gift_cleared",
    "publish_credit_refunded",
    # Handlers
    "get_event_handlers",
    "handle_customer_updated",
]
