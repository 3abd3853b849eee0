"""
Credit Service Event Handlers

Handle events from other services that trigger credit operations.
"""

import logging
from typing import Any, Dict, Union

from .models import CreditSubscribedEventType

logger = logging.getLogger(__name__)


def extract_event_data(event_or_data: Union[Dict[str, Any], Any]) -> Dict[str, Any]:
    """
    Extract data from either an Event object or a raw dict.

    Handles both:
    - Event objects with .data attribute (from NATS)
    - Raw dict (for testing or direct calls)
    """
    if hasattr(event_or_data, 'data'):
        return event_or_data.data
    return event_or_data


# ============================================================================
# Event Handlers
# ============================================================================


async def handle_customer_updated(event_or_data: Union[Dict[str, Any], Any], coordinator=None):
    """
    Handle customer.updated event from the subscription-provider mirror

    Diff the customer's entitlements and purchase history and apply
    gift resets, gift clears and paid credits.

    Event data:
        - user_id (or uid): User ID
        - before: Customer document before the change (may be null)
        - after: Customer document after the change (may be null)
    """
    try:
        event_data = extract_event_data(event_or_data)
        if not isinstance(event_data, dict):
            logger.warning("customer.updated event payload is not an object")
            return

        user_id = event_data.get("user_id") or event_data.get("uid")
        if not user_id or not isinstance(user_id, str):
            logger.warning("customer.updated event missing user_id")
            return

        logger.info(f"Processing customer.updated for user {user_id}")

        if coordinator:
            outcome = await coordinator.process_customer_update(
                user_id,
                event_data.get("before"),
                event_data.get("after"),
            )
            if outcome.errors:
                logger.warning(f"⚠️ customer.updated for user {user_id} finished with errors: {outcome.errors}")

    except Exception as e:
        logger.error(f"Error handling customer.updated event: {e}")


# ============================================================================
# Event Handler Registry
# ============================================================================


def get_event_handlers(coordinator=None) -> Dict[str, callable]:
    """
    Return a mapping of event types to handler functions

    This will be used in main.py to register event subscriptions

    Args:
        coordinator: LifecycleCoordinator applying ledger policy

    Events subscribed:
        - customer.updated: Entitlement and purchase lifecycle
    """
    return {
        CreditSubscribedEventType.CUSTOMER_UPDATED.value: lambda event: handle_customer_updated(event, coordinator),
    }
