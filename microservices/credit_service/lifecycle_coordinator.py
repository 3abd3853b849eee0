"""
Lifecycle Coordinator

Turns customer record changes into ledger calls:

- an entitlement became active  -> reset gift credits (once per update)
- an entitlement expired         -> clear gift credits (once per update)
- a one-off purchase appeared    -> add paid credits (once per product)

When one update both activates and expires entitlements, the reset runs
first and the clear second, so the user ends with no gift credits.

Ledger failures are logged and recorded in the outcome, never raised or
retried; the notification source redelivers at least once.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from .credit_service import CreditService
from .entitlement_diff import compute_entitlement_diff, has_active_entitlement
from .models import (
    NON_SUBSCRIPTION_PURCHASE_CREDIT,
    LifecycleOutcome,
    MonthlyRefreshResult,
)
from .protocols import CustomerMirrorProtocol
from .purchase_diff import compute_new_purchases

logger = logging.getLogger(__name__)

ENTITLEMENTS_FIELD = "entitlements"
PURCHASES_FIELD = "non_subscriptions"


def _section(document: Any, field: str) -> Any:
    if not isinstance(document, Mapping):
        return None
    return document.get(field)


class LifecycleCoordinator:
    """Applies entitlement and purchase lifecycle policy to the credit ledger"""

    def __init__(
        self,
        credit_service: CreditService,
        customer_mirror: Optional[CustomerMirrorProtocol] = None,
    ):
        self.credit_service = credit_service
        self.customer_mirror = customer_mirror

    async def process_customer_update(
        self,
        uid: str,
        before: Any,
        after: Any,
        now: Optional[datetime] = None,
    ) -> LifecycleOutcome:
        """
        Handle one customer document change.

        The entitlement and purchase branches run independently: a ledger
        failure in one does not stop the other.
        """
        outcome = LifecycleOutcome(uid=uid)
        await self._apply_entitlement_change(
            outcome,
            _section(before, ENTITLEMENTS_FIELD),
            _section(after, ENTITLEMENTS_FIELD),
            now,
        )
        await self._apply_purchase_change(
            outcome,
            _section(before, PURCHASES_FIELD),
            _section(after, PURCHASES_FIELD),
        )
        return outcome

    async def handle_entitlement_change(
        self,
        uid: str,
        before: Any,
        after: Any,
        now: Optional[datetime] = None,
    ) -> LifecycleOutcome:
        """Apply the entitlement policy to two raw entitlement maps"""
        outcome = LifecycleOutcome(uid=uid)
        await self._apply_entitlement_change(outcome, before, after, now)
        return outcome

    async def handle_purchase_change(self, uid: str, before: Any, after: Any) -> LifecycleOutcome:
        """Apply the purchase policy to two raw purchase-history maps"""
        outcome = LifecycleOutcome(uid=uid)
        await self._apply_purchase_change(outcome, before, after)
        return outcome

    async def _apply_entitlement_change(
        self,
        outcome: LifecycleOutcome,
        before: Any,
        after: Any,
        now: Optional[datetime],
    ) -> None:
        uid = outcome.uid
        diff = compute_entitlement_diff(before, after, now)

        outcome.activated = sorted(diff.activated)
        outcome.expired = sorted(diff.expired)
        outcome.malformed = sorted(diff.malformed)

        if diff.malformed:
            logger.warning(f"⚠️ User {uid} has malformed entitlements: {outcome.malformed}")

        if not diff.has_changes:
            return

        try:
            if diff.activated:
                logger.info(f"Entitlements activated for user {uid}: {outcome.activated}")
                await self.credit_service.reset_gift_credits(uid)
                outcome.gift_reset = True

            if diff.expired:
                logger.info(f"Entitlements expired for user {uid}: {outcome.expired}")
                await self.credit_service.clear_gift_credits(uid)
                outcome.gift_cleared = True

        except Exception as e:
            logger.error(f"❌ Failed to apply entitlement change for user {uid}: {e}")
            outcome.errors.append(f"entitlements: {e}")

    async def _apply_purchase_change(
        self,
        outcome: LifecycleOutcome,
        before: Any,
        after: Any,
    ) -> None:
        uid = outcome.uid
        for purchase in compute_new_purchases(before, after):
            logger.info(
                f"New purchase for user {uid}: product={purchase.product_id}, purchase={purchase.purchase_id}"
            )
            try:
                await self.credit_service.add_paid_credits(
                    uid,
                    NON_SUBSCRIPTION_PURCHASE_CREDIT,
                    product_id=purchase.product_id,
                    purchase_id=purchase.purchase_id,
                )
            except Exception as e:
                logger.error(f"❌ Failed to credit purchase {purchase.purchase_id} for user {uid}: {e}")
                outcome.errors.append(f"purchase {purchase.product_id}: {e}")
                return

            outcome.purchases.append(purchase)
            outcome.paid_credits_added += NON_SUBSCRIPTION_PURCHASE_CREDIT

    # ====================
    # Monthly refresh
    # ====================

    async def refresh_monthly_gift_credits(self, now: Optional[datetime] = None) -> MonthlyRefreshResult:
        """
        Reset gift credits for every mirrored customer with an active entitlement.

        Per-user failures are logged and counted; the scan continues.
        """
        if self.customer_mirror is None:
            raise RuntimeError("Customer mirror not configured")

        now = now or datetime.now(timezone.utc)
        result = MonthlyRefreshResult()

        logger.info("Starting monthly gift credit refresh")

        async for uid, entitlements in self.customer_mirror.iter_entitlement_snapshots():
            if not has_active_entitlement(entitlements, now):
                result.skipped += 1
                continue

            try:
                await self.credit_service.reset_gift_credits(uid)
                result.processed += 1
            except Exception as e:
                logger.error(f"❌ Monthly refresh failed for user {uid}: {e}")
                result.errors += 1

        logger.info(
            f"✅ Monthly gift refresh finished: processed={result.processed}, "
            f"skipped={result.skipped}, errors={result.errors}"
        )
        return result


__all__ = ["LifecycleCoordinator"]
