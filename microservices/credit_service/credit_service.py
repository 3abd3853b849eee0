"""
Credit Service - Business Logic Layer

Two-bucket credit ledger:
- gift_credit: monthly allowance, reset to a fixed value while subscribed
- paid_credit: credits bought with one-off purchases, never expire

Consumption always drains gift_credit before paid_credit. Refunds only
touch paid_credit and clamp at zero.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from .events.publishers import (
    publish_credit_consumed,
    publish_credit_gift_cleared,
    publish_credit_gift_reset,
    publish_credit_paid_added,
    publish_credit_refunded,
)
from .models import (
    MONTHLY_GIFT_CREDIT,
    NON_SUBSCRIPTION_PURCHASE_CREDIT,
    BalanceMutation,
    ConsumptionResult,
    CreditBalance,
    CreditTransaction,
    TransactionTypeEnum,
)
from .protocols import (
    CreditBalanceNotFoundError,
    CreditBalanceStoreProtocol,
    EventBusProtocol,
    InsufficientCreditsError,
)

logger = logging.getLogger(__name__)

MAX_UID_LENGTH = 128
MAX_TRANSACTION_PAGE = 100


# ====================
# Pure balance transformations
# ====================


def allocate_consumption(gift_credit: int, paid_credit: int, amount: int) -> Tuple[int, int]:
    """
    Split a consumption between the two buckets, gift first.

    Returns:
        (used_gift, used_paid)

    Raises:
        ValueError: If amount is not positive
        InsufficientCreditsError: If gift + paid < amount
    """
    if amount <= 0:
        raise ValueError("amount must be positive")

    available = gift_credit + paid_credit
    if available < amount:
        raise InsufficientCreditsError(
            f"Insufficient credits. Required: {amount}, Available: {available}",
            available=available,
            required=amount,
        )

    used_gift = min(gift_credit, amount)
    return used_gift, amount - used_gift


def apply_consumption(balance: CreditBalance, amount: int, now: datetime) -> Tuple[CreditBalance, int, int]:
    used_gift, used_paid = allocate_consumption(balance.gift_credit, balance.paid_credit, amount)
    updated = balance.model_copy(update={
        "gift_credit": balance.gift_credit - used_gift,
        "paid_credit": balance.paid_credit - used_paid,
        "updated_at": now,
    })
    return updated, used_gift, used_paid


def apply_paid_credit(balance: CreditBalance, amount: int, now: datetime) -> CreditBalance:
    return balance.model_copy(update={
        "paid_credit": balance.paid_credit + amount,
        "updated_at": now,
    })


def apply_gift_reset(balance: CreditBalance, now: datetime) -> CreditBalance:
    return balance.model_copy(update={
        "gift_credit": MONTHLY_GIFT_CREDIT,
        "last_gift_reset": now,
        "updated_at": now,
    })


def apply_gift_clear(balance: CreditBalance, now: datetime) -> CreditBalance:
    return balance.model_copy(update={
        "gift_credit": 0,
        "updated_at": now,
    })


def apply_refund(balance: CreditBalance, amount: int, now: datetime) -> CreditBalance:
    """Remove up to amount from paid_credit; the excess is discarded"""
    return balance.model_copy(update={
        "paid_credit": max(0, balance.paid_credit - amount),
        "updated_at": now,
    })


def _validate_uid(uid: str) -> str:
    if not uid or not uid.strip():
        raise ValueError("uid is required")
    uid = uid.strip()
    if len(uid) > MAX_UID_LENGTH:
        raise ValueError(f"uid must be 1-{MAX_UID_LENGTH} characters")
    return uid


class CreditService:
    """
    Credit Service - Core business logic

    Every mutation is one transaction over the balance store, so concurrent
    calls for the same user are linearized and calls for different users
    run independently. Errors propagate to the caller; nothing is retried
    here.
    """

    def __init__(
        self,
        repository: CreditBalanceStoreProtocol,
        event_bus: Optional[EventBusProtocol] = None,
    ):
        """
        Initialize credit service with dependencies.

        Args:
            repository: Balance store for data access
            event_bus: Event bus for publishing events (optional)
        """
        self.repository = repository
        self.event_bus = event_bus

    # ====================
    # Reads
    # ====================

    async def get_or_create_balance(self, uid: str) -> CreditBalance:
        """Return the user's balance, creating a zeroed one if absent"""
        uid = _validate_uid(uid)
        return await self.repository.get_or_create_balance(uid)

    async def get_balance(self, uid: str) -> Optional[CreditBalance]:
        """Return the user's balance or None"""
        uid = _validate_uid(uid)
        return await self.repository.get_balance(uid)

    async def get_user_transactions(
        self, uid: str, limit: int = 50, offset: int = 0
    ) -> List[CreditTransaction]:
        """
        List the user's ledger lines, newest first.

        Raises:
            ValueError: If limit or offset are out of range
        """
        uid = _validate_uid(uid)
        if limit < 1 or limit > MAX_TRANSACTION_PAGE:
            raise ValueError(f"limit must be between 1 and {MAX_TRANSACTION_PAGE}")
        if offset < 0:
            raise ValueError("offset cannot be negative")
        return await self.repository.get_user_transactions(uid, limit=limit, offset=offset)

    # ====================
    # Mutations
    # ====================

    async def consume_credits(
        self,
        uid: str,
        amount: int,
        usage_type: str,
        usage_id: Optional[str] = None,
    ) -> ConsumptionResult:
        """
        Spend credits, gift first then paid.

        Args:
            uid: User identifier
            amount: Credits to spend (> 0)
            usage_type: What the credits were spent on
            usage_id: Identifier of the usage (optional)

        Returns:
            ConsumptionResult with the gift/paid split

        Raises:
            ValueError: If amount is not positive
            CreditBalanceNotFoundError: If the user has no balance
            InsufficientCreditsError: If gift + paid < amount (no mutation)
        """
        uid = _validate_uid(uid)
        if amount <= 0:
            raise ValueError("amount must be positive")

        def mutate(current: Optional[CreditBalance]) -> BalanceMutation:
            if current is None:
                raise CreditBalanceNotFoundError(f"Credit balance not found for user {uid}", uid=uid)

            now = datetime.now(timezone.utc)
            updated, used_gift, used_paid = apply_consumption(current, amount, now)
            txn = CreditTransaction(
                uid=uid,
                transaction_type=TransactionTypeEnum.CONSUME,
                amount=amount,
                used_gift=used_gift,
                used_paid=used_paid,
                usage_type=usage_type,
                usage_id=usage_id,
                gift_after=updated.gift_credit,
                paid_after=updated.paid_credit,
                created_at=now,
            )
            result = ConsumptionResult(
                uid=uid,
                amount=amount,
                used_gift=used_gift,
                used_paid=used_paid,
                gift_after=updated.gift_credit,
                paid_after=updated.paid_credit,
                transaction_id=txn.transaction_id,
            )
            return BalanceMutation(balance=updated, transaction=txn, result=result)

        mutation = await self.repository.transact_balance(uid, mutate)
        result: ConsumptionResult = mutation.result

        logger.info(
            f"✅ User {uid} used {amount} credits: gift={result.used_gift}, paid={result.used_paid}"
        )

        if self.event_bus:
            await publish_credit_consumed(
                self.event_bus,
                transaction_id=result.transaction_id,
                uid=uid,
                amount=amount,
                used_gift=result.used_gift,
                used_paid=result.used_paid,
                usage_type=usage_type,
                usage_id=usage_id,
                gift_after=result.gift_after,
                paid_after=result.paid_after,
            )

        return result

    async def add_paid_credits(
        self,
        uid: str,
        amount: int = NON_SUBSCRIPTION_PURCHASE_CREDIT,
        product_id: Optional[str] = None,
        purchase_id: Optional[str] = None,
    ) -> CreditBalance:
        """
        Add purchased credits, creating the balance if absent.

        Not idempotent: replaying the same purchase credits it again.

        Raises:
            ValueError: If amount is not positive
        """
        uid = _validate_uid(uid)
        if amount <= 0:
            raise ValueError("amount must be positive")

        def mutate(current: Optional[CreditBalance]) -> BalanceMutation:
            now = datetime.now(timezone.utc)
            updated = apply_paid_credit(current or CreditBalance(uid=uid, created_at=now), amount, now)
            txn = CreditTransaction(
                uid=uid,
                transaction_type=TransactionTypeEnum.PURCHASE,
                amount=amount,
                added_paid=amount,
                product_id=product_id,
                purchase_id=purchase_id,
                gift_after=updated.gift_credit,
                paid_after=updated.paid_credit,
                created_at=now,
            )
            return BalanceMutation(balance=updated, transaction=txn)

        mutation = await self.repository.transact_balance(uid, mutate, create_missing=True)

        logger.info(f"✅ Added {amount} paid credits for user {uid} (product={product_id}, purchase={purchase_id})")

        if self.event_bus:
            await publish_credit_paid_added(
                self.event_bus,
                transaction_id=mutation.transaction.transaction_id,
                uid=uid,
                amount=amount,
                product_id=product_id,
                purchase_id=purchase_id,
                paid_after=mutation.balance.paid_credit,
            )

        return mutation.balance

    async def reset_gift_credits(self, uid: str) -> CreditBalance:
        """Set gift_credit to the monthly allowance, creating the balance if absent"""
        uid = _validate_uid(uid)

        def mutate(current: Optional[CreditBalance]) -> BalanceMutation:
            now = datetime.now(timezone.utc)
            before = current or CreditBalance(uid=uid, created_at=now)
            updated = apply_gift_reset(before, now)
            txn = CreditTransaction(
                uid=uid,
                transaction_type=TransactionTypeEnum.GIFT_RESET,
                amount=MONTHLY_GIFT_CREDIT,
                added_gift=updated.gift_credit - before.gift_credit,
                reason="entitlement_active",
                gift_after=updated.gift_credit,
                paid_after=updated.paid_credit,
                created_at=now,
            )
            return BalanceMutation(balance=updated, transaction=txn)

        mutation = await self.repository.transact_balance(uid, mutate, create_missing=True)

        logger.info(f"✅ Reset gift_credit to {MONTHLY_GIFT_CREDIT} for user {uid}")

        if self.event_bus:
            await publish_credit_gift_reset(
                self.event_bus,
                transaction_id=mutation.transaction.transaction_id,
                uid=uid,
                gift_credit=mutation.balance.gift_credit,
                paid_credit=mutation.balance.paid_credit,
            )

        return mutation.balance

    async def clear_gift_credits(self, uid: str) -> CreditBalance:
        """Set gift_credit to 0, creating the balance if absent. paid_credit is untouched."""
        uid = _validate_uid(uid)

        def mutate(current: Optional[CreditBalance]) -> BalanceMutation:
            now = datetime.now(timezone.utc)
            before = current or CreditBalance(uid=uid, created_at=now)
            updated = apply_gift_clear(before, now)
            txn = CreditTransaction(
                uid=uid,
                transaction_type=TransactionTypeEnum.GIFT_CLEAR,
                amount=before.gift_credit,
                added_gift=-before.gift_credit,
                reason="entitlement_expired",
                gift_after=updated.gift_credit,
                paid_after=updated.paid_credit,
                created_at=now,
            )
            return BalanceMutation(balance=updated, transaction=txn, result=before.gift_credit)

        mutation = await self.repository.transact_balance(uid, mutate, create_missing=True)

        logger.info(f"✅ Cleared gift_credit for user {uid}")

        if self.event_bus:
            await publish_credit_gift_cleared(
                self.event_bus,
                transaction_id=mutation.transaction.transaction_id,
                uid=uid,
                cleared_amount=mutation.result,
                paid_credit=mutation.balance.paid_credit,
            )

        return mutation.balance

    async def refund_credits(
        self,
        uid: str,
        amount: int,
        reason: Optional[str] = None,
    ) -> CreditBalance:
        """
        Remove refunded credits from paid_credit, clamping at zero.

        gift_credit is never touched; any excess over paid_credit is discarded.

        Raises:
            ValueError: If amount is not positive
            CreditBalanceNotFoundError: If the user has no balance
        """
        uid = _validate_uid(uid)
        if amount <= 0:
            raise ValueError("amount must be positive")

        def mutate(current: Optional[CreditBalance]) -> BalanceMutation:
            if current is None:
                raise CreditBalanceNotFoundError(f"Credit balance not found for user {uid}", uid=uid)

            now = datetime.now(timezone.utc)
            updated = apply_refund(current, amount, now)
            removed = current.paid_credit - updated.paid_credit
            txn = CreditTransaction(
                uid=uid,
                transaction_type=TransactionTypeEnum.REFUND,
                amount=amount,
                used_paid=removed,
                reason=reason,
                gift_after=updated.gift_credit,
                paid_after=updated.paid_credit,
                created_at=now,
            )
            return BalanceMutation(balance=updated, transaction=txn, result=removed)

        mutation = await self.repository.transact_balance(uid, mutate)

        if mutation.result < amount:
            logger.warning(
                f"⚠️ Refund of {amount} for user {uid} exceeded paid_credit, removed {mutation.result}"
            )
        logger.info(f"✅ Refunded {amount} credits for user {uid}, paid_credit={mutation.balance.paid_credit}")

        if self.event_bus:
            await publish_credit_refunded(
                self.event_bus,
                transaction_id=mutation.transaction.transaction_id,
                uid=uid,
                requested_amount=amount,
                refunded_amount=mutation.result,
                paid_after=mutation.balance.paid_credit,
                reason=reason,
            )

        return mutation.balance


__all__ = [
    "CreditService",
    "allocate_consumption",
    "apply_consumption",
    "apply_paid_credit",
    "apply_gift_reset",
    "apply_gift_clear",
    "apply_refund",
]
