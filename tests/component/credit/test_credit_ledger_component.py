"""
Credit Ledger Component Tests

Tests CreditService with the in-memory balance store and event bus.

Coverage:
1. GetOrCreate / GetBalance
2. Consume (gift first, insufficient, not found, concurrency)
3. AddPaid
4. ResetGift / ClearGift
5. Refund (clamping)
6. Ledger lines and published events

Usage:
    pytest tests/component/credit/test_credit_ledger_component.py -v
"""

import asyncio

import pytest

from microservices.credit_service.models import (
    MONTHLY_GIFT_CREDIT,
    NON_SUBSCRIPTION_PURCHASE_CREDIT,
    TransactionTypeEnum,
)
from microservices.credit_service.protocols import (
    CreditBalanceNotFoundError,
    InsufficientCreditsError,
)


# =============================================================================
# 1. Reads
# =============================================================================


@pytest.mark.component
@pytest.mark.asyncio
class TestBalanceReads:
    """GetOrCreate and GetBalance"""

    async def test_get_or_create_creates_zero_balance(self, credit_service, mock_store, data_factory):
        uid = data_factory.make_user_id()

        balance = await credit_service.get_or_create_balance(uid)

        assert balance.uid == uid
        assert balance.gift_credit == 0
        assert balance.paid_credit == 0
        assert balance.total_credit == 0
        assert uid in mock_store.balances

    async def test_get_or_create_returns_existing(self, credit_service, mock_store, data_factory):
        uid = data_factory.make_user_id()
        mock_store.seed(uid, gift_credit=4, paid_credit=6)

        balance = await credit_service.get_or_create_balance(uid)

        assert balance.gift_credit == 4
        assert balance.paid_credit == 6
        assert balance.total_credit == 10

    async def test_get_balance_does_not_create(self, credit_service, mock_store, data_factory):
        uid = data_factory.make_user_id()

        assert await credit_service.get_balance(uid) is None
        assert uid not in mock_store.balances

    async def test_uid_is_trimmed(self, credit_service, data_factory):
        uid = data_factory.make_user_id()

        balance = await credit_service.get_or_create_balance(f"  {uid}  ")

        assert balance.uid == uid

    async def test_empty_uid_rejected(self, credit_service):
        with pytest.raises(ValueError, match="uid"):
            await credit_service.get_or_create_balance("   ")


# =============================================================================
# 2. Consume
# =============================================================================


@pytest.mark.component
@pytest.mark.asyncio
class TestConsume:
    """Consumption drains gift before paid"""

    async def test_gift_covers_whole_amount(self, credit_service, mock_store, data_factory):
        uid = data_factory.make_user_id()
        mock_store.seed(uid, gift_credit=10, paid_credit=10)

        result = await credit_service.consume_credits(uid, 5, usage_type="video_generation")

        assert (result.used_gift, result.used_paid) == (5, 0)
        assert mock_store.balances[uid].gift_credit == 5
        assert mock_store.balances[uid].paid_credit == 10

    async def test_split_across_buckets(self, credit_service, mock_store, data_factory):
        uid = data_factory.make_user_id()
        mock_store.seed(uid, gift_credit=3, paid_credit=10)

        result = await credit_service.consume_credits(uid, 5, usage_type="video_generation")

        assert (result.used_gift, result.used_paid) == (3, 2)
        assert result.used_gift + result.used_paid == 5
        assert mock_store.balances[uid].gift_credit == 0
        assert mock_store.balances[uid].paid_credit == 8
        assert result.remaining == 8

    async def test_paid_only(self, credit_service, mock_store, data_factory):
        uid = data_factory.make_user_id()
        mock_store.seed(uid, gift_credit=0, paid_credit=7)

        result = await credit_service.consume_credits(uid, 5, usage_type="voice_clone")

        assert (result.used_gift, result.used_paid) == (0, 5)
        assert mock_store.balances[uid].paid_credit == 2

    async def test_exact_total_is_allowed(self, credit_service, mock_store, data_factory):
        uid = data_factory.make_user_id()
        mock_store.seed(uid, gift_credit=2, paid_credit=3)

        result = await credit_service.consume_credits(uid, 5, usage_type="video_generation")

        assert (result.used_gift, result.used_paid) == (2, 3)
        assert mock_store.balances[uid].total_credit == 0

    async def test_insufficient_leaves_balance_identical(self, credit_service, mock_store, data_factory):
        uid = data_factory.make_user_id()
        mock_store.seed(uid, gift_credit=2, paid_credit=2)
        before = mock_store.balances[uid].model_dump()

        with pytest.raises(InsufficientCreditsError) as exc_info:
            await credit_service.consume_credits(uid, 5, usage_type="video_generation")

        assert exc_info.value.available == 4
        assert exc_info.value.required == 5
        assert mock_store.balances[uid].model_dump() == before
        assert mock_store.transactions == []

    async def test_missing_balance_is_not_found(self, credit_service, mock_store, data_factory):
        uid = data_factory.make_user_id()

        with pytest.raises(CreditBalanceNotFoundError):
            await credit_service.consume_credits(uid, 5, usage_type="video_generation")

        assert uid not in mock_store.balances

    @pytest.mark.parametrize("amount", [0, -1])
    async def test_non_positive_amount_rejected(self, credit_service, mock_store, data_factory, amount):
        uid = data_factory.make_user_id()
        mock_store.seed(uid, gift_credit=10)

        with pytest.raises(ValueError, match="amount"):
            await credit_service.consume_credits(uid, amount, usage_type="video_generation")

        assert mock_store.balances[uid].gift_credit == 10

    async def test_concurrent_consumption_never_overspends(self, credit_service, mock_store, data_factory):
        uid = data_factory.make_user_id()
        mock_store.seed(uid, gift_credit=5, paid_credit=0)

        results = await asyncio.gather(
            credit_service.consume_credits(uid, 3, usage_type="video_generation"),
            credit_service.consume_credits(uid, 3, usage_type="video_generation"),
            return_exceptions=True,
        )

        succeeded = [r for r in results if not isinstance(r, Exception)]
        failed = [r for r in results if isinstance(r, Exception)]
        assert len(succeeded) == 1
        assert len(failed) == 1
        assert isinstance(failed[0], InsufficientCreditsError)
        assert mock_store.balances[uid].gift_credit == 2

    async def test_different_users_are_independent(self, credit_service, mock_store, data_factory):
        uids = [data_factory.make_user_id() for _ in range(3)]
        for uid in uids:
            mock_store.seed(uid, gift_credit=5)

        await asyncio.gather(*[
            credit_service.consume_credits(uid, 5, usage_type="video_generation") for uid in uids
        ])

        assert all(mock_store.balances[uid].gift_credit == 0 for uid in uids)

    async def test_consume_records_transaction(self, credit_service, mock_store, data_factory):
        uid = data_factory.make_user_id()
        mock_store.seed(uid, gift_credit=1, paid_credit=10)

        result = await credit_service.consume_credits(uid, 5, usage_type="video_generation", usage_id="vid_1")

        txn = mock_store.transactions[-1]
        assert txn.transaction_type == TransactionTypeEnum.CONSUME
        assert txn.transaction_id == result.transaction_id
        assert txn.transaction_id.startswith("cred_txn_")
        assert (txn.used_gift, txn.used_paid) == (1, 4)
        assert txn.usage_type == "video_generation"
        assert txn.usage_id == "vid_1"
        assert (txn.gift_after, txn.paid_after) == (0, 6)


# =============================================================================
# 3. AddPaid
# =============================================================================


@pytest.mark.component
@pytest.mark.asyncio
class TestAddPaid:
    """Purchased credits are additive"""

    async def test_creates_balance_when_missing(self, credit_service, mock_store, data_factory):
        uid = data_factory.make_user_id()

        balance = await credit_service.add_paid_credits(uid)

        assert balance.paid_credit == NON_SUBSCRIPTION_PURCHASE_CREDIT
        assert balance.gift_credit == 0

    async def test_adds_to_existing(self, credit_service, mock_store, data_factory):
        uid = data_factory.make_user_id()
        mock_store.seed(uid, gift_credit=3, paid_credit=7)

        balance = await credit_service.add_paid_credits(
            uid, 10, product_id=data_factory.make_product_id(), purchase_id=data_factory.make_purchase_id()
        )

        assert balance.paid_credit == 17
        assert balance.gift_credit == 3

    async def test_no_upper_bound(self, credit_service, mock_store, data_factory):
        uid = data_factory.make_user_id()
        mock_store.seed(uid, paid_credit=1_000_000)

        balance = await credit_service.add_paid_credits(uid, 10)

        assert balance.paid_credit == 1_000_010

    async def test_replay_credits_twice(self, credit_service, mock_store, data_factory):
        uid = data_factory.make_user_id()
        purchase_id = data_factory.make_purchase_id()

        await credit_service.add_paid_credits(uid, 10, purchase_id=purchase_id)
        await credit_service.add_paid_credits(uid, 10, purchase_id=purchase_id)

        assert mock_store.balances[uid].paid_credit == 20

    async def test_non_positive_amount_rejected(self, credit_service, data_factory):
        with pytest.raises(ValueError, match="amount"):
            await credit_service.add_paid_credits(data_factory.make_user_id(), 0)

    async def test_records_purchase_transaction(self, credit_service, mock_store, data_factory):
        uid = data_factory.make_user_id()
        product_id = data_factory.make_product_id()
        purchase_id = data_factory.make_purchase_id()

        await credit_service.add_paid_credits(uid, 10, product_id=product_id, purchase_id=purchase_id)

        txn = mock_store.transactions[-1]
        assert txn.transaction_type == TransactionTypeEnum.PURCHASE
        assert txn.added_paid == 10
        assert txn.product_id == product_id
        assert txn.purchase_id == purchase_id


# =============================================================================
# 4. ResetGift / ClearGift
# =============================================================================


@pytest.mark.component
@pytest.mark.asyncio
class TestGiftLifecycle:
    """Gift resets and clears"""

    @pytest.mark.parametrize("gift_before", [0, 3, 10, 25])
    async def test_reset_always_sets_monthly_amount(self, credit_service, mock_store, data_factory, gift_before):
        uid = data_factory.make_user_id()
        mock_store.seed(uid, gift_credit=gift_before, paid_credit=4)

        balance = await credit_service.reset_gift_credits(uid)

        assert balance.gift_credit == MONTHLY_GIFT_CREDIT
        assert balance.paid_credit == 4
        assert balance.last_gift_reset is not None

    async def test_reset_is_idempotent(self, credit_service, mock_store, data_factory):
        uid = data_factory.make_user_id()

        await credit_service.reset_gift_credits(uid)
        balance = await credit_service.reset_gift_credits(uid)

        assert balance.gift_credit == MONTHLY_GIFT_CREDIT

    async def test_reset_creates_missing_balance(self, credit_service, mock_store, data_factory):
        uid = data_factory.make_user_id()

        balance = await credit_service.reset_gift_credits(uid)

        assert balance.gift_credit == MONTHLY_GIFT_CREDIT
        assert balance.paid_credit == 0

    async def test_clear_zeroes_gift_and_keeps_paid(self, credit_service, mock_store, data_factory):
        uid = data_factory.make_user_id()
        mock_store.seed(uid, gift_credit=8, paid_credit=12)

        balance = await credit_service.clear_gift_credits(uid)

        assert balance.gift_credit == 0
        assert balance.paid_credit == 12

    async def test_clear_creates_missing_balance(self, credit_service, mock_store, data_factory):
        uid = data_factory.make_user_id()

        balance = await credit_service.clear_gift_credits(uid)

        assert balance.gift_credit == 0
        assert balance.paid_credit == 0
        assert uid in mock_store.balances

    async def test_gift_transactions_recorded(self, credit_service, mock_store, data_factory):
        uid = data_factory.make_user_id()
        mock_store.seed(uid, gift_credit=4)

        await credit_service.reset_gift_credits(uid)
        await credit_service.clear_gift_credits(uid)

        reset_txn, clear_txn = mock_store.transactions
        assert reset_txn.transaction_type == TransactionTypeEnum.GIFT_RESET
        assert reset_txn.added_gift == MONTHLY_GIFT_CREDIT - 4
        assert clear_txn.transaction_type == TransactionTypeEnum.GIFT_CLEAR
        assert clear_txn.added_gift == -MONTHLY_GIFT_CREDIT


# =============================================================================
# 5. Refund
# =============================================================================


@pytest.mark.component
@pytest.mark.asyncio
class TestRefund:
    """Refunds only touch paid credits and clamp at zero"""

    async def test_refund_within_balance(self, credit_service, mock_store, data_factory):
        uid = data_factory.make_user_id()
        mock_store.seed(uid, gift_credit=5, paid_credit=10)

        balance = await credit_service.refund_credits(uid, 4)

        assert balance.paid_credit == 6
        assert balance.gift_credit == 5

    @pytest.mark.parametrize("paid,amount", [(3, 10), (0, 1), (10, 10)])
    async def test_refund_clamps_at_zero(self, credit_service, mock_store, data_factory, paid, amount):
        uid = data_factory.make_user_id()
        mock_store.seed(uid, gift_credit=7, paid_credit=paid)

        balance = await credit_service.refund_credits(uid, amount)

        assert balance.paid_credit == max(0, paid - amount)
        assert balance.gift_credit == 7

    async def test_refund_missing_balance_is_not_found(self, credit_service, mock_store, data_factory):
        uid = data_factory.make_user_id()

        with pytest.raises(CreditBalanceNotFoundError):
            await credit_service.refund_credits(uid, 5)

        assert uid not in mock_store.balances

    async def test_refund_requires_positive_amount(self, credit_service, mock_store, data_factory):
        uid = data_factory.make_user_id()
        mock_store.seed(uid, paid_credit=5)

        with pytest.raises(ValueError, match="amount"):
            await credit_service.refund_credits(uid, 0)

    async def test_refund_transaction_records_removed_amount(self, credit_service, mock_store, data_factory):
        uid = data_factory.make_user_id()
        mock_store.seed(uid, paid_credit=3)

        await credit_service.refund_credits(uid, 10, reason="store_refund")

        txn = mock_store.transactions[-1]
        assert txn.transaction_type == TransactionTypeEnum.REFUND
        assert txn.amount == 10
        assert txn.used_paid == 3
        assert txn.reason == "store_refund"
        assert txn.paid_after == 0


# =============================================================================
# 6. Transaction history and events
# =============================================================================


@pytest.mark.component
@pytest.mark.asyncio
class TestHistoryAndEvents:
    """Ledger listing and NATS publishing"""

    async def test_transactions_newest_first(self, credit_service, mock_store, data_factory):
        uid = data_factory.make_user_id()

        await credit_service.add_paid_credits(uid, 10)
        await credit_service.reset_gift_credits(uid)
        await credit_service.consume_credits(uid, 5, usage_type="video_generation")

        transactions = await credit_service.get_user_transactions(uid)

        assert [t.transaction_type for t in transactions] == [
            TransactionTypeEnum.CONSUME,
            TransactionTypeEnum.GIFT_RESET,
            TransactionTypeEnum.PURCHASE,
        ]

    async def test_transactions_paging(self, credit_service, data_factory):
        uid = data_factory.make_user_id()
        for _ in range(3):
            await credit_service.add_paid_credits(uid, 10)

        page = await credit_service.get_user_transactions(uid, limit=2, offset=2)

        assert len(page) == 1

    async def test_transactions_limit_validated(self, credit_service, data_factory):
        with pytest.raises(ValueError, match="limit"):
            await credit_service.get_user_transactions(data_factory.make_user_id(), limit=0)

    async def test_each_mutation_publishes_one_event(self, credit_service, mock_event_bus, data_factory, assertions):
        uid = data_factory.make_user_id()

        await credit_service.add_paid_credits(uid, 10)
        await credit_service.reset_gift_credits(uid)
        await credit_service.consume_credits(uid, 5, usage_type="video_generation")
        await credit_service.refund_credits(uid, 2)
        await credit_service.clear_gift_credits(uid)

        types = [e["type"] for e in mock_event_bus.published_events]
        assert types == [
            "credit.paid_added",
            "credit.gift_reset",
            "credit.consumed",
            "credit.refunded",
            "credit.gift_cleared",
        ]
        event = assertions.assert_event_published(
            mock_event_bus.published_events, "credit.consumed", used_gift=5, used_paid=0
        )
        assert event["source"] == "credit_service"
        assert event["subject"] == uid

    async def test_publish_failure_does_not_fail_mutation(self, credit_service, mock_store, mock_event_bus, data_factory):
        uid = data_factory.make_user_id()
        mock_event_bus.fail_with(ConnectionError("nats down"))

        balance = await credit_service.add_paid_credits(uid, 10)

        assert balance.paid_credit == 10
        assert mock_store.balances[uid].paid_credit == 10

    async def test_failed_mutation_publishes_nothing(self, credit_service, mock_store, mock_event_bus, data_factory):
        uid = data_factory.make_user_id()
        mock_store.seed(uid, gift_credit=1)

        with pytest.raises(InsufficientCreditsError):
            await credit_service.consume_credits(uid, 5, usage_type="video_generation")

        assert mock_event_bus.published_events == []
