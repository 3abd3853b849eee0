"""
Credit Service Component Test Fixtures

Provides mocks for credit service component testing:
- MockBalanceStore: In-memory implementation of CreditBalanceStoreProtocol
- MockCustomerMirror: In-memory implementation of CustomerMirrorProtocol
- RecordingCreditService: Ledger stand-in that records call order
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

import httpx
import pytest
import pytest_asyncio

from microservices.credit_service.credit_service import CreditService
from microservices.credit_service.lifecycle_coordinator import LifecycleCoordinator
from microservices.credit_service.models import (
    BalanceMutation,
    CreditBalance,
    CreditTransaction,
)
from tests.contracts.credit.data_contract import CreditTestDataFactory


# =============================================================================
# Mock Balance Store
# =============================================================================


class MockBalanceStore:
    """
    Mock implementation of CreditBalanceStoreProtocol for testing.

    transact_balance holds a per-uid asyncio.Lock and yields to the event
    loop between read and write, so unserialized callers would interleave.
    """

    def __init__(self):
        self.balances: Dict[str, CreditBalance] = {}
        self.transactions: List[CreditTransaction] = []
        self._locks: Dict[str, asyncio.Lock] = {}

        # Track method calls for verification
        self.method_calls = []

    def reset(self):
        """Reset all stored data"""
        self.balances.clear()
        self.transactions.clear()
        self._locks.clear()
        self.method_calls.clear()

    def seed(self, uid: str, gift_credit: int = 0, paid_credit: int = 0) -> CreditBalance:
        """Insert a balance directly"""
        balance = CreditTestDataFactory.make_balance(uid, gift_credit=gift_credit, paid_credit=paid_credit)
        self.balances[uid] = balance
        return balance

    async def get_balance(self, uid: str) -> Optional[CreditBalance]:
        self.method_calls.append(("get_balance", uid))
        return self.balances.get(uid)

    async def get_or_create_balance(self, uid: str) -> CreditBalance:
        self.method_calls.append(("get_or_create_balance", uid))
        if uid not in self.balances:
            now = datetime.now(timezone.utc)
            self.balances[uid] = CreditBalance(uid=uid, created_at=now, updated_at=now)
        return self.balances[uid]

    async def transact_balance(
        self,
        uid: str,
        mutator: Callable[[Optional[CreditBalance]], BalanceMutation],
        create_missing: bool = False,
    ) -> BalanceMutation:
        self.method_calls.append(("transact_balance", uid, create_missing))

        lock = self._locks.setdefault(uid, asyncio.Lock())
        async with lock:
            current = self.balances.get(uid)
            if current is None and create_missing:
                now = datetime.now(timezone.utc)
                current = CreditBalance(uid=uid, created_at=now, updated_at=now)

            await asyncio.sleep(0)

            mutation = mutator(current.model_copy() if current else None)
            self.balances[uid] = mutation.balance
            self.transactions.append(mutation.transaction)
            return mutation

    async def get_user_transactions(
        self, uid: str, limit: int = 50, offset: int = 0
    ) -> List[CreditTransaction]:
        self.method_calls.append(("get_user_transactions", uid, limit, offset))
        mine = [t for t in reversed(self.transactions) if t.uid == uid]
        return mine[offset:offset + limit]


# =============================================================================
# Mock Customer Mirror
# =============================================================================


class MockCustomerMirror:
    """Mock implementation of CustomerMirrorProtocol"""

    def __init__(self):
        self.customers: List[Tuple[str, Any]] = []

    def add_customer(self, uid: str, entitlements: Any):
        self.customers.append((uid, entitlements))

    async def iter_entitlement_snapshots(self) -> AsyncIterator[Tuple[str, Any]]:
        for uid, entitlements in self.customers:
            yield uid, entitlements


# =============================================================================
# Recording Ledger
# =============================================================================


class RecordingCreditService:
    """Ledger stand-in recording calls; fail_on maps method name to an exception"""

    def __init__(self):
        self.calls: List[Tuple[Any, ...]] = []
        self.fail_on: Dict[str, Exception] = {}

    def _record(self, name: str, *args):
        self.calls.append((name, *args))
        if name in self.fail_on:
            raise self.fail_on[name]

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]

    async def reset_gift_credits(self, uid: str):
        self._record("reset_gift_credits", uid)

    async def clear_gift_credits(self, uid: str):
        self._record("clear_gift_credits", uid)

    async def add_paid_credits(self, uid: str, amount: int, product_id=None, purchase_id=None):
        self._record("add_paid_credits", uid, amount, product_id, purchase_id)


# =============================================================================
# Pytest Fixtures
# =============================================================================


@pytest.fixture
def data_factory():
    """Credit test data factory"""
    return CreditTestDataFactory


@pytest.fixture
def mock_store():
    """In-memory balance store"""
    return MockBalanceStore()


@pytest.fixture
def mock_customer_mirror():
    """In-memory customer mirror"""
    return MockCustomerMirror()


@pytest.fixture
def credit_service(mock_store, mock_event_bus):
    """CreditService wired to mocks"""
    return CreditService(repository=mock_store, event_bus=mock_event_bus)


@pytest.fixture
def coordinator(credit_service, mock_customer_mirror):
    """LifecycleCoordinator over the mocked ledger"""
    return LifecycleCoordinator(credit_service=credit_service, customer_mirror=mock_customer_mirror)


@pytest.fixture
def recording_ledger():
    return RecordingCreditService()


@pytest.fixture
def recording_coordinator(recording_ledger, mock_customer_mirror):
    """LifecycleCoordinator over the recording ledger"""
    return LifecycleCoordinator(credit_service=recording_ledger, customer_mirror=mock_customer_mirror)


@pytest_asyncio.fixture
async def api_client(credit_service, coordinator):
    """HTTP client for the FastAPI app with dependencies overridden"""
    from microservices.credit_service import main

    main.app.dependency_overrides[main.get_credit_service] = lambda: credit_service
    main.app.dependency_overrides[main.get_lifecycle_coordinator] = lambda: coordinator

    transport = httpx.ASGITransport(app=main.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client

    main.app.dependency_overrides.clear()
