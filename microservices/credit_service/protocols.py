"""
Credit Service Protocols

Defines interfaces for dependency injection and testing.
Following the protocol-based architecture pattern.
"""

from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Protocol, Tuple, runtime_checkable

from .models import BalanceMutation, CreditBalance, CreditTransaction


# ====================
# Balance Store Protocol
# ====================


@runtime_checkable
class CreditBalanceStoreProtocol(Protocol):
    """
    Transactional store of per-user credit balances.

    Implementations serialize concurrent transact_balance calls for the same
    uid; calls for different uids do not block each other.
    """

    async def get_balance(self, uid: str) -> Optional[CreditBalance]:
        """
        Read a balance without creating it.

        Args:
            uid: User identifier

        Returns:
            Balance record or None if the user has none
        """
        ...

    async def get_or_create_balance(self, uid: str) -> CreditBalance:
        """
        Read a balance, creating a zeroed record if absent.

        Args:
            uid: User identifier

        Returns:
            Existing or newly created balance record
        """
        ...

    async def transact_balance(
        self,
        uid: str,
        mutator: Callable[[Optional[CreditBalance]], BalanceMutation],
        create_missing: bool = False,
    ) -> BalanceMutation:
        """
        Atomic read-modify-write of one user's balance.

        The mutator receives the current record (None when absent and
        create_missing is False) and returns the new record together with the
        ledger line to append. If the mutator raises, nothing is written.

        Args:
            uid: User identifier
            mutator: Pure function computing the new state
            create_missing: Create a zeroed record before locking when absent

        Returns:
            The mutation that was committed
        """
        ...

    async def get_user_transactions(
        self, uid: str, limit: int = 50, offset: int = 0
    ) -> List[CreditTransaction]:
        """
        List ledger lines for a user, newest first.

        Args:
            uid: User identifier
            limit: Page size
            offset: Rows to skip

        Returns:
            List of transaction records
        """
        ...


# ====================
# Customer Mirror Protocol
# ====================


@runtime_checkable
class CustomerMirrorProtocol(Protocol):
    """Read-only access to mirrored subscription-provider customer records"""

    def iter_entitlement_snapshots(self) -> AsyncIterator[Tuple[str, Any]]:
        """
        Iterate over every mirrored customer.

        Yields:
            (uid, raw entitlement snapshot) pairs
        """
        ...


# ====================
# Event Bus Protocol
# ====================


@runtime_checkable
class EventBusProtocol(Protocol):
    """Event bus interface for publishing events"""

    async def publish_event(self, event: Any) -> bool:
        """
        Publish event to NATS.

        Args:
            event: core.nats_client.Event envelope

        Returns:
            True if the broker acknowledged the event
        """
        ...


# ====================
# Custom Exceptions (no I/O operations)
# ====================


class CreditServiceError(Exception):
    """Base exception for credit service errors"""
    pass


class CreditBalanceNotFoundError(CreditServiceError):
    """Raised when a user has no credit balance record"""

    def __init__(self, message: str, uid: Optional[str] = None):
        super().__init__(message)
        self.uid = uid


class InsufficientCreditsError(CreditServiceError):
    """Raised when user has insufficient credits"""

    def __init__(
        self,
        message: str,
        available: Optional[int] = None,
        required: Optional[int] = None,
    ):
        super().__init__(message)
        self.available = available
        self.required = required


class CreditStoreError(CreditServiceError):
    """Raised when the balance store fails after retries"""

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.reason = reason


__all__ = [
    "CreditBalanceStoreProtocol",
    "CustomerMirrorProtocol",
    "EventBusProtocol",
    "CreditServiceError",
    "CreditBalanceNotFoundError",
    "InsufficientCreditsError",
    "CreditStoreError",
]
