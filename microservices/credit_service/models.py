"""
Credit Service Data Models

Two-bucket credit balances (gift / paid), ledger transactions, parsed
entitlement records and the lifecycle events derived from customer updates.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Set

from pydantic import AliasChoices, BaseModel, Field, computed_field, field_validator


# ====================
# Constants
# ====================

class CreditConstants:
    """Fixed credit amounts"""
    # gift_credit value after a reset
    MONTHLY_GIFT_CREDIT = 10
    # paid credits granted per one-off purchase
    NON_SUBSCRIPTION_PURCHASE_CREDIT = 10
    # cost of one use of the gated feature
    USE_CREDITS_AMOUNT = 5


MONTHLY_GIFT_CREDIT = CreditConstants.MONTHLY_GIFT_CREDIT
NON_SUBSCRIPTION_PURCHASE_CREDIT = CreditConstants.NON_SUBSCRIPTION_PURCHASE_CREDIT
USE_CREDITS_AMOUNT = CreditConstants.USE_CREDITS_AMOUNT


# ====================
# Enumerations
# ====================

class TransactionTypeEnum(str, Enum):
    """Valid transaction type values"""
    CONSUME = "consume"
    PURCHASE = "purchase"
    GIFT_RESET = "gift_reset"
    GIFT_CLEAR = "gift_clear"
    REFUND = "refund"


# ====================
# Timestamp parsing
# ====================

def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a provider timestamp into an aware UTC datetime.

    Accepts datetime objects, ISO-8601 strings (trailing "Z" allowed) and
    epoch milliseconds. Returns None for anything else; never raises.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        return _as_utc(value)

    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            return _as_utc(datetime.fromisoformat(text))
        except ValueError:
            return None

    return None


# ====================
# Core Data Models
# ====================

class CreditBalance(BaseModel):
    """
    Credit balance model - one record per user.
    gift_credit is the monthly allowance, paid_credit what the user bought.
    """
    uid: str = Field(..., min_length=1, max_length=128, description="User ID")
    gift_credit: int = Field(default=0, ge=0, description="Monthly gift credits")
    paid_credit: int = Field(default=0, ge=0, description="Purchased credits")
    last_gift_reset: Optional[datetime] = Field(None, description="Last gift reset")

    # Timestamps
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator('uid')
    @classmethod
    def validate_uid(cls, v):
        """Validate uid is not empty"""
        if not v or not v.strip():
            raise ValueError("uid cannot be empty")
        return v.strip()

    @computed_field
    @property
    def total_credit(self) -> int:
        return self.gift_credit + self.paid_credit


class CreditTransaction(BaseModel):
    """
    Credit transaction model - one ledger line per balance mutation.
    Written in the same database transaction as the balance change.
    """
    transaction_id: str = Field(default_factory=lambda: f"cred_txn_{uuid.uuid4().hex[:16]}")
    uid: str = Field(..., min_length=1, max_length=128, description="User ID")
    transaction_type: TransactionTypeEnum = Field(..., description="Type of transaction")
    amount: int = Field(default=0, description="Requested amount")

    # consume
    used_gift: int = Field(default=0, ge=0)
    used_paid: int = Field(default=0, ge=0)
    usage_type: Optional[str] = Field(None, max_length=100)
    usage_id: Optional[str] = Field(None, max_length=255)

    # purchase
    added_paid: int = Field(default=0, ge=0)
    product_id: Optional[str] = Field(None, max_length=255)
    purchase_id: Optional[str] = Field(None, max_length=255)

    # gift reset / clear
    added_gift: int = Field(default=0)

    reason: Optional[str] = Field(None, max_length=500)

    # Balance after the mutation
    gift_after: int = Field(..., ge=0)
    paid_after: int = Field(..., ge=0)

    created_at: Optional[datetime] = None


class ConsumptionResult(BaseModel):
    """How a consumption was split between the two buckets"""
    uid: str
    amount: int
    used_gift: int = Field(..., ge=0)
    used_paid: int = Field(..., ge=0)
    gift_after: int = Field(..., ge=0)
    paid_after: int = Field(..., ge=0)
    transaction_id: Optional[str] = None

    @computed_field
    @property
    def remaining(self) -> int:
        return self.gift_after + self.paid_after


@dataclass
class BalanceMutation:
    """New balance state plus the ledger line describing the change"""
    balance: CreditBalance
    transaction: CreditTransaction
    result: Any = None


# ====================
# Entitlements and purchases
# ====================

class EntitlementRecord(BaseModel):
    """
    One entitlement in a customer's entitlement map.

    Activity is derived: the explicit flag wins, otherwise the entitlement is
    active while expires_at lies in the future.
    """
    expires_at: Optional[datetime] = None
    is_active_flag: Optional[bool] = None
    product_id: Optional[str] = None
    purchase_date: Optional[datetime] = None
    malformed: bool = False

    @classmethod
    def from_raw(cls, raw: Any) -> "EntitlementRecord":
        """Parse a provider-shaped dict. Never raises."""
        if not isinstance(raw, Mapping):
            return cls(malformed=True)

        raw_expiry = raw.get("expires_date")
        if raw_expiry is None:
            raw_expiry = raw.get("expires_at")
        expires_at = parse_timestamp(raw_expiry)

        flag = raw.get("is_active")
        product = raw.get("product_identifier")
        if product is None:
            product = raw.get("product_id")

        return cls(
            expires_at=expires_at,
            is_active_flag=flag if isinstance(flag, bool) else None,
            product_id=str(product) if product is not None else None,
            purchase_date=parse_timestamp(raw.get("purchase_date")),
            malformed=raw_expiry is not None and expires_at is None,
        )


class EntitlementDiff(BaseModel):
    """Lifecycle transitions between two entitlement snapshots"""
    activated: Set[str] = Field(default_factory=set)
    expired: Set[str] = Field(default_factory=set)
    malformed: Set[str] = Field(default_factory=set)

    @property
    def has_changes(self) -> bool:
        return bool(self.activated or self.expired)


class NewPurchase(BaseModel):
    """A purchase that appeared in a customer's purchase history"""
    product_id: str
    purchase_id: Optional[str] = None


class LifecycleOutcome(BaseModel):
    """What the coordinator did for one customer update"""
    uid: str
    activated: List[str] = Field(default_factory=list)
    expired: List[str] = Field(default_factory=list)
    malformed: List[str] = Field(default_factory=list)
    gift_reset: bool = False
    gift_cleared: bool = False
    purchases: List[NewPurchase] = Field(default_factory=list)
    paid_credits_added: int = 0
    errors: List[str] = Field(default_factory=list)


class MonthlyRefreshResult(BaseModel):
    """Counters reported by the monthly gift refresh job"""
    processed: int = 0
    skipped: int = 0
    errors: int = 0


# ====================
# Request Models
# ====================

class UseCreditsRequest(BaseModel):
    """Request to spend credits on the gated feature"""
    usage_type: str = Field(default="manual_deduction", min_length=1, max_length=100)
    usage_id: Optional[str] = Field(None, max_length=255)


class RefundCreditsRequest(BaseModel):
    """Request to refund paid credits"""
    amount: int = Field(..., gt=0, description="Amount to refund")
    reason: Optional[str] = Field(None, max_length=500, description="Refund reason")


class CustomerUpdateRequest(BaseModel):
    """Customer document change notification"""
    user_id: str = Field(
        ...,
        min_length=1,
        max_length=128,
        validation_alias=AliasChoices("user_id", "uid"),
        description="User ID",
    )
    before: Optional[Dict[str, Any]] = Field(None, description="Customer document before the change")
    after: Optional[Dict[str, Any]] = Field(None, description="Customer document after the change")

    @field_validator('user_id')
    @classmethod
    def validate_user_id(cls, v):
        if not v or not v.strip():
            raise ValueError("user_id cannot be empty")
        return v.strip()


# ====================
# Response Models
# ====================

class TransactionListResponse(BaseModel):
    """Response containing a page of ledger lines"""
    uid: str
    transactions: List[CreditTransaction] = Field(default_factory=list)
    count: int = Field(..., ge=0)
    limit: int = Field(..., ge=1)
    offset: int = Field(..., ge=0)


# ====================
# Health & System Models
# ====================

class HealthCheckResponse(BaseModel):
    """Standard health check response"""
    status: str = Field(..., description="Health status")
    service: str = Field(..., description="Service name")
    port: int = Field(..., description="Service port")
    version: str = Field(..., description="Service version")
    timestamp: str = Field(..., description="Timestamp ISO format")
    dependencies: Dict[str, str] = Field(default_factory=dict, description="Dependency status")


class ErrorResponse(BaseModel):
    """Standard error response"""
    error: Optional[str] = Field(None, description="Error type")
    detail: str = Field(..., description="Error detail")
    timestamp: Optional[datetime] = Field(None, description="Error timestamp")
