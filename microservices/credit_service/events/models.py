"""
Credit Service Event Models

Event data models for credit ledger events and the customer update
notifications the service consumes.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Event Type Definitions (Service-Specific)
# =============================================================================

class CreditEventType(str, Enum):
    """
    Events published by credit_service.

    Stream: credit-stream
    Subjects: credit.>
    """
    CREDIT_CONSUMED = "credit.consumed"
    CREDIT_PAID_ADDED = "credit.paid_added"
    CREDIT_GIFT_RESET = "credit.gift_reset"
    CREDIT_GIFT_CLEARED = "credit.gift_cleared"
    CREDIT_REFUNDED = "credit.refunded"


class CreditSubscribedEventType(str, Enum):
    """Events that credit_service subscribes to from other services."""
    CUSTOMER_UPDATED = "customer.updated"


class CreditStreamConfig:
    """Stream configuration for credit_service"""
    STREAM_NAME = "credit-stream"
    SUBJECTS = ["credit.>"]
    MAX_MESSAGES = 100000
    CONSUMER_PREFIX = "credit"


# ============================================================================
# Credit Ledger Event Models
# ============================================================================


class CreditConsumedEventData(BaseModel):
    """
    Event: credit.consumed
    Triggered when a user spends credits
    """

    transaction_id: Optional[str] = Field(None, description="Ledger transaction ID")
    uid: str = Field(..., description="User ID")
    amount: int = Field(..., description="Credits spent")
    used_gift: int = Field(..., description="Taken from gift_credit")
    used_paid: int = Field(..., description="Taken from paid_credit")
    usage_type: str = Field(..., description="What the credits were spent on")
    usage_id: Optional[str] = Field(None, description="Usage identifier")
    gift_after: int = Field(..., description="gift_credit after consumption")
    paid_after: int = Field(..., description="paid_credit after consumption")
    timestamp: datetime = Field(default_factory=_utcnow)

    class Config:
        json_schema_extra = {
            "example": {
                "transaction_id": "cred_txn_3f9a1c2b4d5e6f70",
                "uid": "usr_xyz789",
                "amount": 5,
                "used_gift": 3,
                "used_paid": 2,
                "usage_type": "video_generation",
                "usage_id": "vid_abc123",
                "gift_after": 0,
                "paid_after": 8,
                "timestamp": "2025-12-18T10:00:00Z",
            }
        }


class CreditPaidAddedEventData(BaseModel):
    """
    Event: credit.paid_added
    Triggered when purchased credits are added
    """

    transaction_id: Optional[str] = Field(None, description="Ledger transaction ID")
    uid: str = Field(..., description="User ID")
    amount: int = Field(..., description="Credits added")
    product_id: Optional[str] = Field(None, description="Purchased product")
    purchase_id: Optional[str] = Field(None, description="Store purchase identifier")
    paid_after: int = Field(..., description="paid_credit after the purchase")
    timestamp: datetime = Field(default_factory=_utcnow)


class CreditGiftResetEventData(BaseModel):
    """
    Event: credit.gift_reset
    Triggered when the monthly gift allowance is restored
    """

    transaction_id: Optional[str] = Field(None, description="Ledger transaction ID")
    uid: str = Field(..., description="User ID")
    gift_credit: int = Field(..., description="gift_credit after reset")
    paid_credit: int = Field(..., description="paid_credit (unchanged)")
    timestamp: datetime = Field(default_factory=_utcnow)


class CreditGiftClearedEventData(BaseModel):
    """
    Event: credit.gift_cleared
    Triggered when the gift allowance is removed after an entitlement expires
    """

    transaction_id: Optional[str] = Field(None, description="Ledger transaction ID")
    uid: str = Field(..., description="User ID")
    cleared_amount: int = Field(..., description="gift_credit removed")
    paid_credit: int = Field(..., description="paid_credit (unchanged)")
    timestamp: datetime = Field(default_factory=_utcnow)


class CreditRefundedEventData(BaseModel):
    """
    Event: credit.refunded
    Triggered when purchased credits are taken back
    """

    transaction_id: Optional[str] = Field(None, description="Ledger transaction ID")
    uid: str = Field(..., description="User ID")
    requested_amount: int = Field(..., description="Refund amount requested")
    refunded_amount: int = Field(..., description="paid_credit actually removed")
    paid_after: int = Field(..., description="paid_credit after refund")
    reason: Optional[str] = Field(None, description="Refund reason")
    timestamp: datetime = Field(default_factory=_utcnow)

