"""
Entitlement Diff Engine

Compares two snapshots of a customer's entitlement map and reports which
entitlements became active and which expired. Pure and synchronous.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from .models import EntitlementDiff, EntitlementRecord


def parse_entitlement_snapshot(raw: Any) -> Dict[str, EntitlementRecord]:
    """Parse a raw entitlement map; non-mappings are treated as empty"""
    if not isinstance(raw, Mapping):
        return {}
    return {str(key): EntitlementRecord.from_raw(value) for key, value in raw.items()}


def is_entitlement_active(record: Optional[EntitlementRecord], now: datetime) -> bool:
    """
    An explicit boolean flag wins. Otherwise the entitlement is active iff it
    has an expiry strictly later than now. Missing records are inactive.
    """
    if record is None:
        return False
    if record.is_active_flag is not None:
        return record.is_active_flag
    if record.expires_at is None:
        return False
    return record.expires_at > now


def has_active_entitlement(raw: Any, now: Optional[datetime] = None) -> bool:
    """True if any entitlement in the raw map is active"""
    now = now or datetime.now(timezone.utc)
    return any(is_entitlement_active(record, now) for record in parse_entitlement_snapshot(raw).values())


def compute_entitlement_diff(
    before: Any,
    after: Any,
    now: Optional[datetime] = None,
) -> EntitlementDiff:
    """
    Derive activation and expiry transitions between two snapshots.

    Args:
        before: Raw entitlement map before the change (or None)
        after: Raw entitlement map after the change (or None)
        now: Evaluation instant, defaults to the current UTC time

    Returns:
        EntitlementDiff with disjoint activated/expired key sets and the keys
        whose raw entries could not be parsed
    """
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    before_records = parse_entitlement_snapshot(before)
    after_records = parse_entitlement_snapshot(after)

    diff = EntitlementDiff()

    for key, record in after_records.items():
        if record.malformed:
            diff.malformed.add(key)

        was_active = is_entitlement_active(before_records.get(key), now)
        is_now_active = is_entitlement_active(record, now)

        if not was_active and is_now_active:
            diff.activated.add(key)
        elif was_active and not is_now_active:
            diff.expired.add(key)

    for key, record in before_records.items():
        if key in after_records:
            continue
        if is_entitlement_active(record, now):
            diff.expired.add(key)

    return diff


__all__ = [
    "parse_entitlement_snapshot",
    "is_entitlement_active",
    "has_active_entitlement",
    "compute_entitlement_diff",
]
