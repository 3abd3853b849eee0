"""
Purchase Diff Engine

Detects one-off purchases that appeared between two snapshots of a
customer's purchase history (product key -> ordered list of purchases).
"""

from typing import Any, List, Mapping, Optional

from .models import NewPurchase


def _purchase_list(snapshot: Any, key: str) -> List[Any]:
    if not isinstance(snapshot, Mapping):
        return []
    value = snapshot.get(key)
    return value if isinstance(value, list) else []


def purchase_identifier(purchase: Any) -> Optional[str]:
    """id, falling back to store_transaction_id"""
    if not isinstance(purchase, Mapping):
        return None
    for field in ("id", "store_transaction_id"):
        value = purchase.get(field)
        if value is not None and value != "":
            return str(value)
    return None


def compute_new_purchases(before: Any, after: Any) -> List[NewPurchase]:
    """
    Emit one NewPurchase per product whose purchase list grew.

    Only the last element of a grown list is reported, however many
    purchases were appended in one update.
    """
    if not isinstance(after, Mapping):
        return []

    purchases: List[NewPurchase] = []
    for key in after:
        after_list = _purchase_list(after, key)
        before_list = _purchase_list(before, key)
        if len(after_list) > len(before_list):
            purchases.append(
                NewPurchase(
                    product_id=str(key),
                    purchase_id=purchase_identifier(after_list[-1]),
                )
            )
    return purchases


__all__ = ["compute_new_purchases", "purchase_identifier"]
