# Overview: Pure quantity arithmetic linking shipment batches to the parent requisition's delivery status.

"""
Batch Reconciliation

WHY: A requisition may be delivered in several waves. Whether it is
partially or fully delivered is not stored independently; it is derived
from what the batches carried against what was approved.

RULES:
1. Removed items are ignored everywhere.
2. An item's effective approved quantity is approved_quantity, or
   requested_quantity while approval has not set one.
3. Allocation (creating batches) counts every batch, whatever its status:
   shipped totals per item may never exceed the effective approved quantity.
4. Delivery counts only batches in a delivered status (RECEIVED).
5. Fully delivered: at least one batch delivered and, for every item,
   delivered shipped quantity == effective approved quantity.
   Partially delivered: at least one batch delivered otherwise.

All functions take plain objects (ORM rows or anything with the same
attributes) and never touch the session.
"""

from __future__ import annotations

from collections import Counter
from typing import Iterable, Optional, Sequence

from ..errors import ValidationFailed
from .batch_state_graph import is_delivered
from .state_graph import RequisitionStatus


def effective_approved_quantity(item) -> int:
    if item.approved_quantity is None:
        return item.requested_quantity
    return item.approved_quantity


def active_items(items: Iterable) -> list:
    return [item for item in items if not item.removed]


def shipped_totals(batches: Iterable, *, delivered_only: bool = False) -> dict[int, int]:
    """Sum shipped_quantity per requisition item across ``batches``."""
    totals: Counter = Counter()
    for batch in batches:
        if delivered_only and not is_delivered(batch.status):
            continue
        for line in batch.lines:
            totals[line.requisition_item_id] += line.shipped_quantity
    return dict(totals)


def remaining_quantities(items: Iterable, batches: Iterable) -> dict[int, int]:
    """Quantity still available for new batches, per active item."""
    shipped = shipped_totals(batches)
    return {
        item.id: max(effective_approved_quantity(item) - shipped.get(item.id, 0), 0)
        for item in active_items(items)
    }


def check_allocation(
    items: Iterable,
    batches: Iterable,
    requested_lines: Sequence[tuple[int, int]],
) -> list[tuple[int, int]]:
    """
    Validate proposed batch lines against the requisition's items.

    Args:
        items: All items of the requisition (removed ones included)
        batches: All existing batches of the requisition
        requested_lines: (requisition_item_id, shipped_quantity) pairs

    Returns:
        The lines, unchanged, when every rule holds

    Raises:
        ValidationFailed: empty line set, non-positive quantity, duplicate
            item, item not on this requisition, removed item, or a quantity
            over the remaining approved amount
    """
    if not requested_lines:
        raise ValidationFailed("A batch must contain at least one item")

    items_by_id = {item.id: item for item in items}
    remaining = remaining_quantities(items_by_id.values(), batches)
    seen: set[int] = set()

    for item_id, quantity in requested_lines:
        if quantity <= 0:
            raise ValidationFailed(f"Shipped quantity for item {item_id} must be positive")
        if item_id in seen:
            raise ValidationFailed(f"Item {item_id} appears more than once in the batch")
        seen.add(item_id)

        item = items_by_id.get(item_id)
        if item is None:
            raise ValidationFailed(f"Item {item_id} does not belong to this requisition")
        if item.removed:
            raise ValidationFailed(f"Item {item_id} has been removed from the requisition")

        available = remaining[item_id]
        if quantity > available:
            raise ValidationFailed(
                f"Item {item_id}: shipping {quantity} would exceed the approved quantity "
                f"({effective_approved_quantity(item)}, {available} remaining)"
            )

    return list(requested_lines)


def reconcile(items: Iterable, batches: Iterable) -> Optional[RequisitionStatus]:
    """
    Delivery status implied by the batches.

    Returns:
        FULLY_DELIVERED, PARTIALLY_DELIVERED, or None when nothing has been
        delivered yet
    """
    batches = list(batches)
    if not any(is_delivered(batch.status) for batch in batches):
        return None

    delivered = shipped_totals(batches, delivered_only=True)
    for item in active_items(items):
        if delivered.get(item.id, 0) != effective_approved_quantity(item):
            return RequisitionStatus.PARTIALLY_DELIVERED
    return RequisitionStatus.FULLY_DELIVERED
