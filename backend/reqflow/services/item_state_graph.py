# Overview: Static transition table for the per-item classification lifecycle; pure lookups, no I/O.

"""
Requisition Item State Graph

While a requisition sits in logistics review, each of its items is
classified on its own: either it is taken from stock, or it has to be bought
and the purchase validated by administration first.

STATE MACHINE:
    PENDING_CLASSIFICATION -> IN_STOCK -> READY_TO_DISPATCH
    PENDING_CLASSIFICATION -> PURCHASE_REQUIRED -> PENDING_PURCHASE_VALIDATION
        -> PURCHASE_APPROVED -> IN_STOCK (goods received from the supplier)
        -> PURCHASE_REJECTED
    READY_TO_DISPATCH -> PARTIALLY_DISPATCHED -> DISPATCHED
    READY_TO_DISPATCH -> DISPATCHED

RULES:
1. Logistics (and admin) classify, receive and dispatch; administration (and
   admin) decide on purchases.
2. Only READY_TO_DISPATCH and PARTIALLY_DISPATCHED items may go into a
   shipment batch.
3. A coarse requisition move that skips classification settles the items in
   bulk (see SETTLEMENTS).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional

from .state_graph import RequisitionStatus, Role, parse_role, parse_status


class ItemStatus(str, Enum):
    PENDING_CLASSIFICATION = "PENDING_CLASSIFICATION"
    IN_STOCK = "IN_STOCK"
    PURCHASE_REQUIRED = "PURCHASE_REQUIRED"
    PENDING_PURCHASE_VALIDATION = "PENDING_PURCHASE_VALIDATION"
    PURCHASE_APPROVED = "PURCHASE_APPROVED"
    PURCHASE_REJECTED = "PURCHASE_REJECTED"
    READY_TO_DISPATCH = "READY_TO_DISPATCH"
    PARTIALLY_DISPATCHED = "PARTIALLY_DISPATCHED"
    DISPATCHED = "DISPATCHED"


class ItemAction(str, Enum):
    MARK_IN_STOCK = "mark_in_stock"
    REQUIRE_PURCHASE = "require_purchase"
    RELEASE = "release"
    REQUEST_VALIDATION = "request_validation"
    APPROVE_PURCHASE = "approve_purchase"
    REJECT_PURCHASE = "reject_purchase"
    RECEIVE_PURCHASE = "receive_purchase"
    DISPATCH_PART = "dispatch_part"
    DISPATCH_ALL = "dispatch_all"


ITEM_STATUS_LABELS: Mapping[ItemStatus, str] = MappingProxyType({
    ItemStatus.PENDING_CLASSIFICATION: "Pending classification",
    ItemStatus.IN_STOCK: "In stock",
    ItemStatus.PURCHASE_REQUIRED: "Purchase required",
    ItemStatus.PENDING_PURCHASE_VALIDATION: "Awaiting purchase validation",
    ItemStatus.PURCHASE_APPROVED: "Purchase approved",
    ItemStatus.PURCHASE_REJECTED: "Purchase rejected",
    ItemStatus.READY_TO_DISPATCH: "Ready to dispatch",
    ItemStatus.PARTIALLY_DISPATCHED: "Partially dispatched",
    ItemStatus.DISPATCHED: "Dispatched",
})

CLASSIFIER_ROLES = frozenset({Role.LOGISTICS, Role.ADMIN})
PURCHASE_VALIDATOR_ROLES = frozenset({Role.ADMINISTRATION, Role.ADMIN})

DISPATCHABLE_ITEM_STATUSES = frozenset({
    ItemStatus.READY_TO_DISPATCH,
    ItemStatus.PARTIALLY_DISPATCHED,
})


@dataclass(frozen=True)
class ItemTransition:
    from_status: ItemStatus
    to_status: ItemStatus
    action: ItemAction
    allowed_roles: frozenset

    def allows(self, role: Role | str | None) -> bool:
        return parse_role(role) in self.allowed_roles


_I = ItemStatus
_A = ItemAction

ITEM_TRANSITIONS: tuple[ItemTransition, ...] = (
    # Classification
    ItemTransition(_I.PENDING_CLASSIFICATION, _I.IN_STOCK, _A.MARK_IN_STOCK, CLASSIFIER_ROLES),
    ItemTransition(_I.PENDING_CLASSIFICATION, _I.PURCHASE_REQUIRED, _A.REQUIRE_PURCHASE, CLASSIFIER_ROLES),
    ItemTransition(_I.IN_STOCK, _I.READY_TO_DISPATCH, _A.RELEASE, CLASSIFIER_ROLES),
    ItemTransition(_I.PURCHASE_REQUIRED, _I.PENDING_PURCHASE_VALIDATION, _A.REQUEST_VALIDATION, CLASSIFIER_ROLES),

    # Purchase validation
    ItemTransition(_I.PENDING_PURCHASE_VALIDATION, _I.PURCHASE_APPROVED, _A.APPROVE_PURCHASE, PURCHASE_VALIDATOR_ROLES),
    ItemTransition(_I.PENDING_PURCHASE_VALIDATION, _I.PURCHASE_REJECTED, _A.REJECT_PURCHASE, PURCHASE_VALIDATOR_ROLES),
    ItemTransition(_I.PURCHASE_APPROVED, _I.IN_STOCK, _A.RECEIVE_PURCHASE, CLASSIFIER_ROLES),

    # Dispatch
    ItemTransition(_I.READY_TO_DISPATCH, _I.PARTIALLY_DISPATCHED, _A.DISPATCH_PART, CLASSIFIER_ROLES),
    ItemTransition(_I.READY_TO_DISPATCH, _I.DISPATCHED, _A.DISPATCH_ALL, CLASSIFIER_ROLES),
    ItemTransition(_I.PARTIALLY_DISPATCHED, _I.DISPATCHED, _A.DISPATCH_ALL, CLASSIFIER_ROLES),
)

# Classification choice -> the steps that take a pending item there
CLASSIFICATION_PATHS: Mapping[str, tuple] = MappingProxyType({
    "IN_STOCK": (_A.MARK_IN_STOCK, _A.RELEASE),
    "PURCHASE_REQUIRED": (_A.REQUIRE_PURCHASE, _A.REQUEST_VALIDATION),
})

_ITEM_TRANSITIONS_BY_KEY: Mapping[tuple[ItemStatus, ItemAction], ItemTransition] = MappingProxyType({
    (t.from_status, t.action): t for t in ITEM_TRANSITIONS
})


# Item statuses a coarse requisition move settles in bulk, and where they land
SETTLEMENTS: Mapping[RequisitionStatus, tuple[frozenset, ItemStatus]] = MappingProxyType({
    RequisitionStatus.PURCHASING: (
        frozenset({_I.PENDING_CLASSIFICATION, _I.PURCHASE_REQUIRED}),
        _I.PENDING_PURCHASE_VALIDATION,
    ),
    RequisitionStatus.READY_TO_DISPATCH: (
        frozenset({
            _I.PENDING_CLASSIFICATION,
            _I.IN_STOCK,
            _I.PURCHASE_REQUIRED,
            _I.PENDING_PURCHASE_VALIDATION,
            _I.PURCHASE_APPROVED,
        }),
        _I.READY_TO_DISPATCH,
    ),
})


def parse_item_status(value: ItemStatus | str | None) -> Optional[ItemStatus]:
    if isinstance(value, ItemStatus) or value is None:
        return value
    try:
        return ItemStatus(value)
    except ValueError:
        return None


def item_status_label(status: ItemStatus | str) -> str:
    parsed = parse_item_status(status)
    if parsed is None:
        return str(status)
    return ITEM_STATUS_LABELS[parsed]


def next_item_status(
    status: ItemStatus | str,
    action: ItemAction,
    role: Role | str | None,
) -> Optional[ItemStatus]:
    """Destination of (status, action) for ``role``, or None when no edge exists."""
    status = parse_item_status(status)
    if status is None:
        return None
    transition = _ITEM_TRANSITIONS_BY_KEY.get((status, action))
    if transition is None or not transition.allows(role):
        return None
    return transition.to_status


def walk(
    status: ItemStatus | str,
    actions: tuple,
    role: Role | str | None,
) -> Optional[ItemStatus]:
    """
    Apply several actions in order, e.g. MARK_IN_STOCK then RELEASE.

    Returns the final status, or None as soon as one step has no edge for
    ``role``.
    """
    current = parse_item_status(status)
    for action in actions:
        current = next_item_status(current, action, role)
        if current is None:
            return None
    return current


def is_dispatchable(status: ItemStatus | str) -> bool:
    return parse_item_status(status) in DISPATCHABLE_ITEM_STATUSES


def settled_item_status(
    requisition_target: RequisitionStatus | str,
    item_status: ItemStatus | str,
) -> Optional[ItemStatus]:
    """
    Where an item lands when its requisition moves to ``requisition_target``
    without per-item classification; None leaves the item as it is.
    """
    settlement = SETTLEMENTS.get(parse_status(requisition_target))
    if settlement is None:
        return None
    sources, target = settlement
    if parse_item_status(item_status) not in sources:
        return None
    return target


def dispatch_action(shipped: int, approved: int) -> ItemAction:
    """Dispatch action implied by how much of the approved quantity is in batches."""
    if shipped >= approved:
        return ItemAction.DISPATCH_ALL
    return ItemAction.DISPATCH_PART
