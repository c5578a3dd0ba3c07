# Overview: Static transition table for the shipment batch lifecycle; pure lookups, no I/O.

"""
Shipment Batch State Graph

LIFECYCLE:
1. PENDING: Batch created, lines attached
2. PREPARING: Being packed (set through a batch update)
3. DISPATCHED: Left the warehouse
4. IN_TRANSIT: Handed to the carrier
5. PENDING_RECEIPT: Receiver scheduled the pickup
6. RECEIVED: Receiver confirmed the goods (the only delivered status)

Carrier, destination, notes and status may be edited only while the batch
is PENDING or PREPARING. A batch may only be opened while the parent
requisition is in a dispatch-eligible status, which includes statuses after
the first shipment so deliveries can go out in several waves.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional

from .state_graph import RequisitionStatus, Role, parse_role


class BatchStatus(str, Enum):
    PENDING = "PENDING"
    PREPARING = "PREPARING"
    DISPATCHED = "DISPATCHED"
    IN_TRANSIT = "IN_TRANSIT"
    PENDING_RECEIPT = "PENDING_RECEIPT"
    RECEIVED = "RECEIVED"


class BatchAction(str, Enum):
    PREPARE = "prepare"
    DISPATCH = "dispatch"
    TRANSIT = "transit"
    SCHEDULE_PICKUP = "schedule_pickup"
    RECEIVE = "receive"


MUTABLE_BATCH_STATUSES = frozenset({BatchStatus.PENDING, BatchStatus.PREPARING})
PICKUP_ELIGIBLE_STATUSES = frozenset({BatchStatus.DISPATCHED, BatchStatus.IN_TRANSIT})
DELIVERED_BATCH_STATUSES = frozenset({BatchStatus.RECEIVED})
LEFT_WAREHOUSE_STATUSES = frozenset({
    BatchStatus.DISPATCHED,
    BatchStatus.IN_TRANSIT,
    BatchStatus.PENDING_RECEIPT,
    BatchStatus.RECEIVED,
})

BATCH_ELIGIBLE_REQUISITION_STATUSES = frozenset({
    RequisitionStatus.READY_TO_DISPATCH,
    RequisitionStatus.PURCHASING,
    RequisitionStatus.SHIPPED,
    RequisitionStatus.PARTIALLY_DELIVERED,
})

BATCH_MANAGER_ROLES = frozenset({Role.LOGISTICS, Role.ADMIN})
BATCH_RECEIVER_ROLES = frozenset({Role.RECEIVER, Role.ADMIN})


@dataclass(frozen=True)
class BatchTransition:
    from_status: BatchStatus
    to_status: BatchStatus
    action: BatchAction
    allowed_roles: frozenset


_B = BatchStatus

BATCH_TRANSITIONS: tuple[BatchTransition, ...] = (
    BatchTransition(_B.PENDING, _B.PREPARING, BatchAction.PREPARE, BATCH_MANAGER_ROLES),
    BatchTransition(_B.PENDING, _B.DISPATCHED, BatchAction.DISPATCH, BATCH_MANAGER_ROLES),
    BatchTransition(_B.PREPARING, _B.DISPATCHED, BatchAction.DISPATCH, BATCH_MANAGER_ROLES),
    BatchTransition(_B.DISPATCHED, _B.IN_TRANSIT, BatchAction.TRANSIT, BATCH_MANAGER_ROLES),
    BatchTransition(_B.DISPATCHED, _B.PENDING_RECEIPT, BatchAction.SCHEDULE_PICKUP, BATCH_RECEIVER_ROLES),
    BatchTransition(_B.IN_TRANSIT, _B.PENDING_RECEIPT, BatchAction.SCHEDULE_PICKUP, BATCH_RECEIVER_ROLES),
    BatchTransition(_B.DISPATCHED, _B.RECEIVED, BatchAction.RECEIVE, BATCH_RECEIVER_ROLES),
    BatchTransition(_B.IN_TRANSIT, _B.RECEIVED, BatchAction.RECEIVE, BATCH_RECEIVER_ROLES),
    BatchTransition(_B.PENDING_RECEIPT, _B.RECEIVED, BatchAction.RECEIVE, BATCH_RECEIVER_ROLES),
)

_BATCH_TRANSITIONS_BY_KEY: Mapping[tuple[BatchStatus, BatchAction], BatchTransition] = MappingProxyType({
    (t.from_status, t.action): t for t in BATCH_TRANSITIONS
})

# Roles allowed to take each action at all, independent of the source status
_ACTION_ROLES: Mapping[BatchAction, frozenset] = MappingProxyType({
    t.action: t.allowed_roles for t in BATCH_TRANSITIONS
})


def parse_batch_status(value: BatchStatus | str | None) -> Optional[BatchStatus]:
    if isinstance(value, BatchStatus) or value is None:
        return value
    try:
        return BatchStatus(value)
    except ValueError:
        return None


def _find_batch_transition(
    status: BatchStatus | str,
    action: BatchAction,
) -> Optional[BatchTransition]:
    """Edge for (status, action) regardless of role."""
    status = parse_batch_status(status)
    if status is None:
        return None
    return _BATCH_TRANSITIONS_BY_KEY.get((status, action))


def action_allowed_for(action: BatchAction, role: Role | str | None) -> bool:
    """True if ``role`` may take ``action`` from at least one status."""
    return parse_role(role) in _ACTION_ROLES.get(action, frozenset())


def next_batch_status(
    status: BatchStatus | str,
    action: BatchAction,
    role: Role | str | None,
) -> Optional[BatchStatus]:
    transition = _find_batch_transition(status, action)
    if transition is None or parse_role(role) not in transition.allowed_roles:
        return None
    return transition.to_status


def is_mutable(status: BatchStatus | str) -> bool:
    return parse_batch_status(status) in MUTABLE_BATCH_STATUSES


def is_delivered(status: BatchStatus | str) -> bool:
    return parse_batch_status(status) in DELIVERED_BATCH_STATUSES


def has_left_warehouse(status: BatchStatus | str) -> bool:
    return parse_batch_status(status) in LEFT_WAREHOUSE_STATUSES


def can_schedule_pickup(status: BatchStatus | str, role: Role | str | None) -> bool:
    return next_batch_status(status, BatchAction.SCHEDULE_PICKUP, role) is not None


def accepts_new_batches(requisition_status: RequisitionStatus | str) -> bool:
    """True if a batch may be opened for a requisition in this status."""
    try:
        return RequisitionStatus(requisition_status) in BATCH_ELIGIBLE_REQUISITION_STATUSES
    except ValueError:
        return False
