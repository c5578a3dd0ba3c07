# Overview: Static transition table for the requisition lifecycle; pure lookups, no I/O.

"""
Requisition State Graph

STATE MACHINE:
    DRAFT -> SECURITY_REVIEW -> MANAGEMENT_REVIEW -> LOGISTICS_REVIEW
          -> (PURCHASING ->) READY_TO_DISPATCH -> SHIPPED
          -> PARTIALLY_DELIVERED -> FULLY_DELIVERED

    Each review gate can reject into its own terminal status:
    SECURITY_REVIEW   -> REJECTED_BY_SECURITY
    MANAGEMENT_REVIEW -> REJECTED_BY_MANAGEMENT
    PURCHASING        -> REJECTED_BY_ADMINISTRATION

RULES:
1. Every edge is unidirectional; nothing returns to a prior status.
2. Terminal statuses have no outgoing edges for any role.
3. Only role membership grants an edge. Ownership is checked by the engine
   for submit and never grants approval or rejection.

The table is indexed once at import time by (status, action); callers never
scan the raw list.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional


class Role(str, Enum):
    """Role codes, stored verbatim in users.role."""

    REQUESTER = "REQUESTER"
    SECURITY = "SECURITY"
    OPERATIONS = "OPERATIONS"
    MANAGEMENT = "MANAGEMENT"
    LOGISTICS = "LOGISTICS"
    ADMINISTRATION = "ADMINISTRATION"
    RECEIVER = "RECEIVER"
    ADMIN = "ADMIN"


class RequisitionStatus(str, Enum):
    DRAFT = "DRAFT"
    SECURITY_REVIEW = "SECURITY_REVIEW"
    MANAGEMENT_REVIEW = "MANAGEMENT_REVIEW"
    REJECTED_BY_SECURITY = "REJECTED_BY_SECURITY"
    REJECTED_BY_MANAGEMENT = "REJECTED_BY_MANAGEMENT"
    LOGISTICS_REVIEW = "LOGISTICS_REVIEW"
    PURCHASING = "PURCHASING"
    REJECTED_BY_ADMINISTRATION = "REJECTED_BY_ADMINISTRATION"
    READY_TO_DISPATCH = "READY_TO_DISPATCH"
    SHIPPED = "SHIPPED"
    PARTIALLY_DELIVERED = "PARTIALLY_DELIVERED"
    FULLY_DELIVERED = "FULLY_DELIVERED"


class WorkflowAction(str, Enum):
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    PROCESS = "process"
    DISPATCH = "dispatch"
    DELIVER = "deliver"


STATUS_LABELS: Mapping[RequisitionStatus, str] = MappingProxyType({
    RequisitionStatus.DRAFT: "Draft",
    RequisitionStatus.SECURITY_REVIEW: "Security review",
    RequisitionStatus.MANAGEMENT_REVIEW: "Management review",
    RequisitionStatus.REJECTED_BY_SECURITY: "Rejected by security",
    RequisitionStatus.REJECTED_BY_MANAGEMENT: "Rejected by management",
    RequisitionStatus.LOGISTICS_REVIEW: "Logistics review",
    RequisitionStatus.PURCHASING: "Purchasing",
    RequisitionStatus.REJECTED_BY_ADMINISTRATION: "Rejected by administration",
    RequisitionStatus.READY_TO_DISPATCH: "Ready to dispatch",
    RequisitionStatus.SHIPPED: "Shipped",
    RequisitionStatus.PARTIALLY_DELIVERED: "Partially delivered",
    RequisitionStatus.FULLY_DELIVERED: "Fully delivered",
})


TERMINAL_STATUSES = frozenset({
    RequisitionStatus.REJECTED_BY_SECURITY,
    RequisitionStatus.REJECTED_BY_MANAGEMENT,
    RequisitionStatus.REJECTED_BY_ADMINISTRATION,
    RequisitionStatus.FULLY_DELIVERED,
})

PENDING_APPROVAL_STATUSES = frozenset({
    RequisitionStatus.SECURITY_REVIEW,
    RequisitionStatus.MANAGEMENT_REVIEW,
    RequisitionStatus.PURCHASING,
})


@dataclass(frozen=True)
class Transition:
    """
    One legal edge of the requisition graph.

    Attributes:
        from_status: Status the requisition must be in
        to_status: Status after the edge is taken
        action: Workflow action that takes the edge
        allowed_roles: Roles that may take the edge
        requires_comment: Whether a justification comment is mandatory
    """
    from_status: RequisitionStatus
    to_status: RequisitionStatus
    action: WorkflowAction
    allowed_roles: frozenset
    requires_comment: bool = False

    def allows(self, role: Role | str | None) -> bool:
        return _coerce_role(role) in self.allowed_roles


def _edge(from_status, to_status, action, roles, requires_comment=False) -> Transition:
    return Transition(from_status, to_status, action, frozenset(roles), requires_comment)


_S = RequisitionStatus
_A = WorkflowAction
_R = Role

ALLOWED_TRANSITIONS: tuple[Transition, ...] = (
    # Submit draft -> straight to security validation
    _edge(_S.DRAFT, _S.SECURITY_REVIEW, _A.SUBMIT, {_R.REQUESTER, _R.ADMIN, _R.ADMINISTRATION}),

    # Security gate
    _edge(_S.SECURITY_REVIEW, _S.MANAGEMENT_REVIEW, _A.APPROVE, {_R.SECURITY, _R.ADMIN}),
    _edge(_S.SECURITY_REVIEW, _S.REJECTED_BY_SECURITY, _A.REJECT, {_R.SECURITY, _R.ADMIN}, requires_comment=True),

    # Management gate
    _edge(_S.MANAGEMENT_REVIEW, _S.LOGISTICS_REVIEW, _A.APPROVE, {_R.MANAGEMENT, _R.ADMIN}),
    _edge(_S.MANAGEMENT_REVIEW, _S.REJECTED_BY_MANAGEMENT, _A.REJECT, {_R.MANAGEMENT, _R.ADMIN}, requires_comment=True),

    # Logistics decides between stock and purchase
    _edge(_S.LOGISTICS_REVIEW, _S.PURCHASING, _A.PROCESS, {_R.LOGISTICS, _R.ADMIN}),
    _edge(_S.LOGISTICS_REVIEW, _S.READY_TO_DISPATCH, _A.PROCESS, {_R.LOGISTICS, _R.ADMIN}),

    # Purchase approval
    _edge(_S.PURCHASING, _S.READY_TO_DISPATCH, _A.APPROVE, {_R.ADMINISTRATION, _R.ADMIN}),
    _edge(_S.PURCHASING, _S.REJECTED_BY_ADMINISTRATION, _A.REJECT, {_R.ADMINISTRATION, _R.ADMIN}, requires_comment=True),

    # Dispatch
    _edge(_S.READY_TO_DISPATCH, _S.SHIPPED, _A.DISPATCH, {_R.LOGISTICS, _R.ADMIN}),

    # Delivery
    _edge(_S.SHIPPED, _S.PARTIALLY_DELIVERED, _A.DELIVER, {_R.RECEIVER, _R.LOGISTICS, _R.ADMIN}),
    _edge(_S.SHIPPED, _S.FULLY_DELIVERED, _A.DELIVER, {_R.RECEIVER, _R.LOGISTICS, _R.ADMIN}),
    _edge(_S.PARTIALLY_DELIVERED, _S.FULLY_DELIVERED, _A.DELIVER, {_R.RECEIVER, _R.LOGISTICS, _R.ADMIN}),
)


def _build_indexes():
    by_status: dict[RequisitionStatus, list[Transition]] = {status: [] for status in RequisitionStatus}
    by_status_action: dict[tuple[RequisitionStatus, WorkflowAction], list[Transition]] = {}
    by_edge: dict[tuple[RequisitionStatus, RequisitionStatus], Transition] = {}
    for t in ALLOWED_TRANSITIONS:
        by_status[t.from_status].append(t)
        by_status_action.setdefault((t.from_status, t.action), []).append(t)
        by_edge[(t.from_status, t.to_status)] = t
    return (
        MappingProxyType({k: tuple(v) for k, v in by_status.items()}),
        MappingProxyType({k: tuple(v) for k, v in by_status_action.items()}),
        MappingProxyType(by_edge),
    )


_TRANSITIONS_BY_STATUS, _TRANSITIONS_BY_STATUS_ACTION, _TRANSITIONS_BY_EDGE = _build_indexes()


# Fixed gate -> rejected-status mapping used by the reject action
REJECTION_TARGETS: Mapping[RequisitionStatus, RequisitionStatus] = MappingProxyType({
    _S.SECURITY_REVIEW: _S.REJECTED_BY_SECURITY,
    _S.MANAGEMENT_REVIEW: _S.REJECTED_BY_MANAGEMENT,
    _S.PURCHASING: _S.REJECTED_BY_ADMINISTRATION,
})

# Narrower downstream map for the coarse "process" action (logistics,
# purchasing, dispatch and delivery leg). Kept separate from the general
# table so approve and process never widen each other's role sets.
PROCESS_TARGETS = frozenset({
    _S.PURCHASING,
    _S.READY_TO_DISPATCH,
    _S.SHIPPED,
    _S.PARTIALLY_DELIVERED,
    _S.FULLY_DELIVERED,
})

PROCESS_TRANSITIONS: Mapping[RequisitionStatus, frozenset] = MappingProxyType({
    _S.LOGISTICS_REVIEW: frozenset({_S.PURCHASING, _S.READY_TO_DISPATCH}),
    _S.PURCHASING: frozenset({_S.READY_TO_DISPATCH}),
    _S.READY_TO_DISPATCH: frozenset({_S.SHIPPED}),
    _S.SHIPPED: frozenset({_S.PARTIALLY_DELIVERED, _S.FULLY_DELIVERED}),
    _S.PARTIALLY_DELIVERED: frozenset({_S.FULLY_DELIVERED}),
})

# Role expected to act once a requisition lands in a status
NEXT_APPROVER_ROLE: Mapping[RequisitionStatus, Role] = MappingProxyType({
    _S.SECURITY_REVIEW: _R.SECURITY,
    _S.MANAGEMENT_REVIEW: _R.MANAGEMENT,
    _S.LOGISTICS_REVIEW: _R.LOGISTICS,
    _S.PURCHASING: _R.ADMINISTRATION,
})


def _coerce_status(status: RequisitionStatus | str | None) -> Optional[RequisitionStatus]:
    if isinstance(status, RequisitionStatus) or status is None:
        return status
    try:
        return RequisitionStatus(status)
    except ValueError:
        return None


def _coerce_role(role: Role | str | None) -> Optional[Role]:
    if isinstance(role, Role) or role is None:
        return role
    try:
        return Role(role)
    except ValueError:
        return None


def _coerce_action(action: WorkflowAction | str | None) -> Optional[WorkflowAction]:
    if isinstance(action, WorkflowAction) or action is None:
        return action
    try:
        return WorkflowAction(action)
    except ValueError:
        return None


def parse_status(value: RequisitionStatus | str | None) -> Optional[RequisitionStatus]:
    """Return the enum member for a raw status string, or None if unknown."""
    return _coerce_status(value)


def parse_role(value: Role | str | None) -> Optional[Role]:
    """Return the enum member for a raw role code, or None if unknown."""
    return _coerce_role(value)


def status_label(status: RequisitionStatus | str) -> str:
    """Human-readable status name; unknown values are returned as-is."""
    parsed = _coerce_status(status)
    if parsed is None:
        return str(status)
    return STATUS_LABELS[parsed]


def available_transitions(
    status: RequisitionStatus | str,
    role: Role | str | None,
) -> list[Transition]:
    """
    Edges leaving ``status`` that ``role`` may take.

    Unknown statuses or roles yield an empty list.
    """
    status = _coerce_status(status)
    role = _coerce_role(role)
    if status is None or role is None:
        return []
    return [t for t in _TRANSITIONS_BY_STATUS[status] if role in t.allowed_roles]


def can_transition(
    from_status: RequisitionStatus | str,
    to_status: RequisitionStatus | str,
    role: Role | str | None,
) -> Optional[Transition]:
    """Return the edge from -> to if ``role`` may take it, else None."""
    from_status = _coerce_status(from_status)
    to_status = _coerce_status(to_status)
    if from_status is None or to_status is None:
        return None
    transition = _TRANSITIONS_BY_EDGE.get((from_status, to_status))
    if transition is None or not transition.allows(role):
        return None
    return transition


def find_edge(
    from_status: RequisitionStatus | str,
    to_status: RequisitionStatus | str,
) -> Optional[Transition]:
    """The edge from -> to regardless of role, or None."""
    from_status = _coerce_status(from_status)
    to_status = _coerce_status(to_status)
    if from_status is None or to_status is None:
        return None
    return _TRANSITIONS_BY_EDGE.get((from_status, to_status))


def find_transition(
    from_status: RequisitionStatus | str,
    action: WorkflowAction | str,
    role: Role | str | None,
) -> Optional[Transition]:
    """First edge for (status, action) that ``role`` may take."""
    from_status = _coerce_status(from_status)
    action = _coerce_action(action)
    if from_status is None or action is None:
        return None
    for transition in _TRANSITIONS_BY_STATUS_ACTION.get((from_status, action), ()):
        if transition.allows(role):
            return transition
    return None


def next_status(
    from_status: RequisitionStatus | str,
    action: WorkflowAction | str,
    role: Role | str | None,
) -> Optional[RequisitionStatus]:
    """
    Destination of (status, action) for ``role``, or None when no edge exists.

    For actions with several destinations (process, deliver) the first edge
    in table order is returned; callers needing a specific destination use
    can_transition().
    """
    transition = find_transition(from_status, action, role)
    return transition.to_status if transition else None


def has_action(status: RequisitionStatus | str, action: WorkflowAction | str) -> bool:
    """True if any role may take ``action`` from ``status``."""
    status = _coerce_status(status)
    action = _coerce_action(action)
    if status is None or action is None:
        return False
    return (status, action) in _TRANSITIONS_BY_STATUS_ACTION


def rejection_target(status: RequisitionStatus | str) -> Optional[RequisitionStatus]:
    status = _coerce_status(status)
    if status is None:
        return None
    return REJECTION_TARGETS.get(status)


def process_targets(status: RequisitionStatus | str) -> frozenset:
    status = _coerce_status(status)
    if status is None:
        return frozenset()
    return PROCESS_TRANSITIONS.get(status, frozenset())


def is_terminal(status: RequisitionStatus | str) -> bool:
    """True for any rejected-* status and FULLY_DELIVERED."""
    return _coerce_status(status) in TERMINAL_STATUSES


def is_pending_approval(status: RequisitionStatus | str) -> bool:
    """True for the two review gates and PURCHASING."""
    return _coerce_status(status) in PENDING_APPROVAL_STATUSES


def next_approver_role(status: RequisitionStatus | str) -> Optional[Role]:
    status = _coerce_status(status)
    if status is None:
        return None
    return NEXT_APPROVER_ROLE.get(status)


def get_permission_matrix() -> dict[str, dict[str, list[str]]]:
    """
    Role -> action -> list of source statuses, for admin screens and docs.
    """
    matrix: dict[str, dict[str, list[str]]] = {role.value: {} for role in Role}
    for t in ALLOWED_TRANSITIONS:
        for role in t.allowed_roles:
            sources = matrix[role.value].setdefault(t.action.value, [])
            if t.from_status.value not in sources:
                sources.append(t.from_status.value)
    return matrix
