# Overview: Orchestrates requisition and shipment batch state changes; validate, apply, audit, notify.

"""
Requisition Workflow Engine

WHY: A status change is never just a column update. It has to be allowed for
the actor, pass the guard for that action, be recorded in the audit trail,
and tell the right people. Doing those four steps in different places is how
history and reality drift apart.

CONTRACT (every public method):
1. Check the identity context (Unauthenticated)
2. Inside store.transaction(): re-read the row, check permission and guards
3. Apply with a compare-and-swap on the status observed in step 2
4. Append exactly one audit entry per requisition status change
5. Hand notification requests to the sink
6. Commit; any exception rolls back all of the above

ERROR ORDER:
- Structural input problems that need no stored state are reported first
  (short rejection comment, unknown process target, malformed batch lines)
- Then: missing rows (NotFound), no edge for any role (InvalidTransition),
  no edge for this role (Forbidden), guards (ValidationFailed)
- A precondition miss at write time is Conflict

The engine does not log and does not retry. Callers own both.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

from ..errors import Conflict, Forbidden, InvalidTransition, NotFound, Unauthenticated, ValidationFailed
from ..time_utils import coerce_datetime, utcnow
from ..validation import (
    coerce_int,
    parse_batch_lines,
    parse_item_classifications,
    parse_item_ids,
    parse_purchase_decisions,
    validate_batch_patch,
)
from . import batch_reconciler
from .audit_service import comment_entry, transition_entry
from .batch_state_graph import (
    BATCH_MANAGER_ROLES,
    BATCH_RECEIVER_ROLES,
    BatchAction,
    accepts_new_batches,
    action_allowed_for,
    has_left_warehouse,
    is_mutable,
    next_batch_status,
    parse_batch_status,
)
from .item_state_graph import (
    CLASSIFICATION_PATHS,
    ItemAction,
    ItemStatus,
    dispatch_action,
    is_dispatchable,
    item_status_label,
    next_item_status,
    parse_item_status,
    settled_item_status,
    walk,
)
from .notification_service import NotificationRequest, NotificationType
from .permission_service import Capabilities, can_process_to, resolve_capabilities
from .state_graph import (
    PROCESS_TARGETS,
    RequisitionStatus,
    Role,
    WorkflowAction,
    can_transition,
    find_edge,
    find_transition,
    has_action,
    next_approver_role,
    parse_role,
    parse_status,
    process_targets,
    rejection_target,
    status_label,
)


DEFAULT_MIN_COMMENT_LENGTH = 10
DEFAULT_MIN_PICKUP_NOTE_LENGTH = 10


@dataclass(frozen=True)
class Actor:
    """Already-authenticated identity context: who is acting, under which role."""
    user_id: int
    role: Role | str

    @property
    def parsed_role(self) -> Optional[Role]:
        return parse_role(self.role)


def require_actor(actor: Optional[Actor]) -> Actor:
    if actor is None or actor.user_id is None:
        raise Unauthenticated("An authenticated identity is required")
    return actor


class WorkflowEngine:
    """
    Args:
        store: WorkflowStore (see services/persistence.py)
        notifier: NotificationSink (see services/notification_service.py)
        min_comment_length: Minimum stripped length of a rejection comment
        min_pickup_note_length: Minimum stripped length of a pickup note
    """

    def __init__(
        self,
        store,
        notifier,
        *,
        min_comment_length: int = DEFAULT_MIN_COMMENT_LENGTH,
        min_pickup_note_length: int = DEFAULT_MIN_PICKUP_NOTE_LENGTH,
    ):
        self.store = store
        self.notifier = notifier
        self.min_comment_length = min_comment_length
        self.min_pickup_note_length = min_pickup_note_length

    # ------------------------------------------------------------------
    # Requisition actions
    # ------------------------------------------------------------------

    def submit(self, requisition_id: int, actor: Actor):
        actor = require_actor(actor)
        with self.store.transaction():
            requisition = self.store.load_requisition(requisition_id)
            current = parse_status(requisition.status)

            is_owner = requisition.requester_id == actor.user_id
            if not (is_owner or actor.parsed_role == Role.ADMIN):
                raise Forbidden("Only the requester or an admin may submit this requisition")
            if current != RequisitionStatus.DRAFT:
                raise InvalidTransition(
                    f"Cannot submit a requisition in status {requisition.status}"
                )
            if not self.store.load_items(requisition.id):
                raise ValidationFailed("A requisition needs at least one item before it can be submitted")

            target = RequisitionStatus.SECURITY_REVIEW
            requisition = self._apply(requisition, current, target, actor, "Submitted for validation")
            self._notify_next_approver(requisition, target)
            return requisition

    def approve(self, requisition_id: int, actor: Actor, comment: Optional[str] = None):
        actor = require_actor(actor)
        text = _text(comment, "comment")
        with self.store.transaction():
            requisition = self.store.load_requisition(requisition_id)
            current = parse_status(requisition.status)

            if not has_action(current, WorkflowAction.APPROVE):
                raise InvalidTransition(
                    f"A requisition in status {requisition.status} cannot be approved"
                )
            transition = find_transition(current, WorkflowAction.APPROVE, actor.role)
            if transition is None:
                raise Forbidden(
                    f"Role {actor.role} may not approve a requisition in {status_label(current)}"
                )

            text = text or f"Approved by {self._actor_name(actor)}"
            requisition = self._apply(requisition, current, transition.to_status, actor, text)

            self._send(NotificationRequest(
                type=NotificationType.STATUS_CHANGED,
                title=f"Requisition {requisition.number} approved",
                message=f"Requisition {requisition.number} moved to {status_label(transition.to_status)}.",
                user_ids=(requisition.requester_id,),
                requisition_id=requisition.id,
            ))
            self._notify_next_approver(requisition, transition.to_status)
            self._settle_items(requisition.id, transition.to_status)
            return self._catch_up_delivery(requisition, actor)

    def reject(self, requisition_id: int, actor: Actor, comment: Optional[str]):
        actor = require_actor(actor)
        reason = _text(comment, "comment")
        if len(reason) < self.min_comment_length:
            raise ValidationFailed(
                f"A rejection needs a comment of at least {self.min_comment_length} characters"
            )

        with self.store.transaction():
            requisition = self.store.load_requisition(requisition_id)
            current = parse_status(requisition.status)

            target = rejection_target(current)
            if target is None:
                raise InvalidTransition(
                    f"A requisition in status {requisition.status} cannot be rejected"
                )
            transition = find_transition(current, WorkflowAction.REJECT, actor.role)
            if transition is None:
                raise Forbidden(
                    f"Role {actor.role} may not reject a requisition in {status_label(current)}"
                )

            requisition = self._apply(requisition, current, target, actor, reason)

            self._send(NotificationRequest(
                type=NotificationType.REJECTED,
                title=f"Requisition {requisition.number} rejected",
                message=reason,
                user_ids=(requisition.requester_id,),
                requisition_id=requisition.id,
            ))
            return requisition

    def process(self, requisition_id: int, actor: Actor, target_status):
        actor = require_actor(actor)
        target = parse_status(target_status)
        if target not in PROCESS_TARGETS:
            raise ValidationFailed(f"Unsupported target status: {target_status}")

        with self.store.transaction():
            requisition = self.store.load_requisition(requisition_id)
            current = parse_status(requisition.status)

            if target not in process_targets(current):
                raise InvalidTransition(
                    f"Cannot move a requisition from {requisition.status} to {target.value}"
                )
            if not can_process_to(current, target, actor.role):
                raise Forbidden(f"Role {actor.role} may not move a requisition to {target.value}")

            requisition = self._apply(requisition, current, target, actor, f"Status changed to {status_label(target)}")
            self._settle_items(requisition.id, target)
            return self._catch_up_delivery(requisition, actor)

    def add_comment(self, requisition_id: int, actor: Actor, comment: Optional[str]):
        actor = require_actor(actor)
        text = _text(comment, "comment")
        if not text:
            raise ValidationFailed("Comment cannot be blank")

        with self.store.transaction():
            requisition = self.store.load_requisition(requisition_id)
            if not self._capabilities_for(requisition, actor).can_comment:
                raise Forbidden("You cannot comment on this requisition")
            return self.store.append_audit_entry(
                comment_entry(requisition.id, requisition.status, actor.user_id, text)
            )

    def adjust_approved_quantity(self, requisition_id: int, item_id: int, actor: Actor, quantity: Any):
        actor = require_actor(actor)
        quantity = coerce_int(quantity, "approved_quantity")

        with self.store.transaction():
            requisition = self.store.load_requisition(requisition_id)
            if not self._capabilities_for(requisition, actor).can_adjust_quantities:
                raise Forbidden("You cannot adjust quantities on this requisition now")

            item = self.store.load_item(item_id)
            if item.requisition_id != requisition.id or item.removed:
                raise NotFound(f"Item {item_id} not found on requisition {requisition.number}")

            if quantity < 0:
                raise ValidationFailed("approved_quantity must be >= 0")
            if quantity > item.requested_quantity:
                raise ValidationFailed(
                    f"approved_quantity cannot exceed the requested quantity ({item.requested_quantity})"
                )
            shipped = batch_reconciler.shipped_totals(self.store.list_batches(requisition.id)).get(item.id, 0)
            if quantity < shipped:
                raise ValidationFailed(f"approved_quantity cannot be below the {shipped} already shipped")

            # Status must not have moved while we were checking
            self.store.save_requisition_status(requisition.id, requisition.status, requisition.status)
            return self.store.save_item_approved_quantity(item.id, quantity)

    def capabilities(self, requisition_id: int, actor: Actor) -> Capabilities:
        actor = require_actor(actor)
        requisition = self.store.load_requisition(requisition_id)
        capabilities = self._capabilities_for(requisition, actor)
        if not capabilities.can_view:
            raise Forbidden("You cannot view this requisition")
        return capabilities

    def timeline(self, requisition_id: int, actor: Actor):
        actor = require_actor(actor)
        requisition = self.store.load_requisition(requisition_id)
        if not self._capabilities_for(requisition, actor).can_view:
            raise Forbidden("You cannot view this requisition")
        return self.store.list_audit_entries(requisition.id)

    # ------------------------------------------------------------------
    # Item classification and purchase validation
    # ------------------------------------------------------------------

    def classify_items(self, requisition_id: int, actor: Actor, classifications: Sequence):
        """
        Classify items under logistics review as taken from stock or to be bought.

        Stock items become READY_TO_DISPATCH; purchase items wait for
        administration in PENDING_PURCHASE_VALIDATION. Both get their
        approved quantity set. Once no item is left unclassified the
        requisition moves on: to PURCHASING when anything needs validating,
        otherwise straight to READY_TO_DISPATCH.
        """
        actor = require_actor(actor)
        entries = parse_item_classifications(classifications)

        with self.store.transaction():
            requisition = self.store.load_requisition(requisition_id)
            return self._classify(requisition, actor, entries)

    def process_mixed(
        self,
        requisition_id: int,
        actor: Actor,
        classifications: Sequence,
        carrier: Optional[str] = None,
        destination: Optional[str] = None,
        notes: Optional[str] = None,
    ):
        """
        Classify a requisition that is partly in stock and partly to be bought,
        and ship the stock part without waiting for the purchase.

        Every item must be classified in this call and both kinds must be
        present. The requisition ends in PURCHASING and a new batch holds
        each stock item at its approved quantity.

        Returns:
            (requisition, batch)
        """
        actor = require_actor(actor)
        entries = parse_item_classifications(classifications)
        if {classification for _, classification, _ in entries} != set(CLASSIFICATION_PATHS):
            raise ValidationFailed("A mixed requisition needs both in-stock and purchase items")

        with self.store.transaction():
            requisition = self.store.load_requisition(requisition_id)
            requisition = self._classify(requisition, actor, entries)
            if parse_status(requisition.status) != RequisitionStatus.PURCHASING:
                raise ValidationFailed("Every item must be classified to process a mixed requisition")

            stock_ids = {item_id for item_id, classification, _ in entries if classification == "IN_STOCK"}
            lines = [
                (item.id, batch_reconciler.effective_approved_quantity(item))
                for item in self.store.load_items(requisition.id)
                if item.id in stock_ids
            ]
            batch = self._open_batch(requisition, actor, lines, carrier, destination, notes)
            return self.store.load_requisition(requisition.id), batch

    def validate_purchase(self, requisition_id: int, actor: Actor, decisions: Sequence):
        """
        Record administration's decision on items awaiting purchase validation.

        Rejected purchases drop the item's approved quantity to zero. Once no
        item is left undecided the requisition moves on: REJECTED_BY_ADMINISTRATION
        when every item was refused, otherwise READY_TO_DISPATCH.
        """
        actor = require_actor(actor)
        entries = parse_purchase_decisions(decisions)

        with self.store.transaction():
            requisition = self.store.load_requisition(requisition_id)
            current = parse_status(requisition.status)

            if current != RequisitionStatus.PURCHASING:
                raise InvalidTransition(
                    f"Purchases cannot be validated while the requisition is {requisition.status}"
                )
            if not self._capabilities_for(requisition, actor).can_validate_purchases:
                raise Forbidden("Only administration or admin may validate purchases")

            items = {item.id: item for item in self.store.load_items(requisition.id)}
            validated_at = utcnow()
            approved_count = rejected_count = 0
            for item_id, approved, note in entries:
                item = self._item_of(items, item_id, requisition)
                action = ItemAction.APPROVE_PURCHASE if approved else ItemAction.REJECT_PURCHASE
                target = next_item_status(item.status, action, actor.role)
                if target is None:
                    raise ValidationFailed(
                        f"Item {item_id} is {item_status_label(item.status).lower()}, not awaiting purchase validation"
                    )

                values = {
                    "purchase_note": note,
                    "purchase_validated_by_id": actor.user_id,
                    "purchase_validated_at": validated_at,
                }
                if approved:
                    approved_count += 1
                else:
                    values["approved_quantity"] = 0
                    rejected_count += 1
                self.store.save_item_status(item.id, item.status, target, **values)

            summary = f"Purchase validation: {approved_count} approved, {rejected_count} rejected"
            statuses = {parse_item_status(item.status) for item in self.store.load_items(requisition.id)}

            if ItemStatus.PENDING_PURCHASE_VALIDATION in statuses:
                self.store.save_requisition_status(requisition.id, current, current)
                self.store.append_audit_entry(
                    comment_entry(requisition.id, requisition.status, actor.user_id, summary)
                )
                return self.store.load_requisition(requisition.id)

            if statuses == {ItemStatus.PURCHASE_REJECTED}:
                target = rejection_target(current)
                requisition = self._apply(requisition, current, target, actor, summary)
                self._send(NotificationRequest(
                    type=NotificationType.REJECTED,
                    title=f"Requisition {requisition.number} rejected",
                    message=f"Administration refused every purchase on requisition {requisition.number}.",
                    user_ids=(requisition.requester_id,),
                    requisition_id=requisition.id,
                ))
                return requisition

            transition = find_transition(current, WorkflowAction.APPROVE, actor.role)
            requisition = self._apply(requisition, current, transition.to_status, actor, summary)
            self._send(NotificationRequest(
                type=NotificationType.STATUS_CHANGED,
                title=f"Requisition {requisition.number} purchase validated",
                message=f"Requisition {requisition.number} moved to {status_label(transition.to_status)}.",
                user_ids=(requisition.requester_id,),
                requisition_id=requisition.id,
            ))
            self._notify_ready_to_dispatch(requisition)
            return self._catch_up_delivery(requisition, actor)

    def confirm_purchase_received(self, requisition_id: int, actor: Actor, item_ids: Sequence):
        """Bought goods arrived: approved purchase items become READY_TO_DISPATCH."""
        actor = require_actor(actor)
        ids = parse_item_ids(item_ids)

        with self.store.transaction():
            requisition = self.store.load_requisition(requisition_id)
            if not accepts_new_batches(requisition.status):
                raise InvalidTransition(
                    f"Purchases cannot be received while the requisition is {requisition.status}"
                )
            if not self._capabilities_for(requisition, actor).can_receive_purchases:
                raise Forbidden("Only logistics or admin may receive purchased items")

            items = {item.id: item for item in self.store.load_items(requisition.id)}
            received_at = utcnow()
            received = []
            for item_id in ids:
                item = self._item_of(items, item_id, requisition)
                target = walk(item.status, (ItemAction.RECEIVE_PURCHASE, ItemAction.RELEASE), actor.role)
                if target is None:
                    raise ValidationFailed(f"Item {item_id} has no approved purchase awaiting receipt")
                received.append(
                    self.store.save_item_status(item.id, item.status, target, purchase_received_at=received_at)
                )

            self.store.save_requisition_status(requisition.id, requisition.status, requisition.status)
            self.store.append_audit_entry(comment_entry(
                requisition.id, requisition.status, actor.user_id, f"Purchased items received: {len(received)}"
            ))
            self._send(NotificationRequest(
                type=NotificationType.STATUS_CHANGED,
                title=f"Purchased items received for {requisition.number}",
                message=f"{len(received)} purchased item(s) of requisition {requisition.number} are ready to dispatch.",
                user_ids=(requisition.requester_id,),
                requisition_id=requisition.id,
            ))
            return received

    # ------------------------------------------------------------------
    # Shipment batch actions
    # ------------------------------------------------------------------

    def create_batch(
        self,
        requisition_id: int,
        actor: Actor,
        items: Sequence,
        carrier: Optional[str] = None,
        destination: Optional[str] = None,
        notes: Optional[str] = None,
    ):
        actor = require_actor(actor)
        if actor.parsed_role not in BATCH_MANAGER_ROLES:
            raise Forbidden("Only logistics or admin may create shipment batches")
        lines = parse_batch_lines(items)

        with self.store.transaction():
            requisition = self.store.load_requisition(requisition_id)
            if not accepts_new_batches(requisition.status):
                raise InvalidTransition(
                    f"Batches cannot be created while the requisition is {requisition.status}"
                )

            return self._open_batch(requisition, actor, lines, carrier, destination, notes)

    def update_batch(self, batch_id: int, actor: Actor, patch: Mapping):
        actor = require_actor(actor)
        if actor.parsed_role not in BATCH_MANAGER_ROLES:
            raise Forbidden("Only logistics or admin may edit shipment batches")
        values = validate_batch_patch(dict(patch) if isinstance(patch, Mapping) else patch)

        with self.store.transaction():
            batch = self.store.load_batch(batch_id)
            if not is_mutable(batch.status):
                raise Conflict(f"Batch {batch.batch_number} is {batch.status} and can no longer be edited")

            requested = parse_batch_status(values.get("status"))
            if requested is not None and requested.value != batch.status:
                if next_batch_status(batch.status, BatchAction.PREPARE, actor.role) != requested:
                    raise InvalidTransition(f"Batch cannot move from {batch.status} to {requested.value}")

            return self.store.save_batch(batch.id, batch.status, **values)

    def dispatch_batch(self, batch_id: int, actor: Actor):
        actor = require_actor(actor)
        if not action_allowed_for(BatchAction.DISPATCH, actor.role):
            raise Forbidden("Only logistics or admin may dispatch batches")

        with self.store.transaction():
            batch = self.store.load_batch(batch_id)
            target = next_batch_status(batch.status, BatchAction.DISPATCH, actor.role)
            if target is None:
                raise InvalidTransition(f"Batch {batch.batch_number} cannot be dispatched from {batch.status}")

            requisition = self.store.load_requisition(batch.requisition_id)
            batch = self.store.save_batch(batch.id, batch.status, status=target, dispatched_at=utcnow())

            current = parse_status(requisition.status)
            transition = can_transition(current, RequisitionStatus.SHIPPED, actor.role)
            if transition is not None:
                requisition = self._apply(
                    requisition, current, transition.to_status, actor, f"Batch {batch.batch_number} dispatched"
                )
                self._send(NotificationRequest(
                    type=NotificationType.STATUS_CHANGED,
                    title=f"Requisition {requisition.number} shipped",
                    message=f"Batch {batch.batch_number} of requisition {requisition.number} is on its way.",
                    user_ids=(requisition.requester_id,),
                    requisition_id=requisition.id,
                ))
                # Earlier waves may have been received while the parent waited
                self._catch_up_delivery(requisition, actor)
            return batch

    def mark_in_transit(self, batch_id: int, actor: Actor):
        actor = require_actor(actor)
        if not action_allowed_for(BatchAction.TRANSIT, actor.role):
            raise Forbidden("Only logistics or admin may update batch transit")

        with self.store.transaction():
            batch = self.store.load_batch(batch_id)
            target = next_batch_status(batch.status, BatchAction.TRANSIT, actor.role)
            if target is None:
                raise InvalidTransition(f"Batch {batch.batch_number} cannot go in transit from {batch.status}")
            return self.store.save_batch(batch.id, batch.status, status=target)

    def schedule_pickup(self, batch_id: int, actor: Actor, estimated_date, note: Optional[str]):
        actor = require_actor(actor)
        if actor.parsed_role not in BATCH_RECEIVER_ROLES:
            raise Forbidden("Only receivers or admin may schedule a pickup")

        try:
            pickup_at = coerce_datetime(estimated_date)
        except ValueError:
            raise ValidationFailed("estimated_date must be an ISO-8601 date")
        if pickup_at is None:
            raise ValidationFailed("estimated_date is required")
        text = _text(note, "note")
        if len(text) < self.min_pickup_note_length:
            raise ValidationFailed(
                f"A pickup note of at least {self.min_pickup_note_length} characters is required"
            )

        with self.store.transaction():
            batch = self.store.load_batch(batch_id)
            target = next_batch_status(batch.status, BatchAction.SCHEDULE_PICKUP, actor.role)
            if target is None:
                raise InvalidTransition(
                    f"A pickup cannot be scheduled for batch {batch.batch_number} in status {batch.status}"
                )

            batch = self.store.save_batch(
                batch.id,
                batch.status,
                status=target,
                estimated_pickup_date=pickup_at,
                pickup_note=text,
                receiver_id=actor.user_id,
            )
            requisition = self.store.load_requisition(batch.requisition_id)
            self._send(NotificationRequest(
                type=NotificationType.STATUS_CHANGED,
                title=f"Pickup scheduled for batch {batch.batch_number}",
                message=(
                    f"Requisition {requisition.number}, batch {batch.batch_number}: "
                    f"pickup expected {pickup_at.date().isoformat()}. {text}"
                ),
                roles=(Role.LOGISTICS,),
                requisition_id=requisition.id,
            ))
            return batch

    def confirm_receipt(
        self,
        batch_id: int,
        actor: Actor,
        received: Optional[Mapping] = None,
        notes: Optional[str] = None,
    ):
        """
        Mark a batch RECEIVED and reconcile the parent requisition.

        ``received`` optionally maps requisition_item_id -> counted quantity;
        lines left out are recorded as received in full.
        """
        actor = require_actor(actor)
        if actor.parsed_role not in BATCH_RECEIVER_ROLES:
            raise Forbidden("Only receivers or admin may confirm receipt")

        with self.store.transaction():
            batch = self.store.load_batch(batch_id)
            target = next_batch_status(batch.status, BatchAction.RECEIVE, actor.role)
            if target is None:
                raise InvalidTransition(f"Batch {batch.batch_number} cannot be received from {batch.status}")

            counts = self._received_counts(batch, received)
            values = {"status": target, "received_at": utcnow(), "receiver_id": actor.user_id}
            if _clean(notes):
                values["notes"] = _clean(notes)
            for line in batch.lines:
                self.store.save_line_received_quantity(line.id, counts[line.id])
            batch = self.store.save_batch(batch.id, batch.status, **values)

            self._reconcile_delivery(batch, actor)
            return batch

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _apply(self, requisition, current: RequisitionStatus, target: RequisitionStatus, actor: Actor, comment):
        """Compare-and-swap the status, then append the matching audit entry."""
        updated = self.store.save_requisition_status(requisition.id, current, target)
        self.store.append_audit_entry(
            transition_entry(requisition.id, current, target, actor.user_id, comment)
        )
        return updated

    def _classify(self, requisition, actor: Actor, entries):
        current = parse_status(requisition.status)
        if current != RequisitionStatus.LOGISTICS_REVIEW:
            raise InvalidTransition(
                f"Items cannot be classified while the requisition is {requisition.status}"
            )
        if not self._capabilities_for(requisition, actor).can_classify_items:
            raise Forbidden("Only logistics or admin may classify items")

        items = {item.id: item for item in self.store.load_items(requisition.id)}
        counts = {classification: 0 for classification in CLASSIFICATION_PATHS}
        for item_id, classification, quantity in entries:
            item = self._item_of(items, item_id, requisition)
            target = walk(item.status, CLASSIFICATION_PATHS[classification], actor.role)
            if target is None:
                raise ValidationFailed(
                    f"Item {item_id} is {item_status_label(item.status).lower()} and cannot be classified"
                )

            approved = quantity if quantity is not None else batch_reconciler.effective_approved_quantity(item)
            if approved <= 0:
                raise ValidationFailed(f"Item {item_id} needs a positive approved_quantity to be classified")
            if approved > item.requested_quantity:
                raise ValidationFailed(
                    f"approved_quantity for item {item_id} cannot exceed the requested quantity ({item.requested_quantity})"
                )

            self.store.save_item_status(item.id, item.status, target, approved_quantity=approved)
            counts[classification] += 1

        summary = (
            f"Items classified: {counts['IN_STOCK']} in stock, "
            f"{counts['PURCHASE_REQUIRED']} require purchase"
        )
        statuses = {parse_item_status(item.status) for item in self.store.load_items(requisition.id)}
        if ItemStatus.PENDING_CLASSIFICATION in statuses:
            self.store.save_requisition_status(requisition.id, current, current)
            self.store.append_audit_entry(comment_entry(requisition.id, requisition.status, actor.user_id, summary))
            return self.store.load_requisition(requisition.id)

        if ItemStatus.PENDING_PURCHASE_VALIDATION in statuses:
            target = RequisitionStatus.PURCHASING
        else:
            target = RequisitionStatus.READY_TO_DISPATCH
        if not can_process_to(current, target, actor.role):
            raise Forbidden(f"Role {actor.role} may not move a requisition to {target.value}")

        requisition = self._apply(requisition, current, target, actor, summary)
        self._send(NotificationRequest(
            type=NotificationType.STATUS_CHANGED,
            title=f"Requisition {requisition.number} classified",
            message=f"Requisition {requisition.number} moved to {status_label(target)}.",
            user_ids=(requisition.requester_id,),
            requisition_id=requisition.id,
        ))
        if target == RequisitionStatus.PURCHASING:
            self._notify_next_approver(requisition, target)
        else:
            self._notify_ready_to_dispatch(requisition)
        return requisition

    def _open_batch(self, requisition, actor: Actor, lines, carrier, destination, notes):
        """Allocate, add the batch, then move each shipped item along its dispatch edge."""
        batches = self.store.list_batches(requisition.id)
        all_items = self.store.load_items(requisition.id, include_removed=True)
        batch_reconciler.check_allocation(all_items, batches, lines)

        items = {item.id: item for item in all_items}
        for item_id, _ in lines:
            if not is_dispatchable(items[item_id].status):
                raise ValidationFailed(
                    f"Item {item_id} is {item_status_label(items[item_id].status).lower()} and cannot be dispatched"
                )

        self.store.save_requisition_status(requisition.id, requisition.status, requisition.status)
        batch = self.store.add_batch(
            requisition_id=requisition.id,
            batch_number=self.store.count_batches(requisition.id) + 1,
            created_by_id=actor.user_id,
            lines=lines,
            carrier=_clean(carrier),
            destination=_clean(destination),
            notes=_clean(notes),
        )

        shipped = batch_reconciler.shipped_totals(batches)
        for item_id, quantity in lines:
            item = items[item_id]
            action = dispatch_action(
                shipped.get(item_id, 0) + quantity, batch_reconciler.effective_approved_quantity(item)
            )
            target = next_item_status(item.status, action, actor.role)
            if target is not None:
                self.store.save_item_status(item.id, item.status, target)
        return batch

    def _settle_items(self, requisition_id: int, target: RequisitionStatus) -> None:
        """Bulk item moves for requisition changes that skipped classification."""
        for item in self.store.load_items(requisition_id):
            settled = settled_item_status(target, item.status)
            if settled is not None:
                self.store.save_item_status(item.id, item.status, settled)

    def _catch_up_delivery(self, requisition, actor: Actor):
        """
        Walk a requisition forward to what its batches already show.

        Batches may be dispatched and even received while the requisition is
        PURCHASING, which has no dispatch or delivery edge. Once it reaches a
        status that has one, READY_TO_DISPATCH -> SHIPPED is taken if any
        batch has left, then SHIPPED -> delivered as the reconciler implies.
        Each step gets its own audit entry. The steps follow from recorded
        batch facts, so they are not gated on the actor's role.
        """
        batches = self.store.list_batches(requisition.id)
        current = parse_status(requisition.status)

        if current == RequisitionStatus.READY_TO_DISPATCH and any(has_left_warehouse(b.status) for b in batches):
            requisition = self._apply(
                requisition, current, RequisitionStatus.SHIPPED, actor, "Batches already dispatched"
            )
            current = RequisitionStatus.SHIPPED
            self._send(NotificationRequest(
                type=NotificationType.STATUS_CHANGED,
                title=f"Requisition {requisition.number} shipped",
                message=f"Requisition {requisition.number} has batches on their way.",
                user_ids=(requisition.requester_id,),
                requisition_id=requisition.id,
            ))

        items = self.store.load_items(requisition.id, include_removed=True)
        target = batch_reconciler.reconcile(items, batches)
        if target is None or target == current or find_edge(current, target) is None:
            return requisition

        if target == RequisitionStatus.FULLY_DELIVERED:
            comment = "Batches already received; all items delivered"
        else:
            comment = "Batches already received"
        requisition = self._apply(requisition, current, target, actor, comment)
        self._send(NotificationRequest(
            type=NotificationType.DELIVERED,
            title=f"Requisition {requisition.number} {status_label(target).lower()}",
            message=f"Received batches of requisition {requisition.number} have been reconciled.",
            user_ids=(requisition.requester_id,),
            requisition_id=requisition.id,
        ))
        return requisition

    def _reconcile_delivery(self, batch, actor: Actor) -> None:
        requisition = self.store.load_requisition(batch.requisition_id)
        items = self.store.load_items(requisition.id, include_removed=True)
        batches = self.store.list_batches(requisition.id)

        target = batch_reconciler.reconcile(items, batches)
        current = parse_status(requisition.status)
        if target is None or target == current:
            return
        if can_transition(current, target, actor.role) is None:
            return

        if target == RequisitionStatus.FULLY_DELIVERED:
            comment = f"Batch {batch.batch_number} received; all items delivered"
        else:
            comment = f"Batch {batch.batch_number} received"
        requisition = self._apply(requisition, current, target, actor, comment)

        self._send(NotificationRequest(
            type=NotificationType.DELIVERED,
            title=f"Requisition {requisition.number} {status_label(target).lower()}",
            message=f"Batch {batch.batch_number} of requisition {requisition.number} has been received.",
            user_ids=(requisition.requester_id,),
            requisition_id=requisition.id,
        ))

    def _received_counts(self, batch, received: Optional[Mapping]) -> dict[int, int]:
        lines_by_item = {line.requisition_item_id: line for line in batch.lines}
        counts = {line.id: line.shipped_quantity for line in batch.lines}
        if not received:
            return counts
        if not isinstance(received, Mapping):
            raise ValidationFailed("received must map requisition_item_id to quantity")

        for raw_item_id, raw_quantity in received.items():
            item_id = coerce_int(raw_item_id, "requisition_item_id")
            line = lines_by_item.get(item_id)
            if line is None:
                raise ValidationFailed(f"Item {item_id} is not part of batch {batch.batch_number}")
            quantity = coerce_int(raw_quantity, "received_quantity")
            if quantity < 0 or quantity > line.shipped_quantity:
                raise ValidationFailed(
                    f"Received quantity for item {item_id} must be between 0 and {line.shipped_quantity}"
                )
            counts[line.id] = quantity
        return counts

    def _capabilities_for(self, requisition, actor: Actor) -> Capabilities:
        active_count = len(self.store.load_items(requisition.id))
        return resolve_capabilities(
            requisition.status,
            actor.role,
            requisition.requester_id == actor.user_id,
            active_count,
        )

    def _notify_next_approver(self, requisition, status: RequisitionStatus) -> None:
        role = next_approver_role(status)
        if role is None:
            return
        self._send(NotificationRequest(
            type=NotificationType.APPROVAL_PENDING,
            title=f"Requisition {requisition.number} awaits {status_label(status).lower()}",
            message=f"Requisition {requisition.number} is waiting for your review.",
            roles=(role,),
            requisition_id=requisition.id,
        ))

    def _notify_ready_to_dispatch(self, requisition) -> None:
        self._send(NotificationRequest(
            type=NotificationType.STATUS_CHANGED,
            title=f"Requisition {requisition.number} ready to dispatch",
            message=f"Requisition {requisition.number} can be put into shipment batches.",
            roles=(Role.LOGISTICS,),
            requisition_id=requisition.id,
        ))

    @staticmethod
    def _item_of(items: Mapping, item_id: int, requisition):
        item = items.get(item_id)
        if item is None:
            raise ValidationFailed(f"Item {item_id} is not an active item of requisition {requisition.number}")
        return item

    def _actor_name(self, actor: Actor) -> str:
        user = self.store.get_user(actor.user_id)
        if user is None:
            return f"user {actor.user_id}"
        return user.display_name

    def _send(self, request: NotificationRequest) -> None:
        self.notifier.send(request)


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _text(value, field: str) -> str:
    """Stripped free text; None reads as empty, anything but a str is rejected."""
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationFailed(f"{field} must be a string")
    return value.strip()
