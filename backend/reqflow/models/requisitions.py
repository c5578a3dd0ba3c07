from __future__ import annotations

from ..extensions import db
from reqflow.time_utils import to_utc_z


class Requisition(db.Model):
    """
    Request for materials or equipment moving through the approval workflow.

    LIFECYCLE (see services/state_graph.py):
    DRAFT -> SECURITY_REVIEW -> MANAGEMENT_REVIEW -> LOGISTICS_REVIEW
    -> PURCHASING / READY_TO_DISPATCH -> SHIPPED -> PARTIALLY_DELIVERED
    -> FULLY_DELIVERED, with a rejected-* terminal status at each gate.

    WHY no version_id_col: status is the optimistic precondition. Every
    status write is a compare-and-swap on this column (WHERE status = :seen),
    issued by the persistence layer, never by ORM attribute assignment.
    """
    __tablename__ = "requisitions"
    __table_args__ = (
        db.Index("ix_requisitions_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Display number (e.g., "REQ-2026-0001")
    number = db.Column(db.String(32), nullable=False, unique=True)

    requester_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    purpose = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(32), nullable=False, default="DRAFT")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    requester = db.relationship("User", foreign_keys=[requester_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "number": self.number,
            "requester_id": self.requester_id,
            "purpose": self.purpose,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class RequisitionItem(db.Model):
    """
    One requested line of a requisition.

    Removed items stay in the table for audit integrity but are ignored by
    every workflow and quantity calculation. approved_quantity stays NULL
    until a reviewer sets it; until then the requested quantity applies.

    status follows services/item_state_graph.py and, like the requisition
    status, is only written by compare-and-swap.
    """
    __tablename__ = "requisition_items"
    __table_args__ = (
        db.CheckConstraint("requested_quantity > 0", name="ck_requisition_items_requested_positive"),
        db.CheckConstraint(
            "approved_quantity IS NULL OR (approved_quantity >= 0 AND approved_quantity <= requested_quantity)",
            name="ck_requisition_items_approved_bounds",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    requisition_id = db.Column(db.Integer, db.ForeignKey("requisitions.id"), nullable=False, index=True)

    description = db.Column(db.String(255), nullable=False)
    requested_quantity = db.Column(db.Integer, nullable=False)
    approved_quantity = db.Column(db.Integer, nullable=True)

    status = db.Column(
        db.String(32), nullable=False, default="PENDING_CLASSIFICATION", server_default="PENDING_CLASSIFICATION"
    )

    # Purchase validation (items that have to be bought)
    purchase_note = db.Column(db.Text, nullable=True)
    purchase_validated_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    purchase_validated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    purchase_received_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Soft delete
    removed = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    requisition = db.relationship("Requisition", backref=db.backref("items", lazy=True, order_by="RequisitionItem.id"))

    @property
    def effective_approved_quantity(self) -> int:
        if self.approved_quantity is None:
            return self.requested_quantity
        return self.approved_quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "requisition_id": self.requisition_id,
            "description": self.description,
            "requested_quantity": self.requested_quantity,
            "approved_quantity": self.approved_quantity,
            "status": self.status,
            "purchase_note": self.purchase_note,
            "purchase_validated_by_id": self.purchase_validated_by_id,
            "purchase_validated_at": to_utc_z(self.purchase_validated_at),
            "purchase_received_at": to_utc_z(self.purchase_received_at),
            "removed": self.removed,
            "created_at": to_utc_z(self.created_at),
        }


class StatusHistoryEntry(db.Model):
    """
    Append-only audit record of a status change or a standalone comment.

    RULES:
    - Written only by the workflow engine, in the same transaction as the
      status change it records
    - Never updated or deleted
    - Comment-only entries carry previous_status == new_status
    """
    __tablename__ = "status_history"
    __table_args__ = (
        db.Index("ix_status_history_requisition_created", "requisition_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    requisition_id = db.Column(db.Integer, db.ForeignKey("requisitions.id"), nullable=False, index=True)

    previous_status = db.Column(db.String(32), nullable=False)
    new_status = db.Column(db.String(32), nullable=False)

    actor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    comment = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    actor = db.relationship("User", foreign_keys=[actor_id])

    @property
    def is_comment_only(self) -> bool:
        return self.previous_status == self.new_status

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "requisition_id": self.requisition_id,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "actor_id": self.actor_id,
            "comment": self.comment,
            "created_at": to_utc_z(self.created_at),
        }
