from __future__ import annotations

from ..extensions import db
from reqflow.time_utils import to_utc_z


class ShipmentBatch(db.Model):
    """
    A discrete physical dispatch covering part of a requisition's approved items.

    LIFECYCLE:
    1. PENDING: Created with its lines
    2. PREPARING: Being packed
    3. DISPATCHED: Left the warehouse
    4. IN_TRANSIT: With the carrier
    5. PENDING_RECEIPT: Receiver scheduled the pickup
    6. RECEIVED: Receiver confirmed the goods

    Batch numbers are sequential per requisition (1, 2, 3, ...). The unique
    constraint turns a numbering race between two creators into a conflict
    instead of a duplicate.
    """
    __tablename__ = "shipment_batches"
    __table_args__ = (
        db.UniqueConstraint("requisition_id", "batch_number", name="uq_shipment_batches_requisition_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    requisition_id = db.Column(db.Integer, db.ForeignKey("requisitions.id"), nullable=False, index=True)
    batch_number = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(32), nullable=False, default="PENDING", index=True)

    carrier = db.Column(db.String(255), nullable=True)
    destination = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Set only by schedule-pickup
    estimated_pickup_date = db.Column(db.DateTime(timezone=True), nullable=True)
    pickup_note = db.Column(db.Text, nullable=True)

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    receiver_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    dispatched_at = db.Column(db.DateTime(timezone=True), nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)

    requisition = db.relationship("Requisition", backref=db.backref("batches", lazy=True, order_by="ShipmentBatch.batch_number"))
    created_by = db.relationship("User", foreign_keys=[created_by_id])
    receiver = db.relationship("User", foreign_keys=[receiver_id])

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "requisition_id": self.requisition_id,
            "batch_number": self.batch_number,
            "status": self.status,
            "carrier": self.carrier,
            "destination": self.destination,
            "notes": self.notes,
            "estimated_pickup_date": to_utc_z(self.estimated_pickup_date),
            "pickup_note": self.pickup_note,
            "created_by_id": self.created_by_id,
            "receiver_id": self.receiver_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "dispatched_at": to_utc_z(self.dispatched_at),
            "received_at": to_utc_z(self.received_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class BatchLineItem(db.Model):
    """
    Quantity of one requisition item included in one batch.

    WHY received_quantity: the receiver may count fewer units than were
    shipped. Reconciliation still works on shipped quantities; the received
    count is kept for the delivery record.
    """
    __tablename__ = "batch_line_items"
    __table_args__ = (
        db.UniqueConstraint("batch_id", "requisition_item_id", name="uq_batch_line_items_batch_item"),
        db.CheckConstraint("shipped_quantity > 0", name="ck_batch_line_items_shipped_positive"),
        db.CheckConstraint(
            "received_quantity IS NULL OR (received_quantity >= 0 AND received_quantity <= shipped_quantity)",
            name="ck_batch_line_items_received_bounds",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("shipment_batches.id"), nullable=False, index=True)
    requisition_item_id = db.Column(db.Integer, db.ForeignKey("requisition_items.id"), nullable=False, index=True)

    shipped_quantity = db.Column(db.Integer, nullable=False)
    received_quantity = db.Column(db.Integer, nullable=True)

    batch = db.relationship("ShipmentBatch", backref=db.backref("lines", lazy=True, order_by="BatchLineItem.id"))
    requisition_item = db.relationship("RequisitionItem")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "batch_id": self.batch_id,
            "requisition_item_id": self.requisition_item_id,
            "shipped_quantity": self.shipped_quantity,
            "received_quantity": self.received_quantity,
        }
