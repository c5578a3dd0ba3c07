from __future__ import annotations

from ..extensions import db
from reqflow.time_utils import to_utc_z


class Notification(db.Model):
    """
    In-app notification addressed to one user.

    Rows are written by the database notification sink inside the same
    transaction as the workflow action that requested them, so a rolled-back
    action never leaves a notification behind. Delivery to devices (push,
    email, sockets) is someone else's job; they read from this table.
    """
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_user_read", "user_id", "is_read"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    requisition_id = db.Column(db.Integer, db.ForeignKey("requisitions.id"), nullable=True, index=True)

    # APPROVAL_PENDING, STATUS_CHANGED, REJECTED, DELIVERED
    type = db.Column(db.String(32), nullable=False)
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)

    is_read = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "requisition_id": self.requisition_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "is_read": self.is_read,
            "created_at": to_utc_z(self.created_at),
        }
