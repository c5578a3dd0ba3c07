from __future__ import annotations

from ..extensions import db
from reqflow.time_utils import to_utc_z


class User(db.Model):
    """
    Staff and requester accounts known to the workflow.

    WHY: Every transition must be attributable, and role-addressed
    notifications fan out to the active users holding that role.
    Authentication happens upstream; this table only records identity
    and the single role a user acts under.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.Index("ix_users_role_active", "role", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    username = db.Column(db.String(64), nullable=False, unique=True, index=True)
    email = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(255), nullable=True)

    # REQUESTER, SECURITY, OPERATIONS, MANAGEMENT, LOGISTICS, ADMINISTRATION, RECEIVER, ADMIN
    role = db.Column(db.String(32), nullable=False, default="REQUESTER")

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def display_name(self) -> str:
        return self.full_name or self.username

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
