# Overview: Notification requests produced by the workflow and the sinks that accept them.

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol

from ..models import Notification, User


class NotificationType(str, Enum):
    APPROVAL_PENDING = "APPROVAL_PENDING"
    STATUS_CHANGED = "STATUS_CHANGED"
    REJECTED = "REJECTED"
    DELIVERED = "DELIVERED"


@dataclass(frozen=True)
class NotificationRequest:
    """
    What the engine wants said, and to whom.

    Recipients are the union of every active user holding one of ``roles``
    and the explicit ``user_ids``. Resolving that set is the sink's job.
    """
    type: NotificationType
    title: str
    message: str
    roles: tuple = ()
    user_ids: tuple = ()
    requisition_id: Optional[int] = None

    def __post_init__(self):
        if not self.roles and not self.user_ids:
            raise ValueError("NotificationRequest needs at least one role or user id")


class NotificationSink(Protocol):
    def send(self, request: NotificationRequest) -> None:
        ...


class DatabaseNotificationSink:
    """
    Writes one Notification row per resolved recipient.

    Rows are added to the caller's session and flushed, never committed, so
    they live or die with the surrounding workflow transaction. Inactive
    users are skipped, including explicitly addressed ones.
    """

    def __init__(self, session):
        self.session = session

    def resolve_recipients(self, request: NotificationRequest) -> list[int]:
        role_codes = [getattr(role, "value", role) for role in request.roles]
        query = self.session.query(User.id).filter(User.is_active.is_(True))

        recipients: set[int] = set()
        if role_codes:
            recipients.update(row.id for row in query.filter(User.role.in_(role_codes)))
        if request.user_ids:
            recipients.update(row.id for row in query.filter(User.id.in_(list(request.user_ids))))
        return sorted(recipients)

    def send(self, request: NotificationRequest) -> None:
        for user_id in self.resolve_recipients(request):
            self.session.add(Notification(
                user_id=user_id,
                requisition_id=request.requisition_id,
                type=request.type.value,
                title=request.title,
                message=request.message,
            ))
        self.session.flush()


@dataclass
class RecordingNotificationSink:
    """In-memory sink for tests and dry runs; keeps requests in send order."""
    requests: list = field(default_factory=list)

    def send(self, request: NotificationRequest) -> None:
        self.requests.append(request)

    def of_type(self, notification_type: NotificationType) -> list:
        return [r for r in self.requests if r.type == notification_type]

    def clear(self) -> None:
        self.requests.clear()
