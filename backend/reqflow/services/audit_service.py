# Overview: Service-layer operations for the requisition audit trail; append-only status history.

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..models import StatusHistoryEntry
from .state_graph import RequisitionStatus, status_label

"""
Audit Trail Invariants (authoritative)

- Append-only: entries are never updated or deleted.
- Entries are written inside the same DB transaction as the status change
  they record; a rolled-back action leaves no entry behind.
- A comment-only entry has previous_status == new_status.
- Timeline order is (created_at, id): insertion order within a second.
"""


@dataclass(frozen=True)
class AuditEntry:
    """An audit record about to be appended."""
    requisition_id: int
    previous_status: str
    new_status: str
    actor_id: int
    comment: Optional[str] = None

    @property
    def is_comment_only(self) -> bool:
        return self.previous_status == self.new_status


def _status_value(status: RequisitionStatus | str) -> str:
    return status.value if isinstance(status, RequisitionStatus) else str(status)


def transition_entry(
    requisition_id: int,
    previous_status: RequisitionStatus | str,
    new_status: RequisitionStatus | str,
    actor_id: int,
    comment: Optional[str] = None,
) -> AuditEntry:
    return AuditEntry(
        requisition_id=requisition_id,
        previous_status=_status_value(previous_status),
        new_status=_status_value(new_status),
        actor_id=actor_id,
        comment=comment,
    )


def comment_entry(requisition_id: int, status: RequisitionStatus | str, actor_id: int, comment: str) -> AuditEntry:
    value = _status_value(status)
    return AuditEntry(requisition_id, value, value, actor_id, comment)


def append_status_history(session, entry: AuditEntry) -> StatusHistoryEntry:
    """
    Append one audit record.

    - No domain logic here.
    - No deletes/updates of existing entries.
    - created_at is system time (db default).
    """
    row = StatusHistoryEntry(
        requisition_id=entry.requisition_id,
        previous_status=entry.previous_status,
        new_status=entry.new_status,
        actor_id=entry.actor_id,
        comment=entry.comment,
    )
    session.add(row)
    session.flush()  # ensures row.id is assigned without committing
    return row


def list_status_history(session, requisition_id: int) -> list[StatusHistoryEntry]:
    return (
        session.query(StatusHistoryEntry)
        .filter(StatusHistoryEntry.requisition_id == requisition_id)
        .order_by(StatusHistoryEntry.created_at.asc(), StatusHistoryEntry.id.asc())
        .all()
    )


def serialize_timeline(entries, users_by_id: Optional[dict] = None) -> list[dict]:
    """
    Render history rows as the visible timeline.

    Adds human-readable status labels, the actor's display name when known,
    and a ``kind`` of "comment" or "transition".
    """
    users_by_id = users_by_id or {}
    timeline = []
    for entry in entries:
        data = entry.to_dict()
        actor = users_by_id.get(entry.actor_id)
        data["actor_name"] = actor.display_name if actor is not None else None
        data["previous_status_label"] = status_label(entry.previous_status)
        data["new_status_label"] = status_label(entry.new_status)
        data["kind"] = "comment" if entry.previous_status == entry.new_status else "transition"
        timeline.append(data)
    return timeline
