# Overview: Persistence collaborator for the workflow engine; SQLAlchemy-backed implementation.

"""
Workflow Store

WHY: The engine only needs a handful of loads and guarded writes. Putting
them behind one object keeps the engine free of query code, and lets tests
wrap or replace individual operations (for example, to simulate another
actor committing between read and write).

RULES:
- load_* re-read the stored row and raise NotFound when it does not exist
- Status writes are compare-and-swap on the observed status (Conflict on miss)
- Everything is flushed, nothing is committed, except by transaction()
"""

from __future__ import annotations

from typing import Iterable, Optional, Protocol

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..errors import Conflict, NotFound
from ..extensions import db
from ..models import (
    BatchLineItem,
    Requisition,
    RequisitionItem,
    ShipmentBatch,
    StatusHistoryEntry,
    User,
)
from ..time_utils import utcnow
from .audit_service import AuditEntry, append_status_history, list_status_history
from .concurrency import atomic, compare_and_swap_status, load_fresh


class WorkflowStore(Protocol):
    def transaction(self): ...
    def load_requisition(self, requisition_id: int) -> Requisition: ...
    def load_items(self, requisition_id: int, include_removed: bool = False) -> list[RequisitionItem]: ...
    def load_item(self, item_id: int) -> RequisitionItem: ...
    def save_requisition_status(self, requisition_id: int, expected_status: str, new_status: str) -> Requisition: ...
    def save_item_approved_quantity(self, item_id: int, quantity: int) -> RequisitionItem: ...
    def save_item_status(self, item_id: int, expected_status: str, new_status: str, **values) -> RequisitionItem: ...
    def load_batch(self, batch_id: int) -> ShipmentBatch: ...
    def list_batches(self, requisition_id: int) -> list[ShipmentBatch]: ...
    def count_batches(self, requisition_id: int) -> int: ...
    def add_batch(self, **values) -> ShipmentBatch: ...
    def save_batch(self, batch_id: int, expected_status: str, **values) -> ShipmentBatch: ...
    def save_line_received_quantity(self, line_id: int, quantity: int) -> None: ...
    def append_audit_entry(self, entry: AuditEntry) -> StatusHistoryEntry: ...
    def list_audit_entries(self, requisition_id: int) -> list[StatusHistoryEntry]: ...
    def get_user(self, user_id: int) -> Optional[User]: ...


class SqlAlchemyWorkflowStore:
    """WorkflowStore over a SQLAlchemy session (db.session by default)."""

    def __init__(self, session=None):
        self.session = session if session is not None else db.session

    def transaction(self):
        return atomic(self.session)

    # Requisitions

    def load_requisition(self, requisition_id: int) -> Requisition:
        requisition = load_fresh(self.session, Requisition, requisition_id)
        if requisition is None:
            raise NotFound(f"Requisition {requisition_id} not found")
        return requisition

    def load_items(self, requisition_id: int, include_removed: bool = False) -> list[RequisitionItem]:
        query = (
            self.session.query(RequisitionItem)
            .populate_existing()
            .filter(RequisitionItem.requisition_id == requisition_id)
        )
        if not include_removed:
            query = query.filter(RequisitionItem.removed.is_(False))
        return query.order_by(RequisitionItem.id.asc()).all()

    def load_item(self, item_id: int) -> RequisitionItem:
        item = load_fresh(self.session, RequisitionItem, item_id)
        if item is None:
            raise NotFound(f"Item {item_id} not found")
        return item

    def save_requisition_status(self, requisition_id: int, expected_status: str, new_status: str) -> Requisition:
        compare_and_swap_status(
            self.session,
            Requisition,
            requisition_id,
            getattr(expected_status, "value", expected_status),
            {"status": getattr(new_status, "value", new_status), "updated_at": utcnow()},
        )
        return self.load_requisition(requisition_id)

    def save_item_approved_quantity(self, item_id: int, quantity: int) -> RequisitionItem:
        item = self.load_item(item_id)
        item.approved_quantity = quantity
        self.session.flush()
        return item

    def save_item_status(self, item_id: int, expected_status: str, new_status: str, **values) -> RequisitionItem:
        values["status"] = getattr(new_status, "value", new_status)
        compare_and_swap_status(
            self.session,
            RequisitionItem,
            item_id,
            getattr(expected_status, "value", expected_status),
            values,
        )
        return self.load_item(item_id)

    # Batches

    def load_batch(self, batch_id: int) -> ShipmentBatch:
        batch = load_fresh(self.session, ShipmentBatch, batch_id)
        if batch is None:
            raise NotFound(f"Batch {batch_id} not found")
        return batch

    def list_batches(self, requisition_id: int) -> list[ShipmentBatch]:
        return (
            self.session.query(ShipmentBatch)
            .populate_existing()
            .filter(ShipmentBatch.requisition_id == requisition_id)
            .order_by(ShipmentBatch.batch_number.asc())
            .all()
        )

    def count_batches(self, requisition_id: int) -> int:
        return (
            self.session.query(func.count(ShipmentBatch.id))
            .filter(ShipmentBatch.requisition_id == requisition_id)
            .scalar()
        ) or 0

    def add_batch(
        self,
        *,
        requisition_id: int,
        batch_number: int,
        created_by_id: int,
        lines: Iterable[tuple[int, int]],
        carrier: Optional[str] = None,
        destination: Optional[str] = None,
        notes: Optional[str] = None,
        status: str = "PENDING",
    ) -> ShipmentBatch:
        batch = ShipmentBatch(
            requisition_id=requisition_id,
            batch_number=batch_number,
            status=status,
            carrier=carrier,
            destination=destination,
            notes=notes,
            created_by_id=created_by_id,
        )
        for item_id, quantity in lines:
            batch.lines.append(BatchLineItem(requisition_item_id=item_id, shipped_quantity=quantity))
        self.session.add(batch)
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise Conflict(
                f"Batch number {batch_number} was taken for requisition {requisition_id}; retry"
            ) from exc
        return batch

    def save_batch(self, batch_id: int, expected_status: str, **values) -> ShipmentBatch:
        values.setdefault("status", getattr(expected_status, "value", expected_status))
        values["status"] = getattr(values["status"], "value", values["status"])
        values["updated_at"] = utcnow()
        compare_and_swap_status(
            self.session,
            ShipmentBatch,
            batch_id,
            getattr(expected_status, "value", expected_status),
            values,
        )
        return self.load_batch(batch_id)

    def save_line_received_quantity(self, line_id: int, quantity: int) -> None:
        line = self.session.get(BatchLineItem, line_id)
        if line is None:
            raise NotFound(f"Batch line {line_id} not found")
        line.received_quantity = quantity
        self.session.flush()

    # Audit

    def append_audit_entry(self, entry: AuditEntry) -> StatusHistoryEntry:
        return append_status_history(self.session, entry)

    def list_audit_entries(self, requisition_id: int) -> list[StatusHistoryEntry]:
        return list_status_history(self.session, requisition_id)

    # Users

    def get_user(self, user_id: int) -> Optional[User]:
        return self.session.get(User, user_id)

    def users_by_id(self, user_ids: Iterable[int]) -> dict[int, User]:
        ids = set(user_ids)
        if not ids:
            return {}
        return {u.id: u for u in self.session.query(User).filter(User.id.in_(ids))}
