from __future__ import annotations
from datetime import datetime
from reqflow.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any, Optional, Sequence

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationFailed
from .services.batch_state_graph import MUTABLE_BATCH_STATUSES
from .services.item_state_graph import CLASSIFICATION_PATHS


@dataclass(frozen=True)
class ModelValidationPolicy:
    """Fields clients are allowed to set (security boundary)."""
    writable_fields: frozenset


# Batch fields editable while the batch is PENDING or PREPARING
BATCH_PATCH_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"carrier", "destination", "notes", "status"}),
)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion for quantities.

    Accepts ints (not bools) and plain digit strings; rejects floats,
    decimals and scientific notation.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationFailed(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e3")
        if 'e' in stripped.lower():
            raise ValidationFailed(f"{field} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationFailed(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationFailed(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationFailed(f"{field} must be an integer, not a decimal")
    raise ValidationFailed(f"{field} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationFailed(f"{col.key} must be true or false")

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationFailed(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationFailed(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationFailed(f"{col.key} must be a datetime")

    if isinstance(coltype, (String, Text)):
        if not isinstance(value, str):
            raise ValidationFailed(f"{col.key} must be a string")
        return value.strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    Returns a cleaned patch dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationFailed("Invalid JSON payload")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationFailed(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationFailed(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationFailed(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationFailed(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationFailed(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_batch_patch(patch: dict) -> None:
    # Only the pre-dispatch statuses may be set through a batch edit
    if "status" in patch and patch["status"] not in {s.value for s in MUTABLE_BATCH_STATUSES}:
        raise ValidationFailed(
            f"status must be one of PENDING, PREPARING (got {patch['status']})"
        )


def validate_batch_patch(payload: dict) -> dict:
    from .models import ShipmentBatch

    if not isinstance(payload, dict):
        raise ValidationFailed("Invalid JSON payload")
    if not payload:
        raise ValidationFailed("Batch update must change at least one field")
    patch = validate_payload(model=ShipmentBatch, payload=payload, policy=BATCH_PATCH_POLICY)
    enforce_rules_batch_patch(patch)
    return patch


def parse_batch_lines(items: Sequence | None) -> list[tuple[int, int]]:
    """
    Normalize requested batch lines to (requisition_item_id, quantity) pairs.

    Each entry may be a mapping with ``requisition_item_id`` (or ``item_id``)
    and ``shipped_quantity`` (or ``quantity``), or a 2-tuple. Quantities are
    coerced but not range-checked here; allocation rules live in the
    reconciler.
    """
    if items is None:
        raise ValidationFailed("items are required")
    if not isinstance(items, (list, tuple)):
        raise ValidationFailed("items must be a list")

    lines: list[tuple[int, int]] = []
    for idx, entry in enumerate(items, start=1):
        if isinstance(entry, dict):
            item_id = entry.get("requisition_item_id", entry.get("item_id"))
            quantity = entry.get("shipped_quantity", entry.get("quantity"))
        elif isinstance(entry, (tuple, list)) and len(entry) == 2:
            item_id, quantity = entry
        else:
            raise ValidationFailed(f"Line {idx}: expected an item reference and a quantity")

        if item_id is None:
            raise ValidationFailed(f"Line {idx}: requisition_item_id is required")
        if quantity is None:
            raise ValidationFailed(f"Line {idx}: shipped_quantity is required")

        lines.append((coerce_int(item_id, "requisition_item_id"), coerce_int(quantity, "shipped_quantity")))
    return lines


def _entry_list(entries: Any, field: str) -> list:
    if not isinstance(entries, (list, tuple)):
        raise ValidationFailed(f"{field} must be a list")
    if not entries:
        raise ValidationFailed(f"{field} cannot be empty")
    return list(entries)


def _item_id(entry: dict, idx: int, seen: set) -> int:
    raw = entry.get("item_id", entry.get("requisition_item_id"))
    if raw is None:
        raise ValidationFailed(f"Line {idx}: item_id is required")
    item_id = coerce_int(raw, "item_id")
    if item_id in seen:
        raise ValidationFailed(f"Item {item_id} appears more than once")
    seen.add(item_id)
    return item_id


def parse_item_classifications(entries: Any) -> list[tuple[int, str, Optional[int]]]:
    """
    Normalize classification entries to (item_id, classification, approved_quantity).

    Each entry is a mapping with ``item_id``, ``classification`` (IN_STOCK or
    PURCHASE_REQUIRED) and an optional positive ``approved_quantity``.
    """
    parsed = []
    seen: set[int] = set()
    for idx, entry in enumerate(_entry_list(entries, "items"), start=1):
        if not isinstance(entry, dict):
            raise ValidationFailed(f"Line {idx}: expected an object")
        item_id = _item_id(entry, idx, seen)

        classification = entry.get("classification")
        if not isinstance(classification, str) or classification not in CLASSIFICATION_PATHS:
            raise ValidationFailed(
                f"Line {idx}: classification must be one of {', '.join(CLASSIFICATION_PATHS)}"
            )

        quantity = entry.get("approved_quantity")
        if quantity is not None:
            quantity = coerce_int(quantity, "approved_quantity")
            if quantity <= 0:
                raise ValidationFailed(f"Line {idx}: approved_quantity must be positive")

        parsed.append((item_id, classification, quantity))
    return parsed


def parse_purchase_decisions(entries: Any) -> list[tuple[int, bool, Optional[str]]]:
    """Normalize purchase decisions to (item_id, approved, note)."""
    parsed = []
    seen: set[int] = set()
    for idx, entry in enumerate(_entry_list(entries, "items"), start=1):
        if not isinstance(entry, dict):
            raise ValidationFailed(f"Line {idx}: expected an object")
        item_id = _item_id(entry, idx, seen)

        approved = entry.get("approved")
        if not isinstance(approved, bool):
            raise ValidationFailed(f"Line {idx}: approved must be true or false")

        note = entry.get("note")
        if note is not None and not isinstance(note, str):
            raise ValidationFailed(f"Line {idx}: note must be a string")

        parsed.append((item_id, approved, (note or "").strip() or None))
    return parsed


def parse_item_ids(entries: Any) -> list[int]:
    ids = []
    seen: set[int] = set()
    for idx, raw in enumerate(_entry_list(entries, "item_ids"), start=1):
        entry = raw if isinstance(raw, dict) else {"item_id": raw}
        ids.append(_item_id(entry, idx, seen))
    return ids
