# backend/reqflow/routes/batches.py
"""
Shipment batch API routes.
"""
from flask import Blueprint, jsonify, g, current_app

from reqflow.decorators import require_identity, require_json_object
from reqflow.errors import WorkflowError, http_status_for
from reqflow.extensions import db, get_workflow_engine


batches_bp = Blueprint("batches", __name__, url_prefix="/api/batches")


def _workflow_error(e: WorkflowError):
    return jsonify(e.to_dict()), http_status_for(e)


def _internal_error(message: str, *args):
    db.session.rollback()
    current_app.logger.exception(message, *args)
    return jsonify({"error": "Internal server error"}), 500


@batches_bp.route("", methods=["POST"])
@require_identity
@require_json_object
def create_batch():
    """
    Open a shipment batch for a requisition.

    Request body:
    {
        "requisition_id": int,
        "items": [{"requisition_item_id": int, "shipped_quantity": int}, ...],
        "carrier": str (optional),
        "destination": str (optional),
        "notes": str (optional)
    }

    Returns:
        201: Batch created (status PENDING)
        400: Requisition not dispatch-eligible, or invalid lines
        403: Not logistics/admin
        404: Requisition not found
        409: Concurrent change or batch number race
    """
    data = g.body
    if data.get("requisition_id") is None:
        return jsonify({"error": "validation_failed", "message": "requisition_id is required"}), 400

    try:
        batch = get_workflow_engine().create_batch(
            data["requisition_id"],
            g.actor,
            data.get("items"),
            carrier=data.get("carrier"),
            destination=data.get("destination"),
            notes=data.get("notes"),
        )
        current_app.logger.info(
            "Batch %s created for requisition %s by user %s",
            batch.batch_number, batch.requisition_id, g.actor.user_id,
        )
        return jsonify(batch.to_dict()), 201
    except WorkflowError as e:
        return _workflow_error(e)
    except Exception:
        return _internal_error("Failed to create batch for requisition %s", data.get("requisition_id"))


@batches_bp.route("/<int:batch_id>", methods=["PATCH"])
@require_identity
@require_json_object
def update_batch(batch_id: int):
    """Edit carrier, destination, notes or status while the batch is PENDING/PREPARING."""
    data = g.body

    try:
        batch = get_workflow_engine().update_batch(batch_id, g.actor, data)
        return jsonify(batch.to_dict()), 200
    except WorkflowError as e:
        return _workflow_error(e)
    except Exception:
        return _internal_error("Failed to update batch %s", batch_id)


@batches_bp.route("/<int:batch_id>/dispatch", methods=["POST"])
@require_identity
def dispatch_batch(batch_id: int):
    try:
        batch = get_workflow_engine().dispatch_batch(batch_id, g.actor)
        current_app.logger.info("Batch %s dispatched by user %s", batch_id, g.actor.user_id)
        return jsonify(batch.to_dict()), 200
    except WorkflowError as e:
        return _workflow_error(e)
    except Exception:
        return _internal_error("Failed to dispatch batch %s", batch_id)


@batches_bp.route("/<int:batch_id>/in-transit", methods=["POST"])
@require_identity
def mark_in_transit(batch_id: int):
    try:
        batch = get_workflow_engine().mark_in_transit(batch_id, g.actor)
        return jsonify(batch.to_dict()), 200
    except WorkflowError as e:
        return _workflow_error(e)
    except Exception:
        return _internal_error("Failed to mark batch %s in transit", batch_id)


@batches_bp.route("/<int:batch_id>/schedule-pickup", methods=["POST"])
@require_identity
@require_json_object
def schedule_pickup(batch_id: int):
    """
    Receiver schedules the pickup of a dispatched batch.

    Request body:
    {
        "estimated_date": "YYYY-MM-DD" or ISO-8601 datetime,
        "note": str (at least 10 characters)
    }
    """
    data = g.body

    try:
        batch = get_workflow_engine().schedule_pickup(
            batch_id, g.actor, data.get("estimated_date"), data.get("note")
        )
        return jsonify(batch.to_dict()), 200
    except WorkflowError as e:
        return _workflow_error(e)
    except Exception:
        return _internal_error("Failed to schedule pickup for batch %s", batch_id)


@batches_bp.route("/<int:batch_id>/confirm", methods=["POST"])
@require_identity
@require_json_object
def confirm_receipt(batch_id: int):
    """
    Confirm physical receipt of a batch.

    Request body (optional):
    {
        "received": {"<requisition_item_id>": int, ...},
        "notes": str
    }
    """
    data = g.body

    try:
        batch = get_workflow_engine().confirm_receipt(
            batch_id, g.actor, received=data.get("received"), notes=data.get("notes")
        )
        current_app.logger.info("Batch %s received by user %s", batch_id, g.actor.user_id)
        return jsonify(batch.to_dict()), 200
    except WorkflowError as e:
        return _workflow_error(e)
    except Exception:
        return _internal_error("Failed to confirm receipt of batch %s", batch_id)
