# backend/reqflow/routes/requisitions.py
"""
Requisition workflow API routes.

Every mutating route hands the request to the WorkflowEngine, which commits
or rolls back on its own. Routes only translate JSON in and out, map error
kinds to status codes, and log.
"""
from flask import Blueprint, jsonify, g, current_app

from reqflow.decorators import require_identity, require_json_object
from reqflow.errors import WorkflowError, http_status_for
from reqflow.extensions import db, get_workflow_engine
from reqflow.services.audit_service import serialize_timeline


requisitions_bp = Blueprint("requisitions", __name__, url_prefix="/api/requisitions")


def _workflow_error(e: WorkflowError):
    return jsonify(e.to_dict()), http_status_for(e)


def _internal_error(message: str, *args):
    db.session.rollback()
    current_app.logger.exception(message, *args)
    return jsonify({"error": "Internal server error"}), 500


def _log_transition(requisition_id: int, previous: str, requisition) -> None:
    current_app.logger.info(
        "Requisition %s: %s -> %s by user %s",
        requisition_id, previous, requisition.status, g.actor.user_id,
    )


def _current_status(requisition_id: int):
    from reqflow.models import Requisition

    requisition = db.session.get(Requisition, requisition_id)
    return requisition.status if requisition is not None else None


@requisitions_bp.route("/<int:requisition_id>/submit", methods=["POST"])
@require_identity
def submit_requisition(requisition_id: int):
    """
    Submit a draft for security review.

    Returns:
        200: Updated requisition
        400: Not a draft, or no items
        403: Not the requester (or admin)
        404: Requisition not found
        409: Status changed concurrently
    """
    try:
        previous = _current_status(requisition_id)
        requisition = get_workflow_engine().submit(requisition_id, g.actor)
        _log_transition(requisition_id, previous, requisition)
        return jsonify(requisition.to_dict()), 200
    except WorkflowError as e:
        return _workflow_error(e)
    except Exception:
        return _internal_error("Failed to submit requisition %s", requisition_id)


@requisitions_bp.route("/<int:requisition_id>/approve", methods=["POST"])
@require_identity
@require_json_object
def approve_requisition(requisition_id: int):
    """
    Approve the current review gate.

    Request body (optional):
    {
        "comment": str
    }
    """
    data = g.body

    try:
        previous = _current_status(requisition_id)
        requisition = get_workflow_engine().approve(requisition_id, g.actor, comment=data.get("comment"))
        _log_transition(requisition_id, previous, requisition)
        return jsonify(requisition.to_dict()), 200
    except WorkflowError as e:
        return _workflow_error(e)
    except Exception:
        return _internal_error("Failed to approve requisition %s", requisition_id)


@requisitions_bp.route("/<int:requisition_id>/reject", methods=["POST"])
@require_identity
@require_json_object
def reject_requisition(requisition_id: int):
    """
    Reject at the current gate.

    Request body:
    {
        "comment": str (at least 10 characters)
    }
    """
    data = g.body

    try:
        previous = _current_status(requisition_id)
        requisition = get_workflow_engine().reject(requisition_id, g.actor, data.get("comment"))
        _log_transition(requisition_id, previous, requisition)
        return jsonify(requisition.to_dict()), 200
    except WorkflowError as e:
        return _workflow_error(e)
    except Exception:
        return _internal_error("Failed to reject requisition %s", requisition_id)


@requisitions_bp.route("/<int:requisition_id>/process", methods=["POST"])
@require_identity
@require_json_object
def process_requisition(requisition_id: int):
    """
    Move a requisition along the logistics / purchasing / delivery leg.

    Request body:
    {
        "status": "PURCHASING" | "READY_TO_DISPATCH" | "SHIPPED" | "PARTIALLY_DELIVERED" | "FULLY_DELIVERED"
    }
    """
    data = g.body

    try:
        previous = _current_status(requisition_id)
        requisition = get_workflow_engine().process(requisition_id, g.actor, data.get("status"))
        _log_transition(requisition_id, previous, requisition)
        return jsonify(requisition.to_dict()), 200
    except WorkflowError as e:
        return _workflow_error(e)
    except Exception:
        return _internal_error("Failed to process requisition %s", requisition_id)


@requisitions_bp.route("/<int:requisition_id>/comments", methods=["POST"])
@require_identity
@require_json_object
def add_comment(requisition_id: int):
    data = g.body

    try:
        entry = get_workflow_engine().add_comment(requisition_id, g.actor, data.get("comment"))
        return jsonify(entry.to_dict()), 201
    except WorkflowError as e:
        return _workflow_error(e)
    except Exception:
        return _internal_error("Failed to add comment to requisition %s", requisition_id)


@requisitions_bp.route("/<int:requisition_id>/items/<int:item_id>", methods=["PATCH"])
@require_identity
@require_json_object
def adjust_item_quantity(requisition_id: int, item_id: int):
    """
    Set an item's approved quantity during review.

    Request body:
    {
        "approved_quantity": int
    }
    """
    data = g.body
    if "approved_quantity" not in data:
        return jsonify({"error": "validation_failed", "message": "approved_quantity is required"}), 400

    try:
        item = get_workflow_engine().adjust_approved_quantity(
            requisition_id, item_id, g.actor, data["approved_quantity"]
        )
        return jsonify(item.to_dict()), 200
    except WorkflowError as e:
        return _workflow_error(e)
    except Exception:
        return _internal_error("Failed to adjust item %s on requisition %s", item_id, requisition_id)


@requisitions_bp.route("/<int:requisition_id>/timeline", methods=["GET"])
@require_identity
def get_timeline(requisition_id: int):
    try:
        engine = get_workflow_engine()
        entries = engine.timeline(requisition_id, g.actor)
        users = engine.store.users_by_id(e.actor_id for e in entries)
        return jsonify({"requisition_id": requisition_id, "timeline": serialize_timeline(entries, users)}), 200
    except WorkflowError as e:
        return _workflow_error(e)
    except Exception:
        return _internal_error("Failed to load timeline for requisition %s", requisition_id)


@requisitions_bp.route("/<int:requisition_id>/permissions", methods=["GET"])
@require_identity
def get_permissions(requisition_id: int):
    """Capability flags for the calling user on this requisition."""
    try:
        capabilities = get_workflow_engine().capabilities(requisition_id, g.actor)
        return jsonify({"requisition_id": requisition_id, "permissions": capabilities.to_dict()}), 200
    except WorkflowError as e:
        return _workflow_error(e)
    except Exception:
        return _internal_error("Failed to resolve permissions for requisition %s", requisition_id)


@requisitions_bp.route("/<int:requisition_id>/items/classify", methods=["POST"])
@require_identity
@require_json_object
def classify_items(requisition_id: int):
    """
    Classify items under logistics review.

    Request body:
    {
        "items": [{"item_id": int, "classification": "IN_STOCK" | "PURCHASE_REQUIRED",
                   "approved_quantity": int (optional)}, ...]
    }

    Returns:
        200: Updated requisition (moves on once every item is classified)
        400: Not in logistics review, or invalid / already classified items
        403: Not logistics/admin
    """
    data = g.body

    try:
        previous = _current_status(requisition_id)
        requisition = get_workflow_engine().classify_items(requisition_id, g.actor, data.get("items"))
        _log_transition(requisition_id, previous, requisition)
        return jsonify(requisition.to_dict()), 200
    except WorkflowError as e:
        return _workflow_error(e)
    except Exception:
        return _internal_error("Failed to classify items of requisition %s", requisition_id)


@requisitions_bp.route("/<int:requisition_id>/items/process-mixed", methods=["POST"])
@require_identity
@require_json_object
def process_mixed(requisition_id: int):
    """
    Classify every item and ship the in-stock part right away.

    Request body: as for /items/classify, plus optional "carrier",
    "destination" and "notes" for the batch.

    Returns:
        201: {"requisition": {...}, "batch": {...}}
    """
    data = g.body

    try:
        previous = _current_status(requisition_id)
        requisition, batch = get_workflow_engine().process_mixed(
            requisition_id,
            g.actor,
            data.get("items"),
            carrier=data.get("carrier"),
            destination=data.get("destination"),
            notes=data.get("notes"),
        )
        _log_transition(requisition_id, previous, requisition)
        current_app.logger.info(
            "Batch %s created for requisition %s by user %s",
            batch.batch_number, requisition_id, g.actor.user_id,
        )
        return jsonify({"requisition": requisition.to_dict(), "batch": batch.to_dict()}), 201
    except WorkflowError as e:
        return _workflow_error(e)
    except Exception:
        return _internal_error("Failed to process mixed requisition %s", requisition_id)


@requisitions_bp.route("/<int:requisition_id>/items/validate-purchase", methods=["POST"])
@require_identity
@require_json_object
def validate_purchase(requisition_id: int):
    """
    Administration approves or refuses items that have to be bought.

    Request body:
    {
        "items": [{"item_id": int, "approved": bool, "note": str (optional)}, ...]
    }
    """
    data = g.body

    try:
        previous = _current_status(requisition_id)
        requisition = get_workflow_engine().validate_purchase(requisition_id, g.actor, data.get("items"))
        _log_transition(requisition_id, previous, requisition)
        return jsonify(requisition.to_dict()), 200
    except WorkflowError as e:
        return _workflow_error(e)
    except Exception:
        return _internal_error("Failed to validate purchases of requisition %s", requisition_id)


@requisitions_bp.route("/<int:requisition_id>/items/confirm-purchase-received", methods=["POST"])
@require_identity
@require_json_object
def confirm_purchase_received(requisition_id: int):
    data = g.body

    try:
        items = get_workflow_engine().confirm_purchase_received(requisition_id, g.actor, data.get("item_ids"))
        current_app.logger.info(
            "Requisition %s: %d purchased item(s) received by user %s",
            requisition_id, len(items), g.actor.user_id,
        )
        return jsonify({"requisition_id": requisition_id, "items": [item.to_dict() for item in items]}), 200
    except WorkflowError as e:
        return _workflow_error(e)
    except Exception:
        return _internal_error("Failed to receive purchased items of requisition %s", requisition_id)
