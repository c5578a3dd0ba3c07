# backend/reqflow/routes/system.py
"""
System health and version endpoints.

Health covers the database and the workflow tables the engine depends on;
version gives non-sensitive deployment information.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Requisition, ShipmentBatch, User
from ..services.state_graph import PENDING_APPROVAL_STATUSES, Role
from reqflow.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        requisition_count = db.session.query(Requisition).count()
        batch_count = db.session.query(ShipmentBatch).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "users": user_count,
                "requisitions": requisition_count,
                "batches": batch_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_workflow_health() -> dict:
    """
    Verify every approval gate has at least one active user to act on it.

    A gate with nobody behind it is degraded, not down: requisitions still
    move once someone is assigned the role.
    """
    start_time = time.time()
    try:
        gate_roles = [Role.SECURITY, Role.MANAGEMENT, Role.LOGISTICS, Role.ADMINISTRATION]
        rows = (
            db.session.query(User.role, func.count(User.id))
            .filter(User.is_active.is_(True))
            .group_by(User.role)
            .all()
        )
        active_by_role = {role: count for role, count in rows}
        missing_roles = [r.value for r in gate_roles if not active_by_role.get(r.value)]

        pending = (
            db.session.query(Requisition)
            .filter(Requisition.status.in_([s.value for s in PENDING_APPROVAL_STATUSES]))
            .count()
        )

        elapsed_ms = (time.time() - start_time) * 1000
        details = {
            "pending_approvals": pending,
            "active_users_by_role": active_by_role,
        }

        if missing_roles:
            return {
                "status": "degraded",
                "latency_ms": round(elapsed_ms, 2),
                "warning": f"No active users for roles: {', '.join(missing_roles)}",
                "details": details,
            }

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": details,
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Workflow health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Workflow check error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: Healthy or degraded
    - 503: One or more checks unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    workflow_health = check_workflow_health()

    all_checks = [database_health, workflow_health]
    unhealthy_count = sum(1 for check in all_checks if check["status"] == "unhealthy")
    degraded_count = sum(1 for check in all_checks if check["status"] == "degraded")

    if unhealthy_count > 0:
        overall_status = "unhealthy"
        http_status = 503
    elif degraded_count > 0:
        overall_status = "degraded"
        http_status = 200  # Degraded is still operational
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "workflow": workflow_health,
        }
    }

    return response, http_status


@system_bp.get("/version")
def version():
    """
    Version endpoint for deployment debugging.

    Does NOT expose secret keys, database credentials or internal paths.
    """
    import sys

    env = "production" if not current_app.debug else "development"

    return {
        "api_version": "0.1.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": utcnow().isoformat() + "Z",
    }
