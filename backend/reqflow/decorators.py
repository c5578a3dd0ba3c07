# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .extensions import db
from .errors import Unauthenticated, ValidationFailed
from .models import User
from .services.workflow_engine import Actor


IDENTITY_HEADER = "X-User-Id"


def require_identity(f):
    """
    Require an upstream-authenticated identity and build the actor.

    Authentication itself happens in front of this service; the gateway
    forwards the user id in the X-User-Id header. Sets:
    - g.current_user: The active User
    - g.actor: Actor(user_id, role) passed to every engine call

    Returns 401 if the header is missing, malformed, or names an unknown or
    deactivated user.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = (request.headers.get(IDENTITY_HEADER) or "").strip()
        if not raw.isdigit():
            return jsonify(Unauthenticated("Authentication required").to_dict()), 401

        user = db.session.get(User, int(raw))
        if user is None or not user.is_active:
            return jsonify(Unauthenticated("Unknown or inactive user").to_dict()), 401

        g.current_user = user
        g.actor = Actor(user_id=user.id, role=user.role)

        return f(*args, **kwargs)

    return decorated_function


def require_json_object(f):
    """
    Reject a request body that is present but is not a JSON object.

    Sets:
    - g.body: The parsed object, or {} when no JSON body was sent

    Returns 400 validation_failed for arrays, strings, numbers and the like.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        data = request.get_json(silent=True)
        if data is None:
            data = {}
        if not isinstance(data, dict):
            return jsonify(ValidationFailed("Request body must be a JSON object").to_dict()), 400

        g.body = data

        return f(*args, **kwargs)

    return decorated_function
