# Overview: Request decorators for API routes.

from functools import wraps

from flask import jsonify, current_app

from .extensions import db
from .validation import ValidationError


# HTTP status per error kind carried by service exceptions
KIND_STATUS = {
    "validation": 400,
    "not_found": 404,
    "business": 409,
    "integration": 502,
}


def error_response(kind: str, message: str, details: dict | None = None):
    return jsonify({"error": message, "kind": kind, "details": details or {}}), KIND_STATUS.get(kind, 400)


def handle_service_errors(action: str):
    """
    Translate service exceptions into JSON error responses.

    Any exception with a `kind` attribute maps through KIND_STATUS and input
    coercion errors are 400. Anything else is logged with the action name
    and answered with a generic 500. Uncommitted work is rolled back first.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except ValidationError as e:
                db.session.rollback()
                return error_response("validation", str(e))
            except Exception as e:
                db.session.rollback()
                kind = getattr(e, "kind", None)
                if kind in KIND_STATUS:
                    return error_response(kind, str(e), getattr(e, "details", None))
                current_app.logger.exception("Failed to %s", action)
                return jsonify({"error": "Internal server error"}), 500

        return decorated_function

    return decorator
