# Overview: Request decorators for API routes (identity and service error mapping).

from functools import wraps
from flask import request, jsonify, g, current_app

from .extensions import db
from .models import User
from .validation import ValidationError, ConflictError, NotFoundError, ForbiddenError


USER_HEADER = "X-User-Id"


def require_auth(f):
    """
    Resolve the acting user from the X-User-Id header.

    Authentication itself happens upstream (gateway / session layer); this
    only turns the already-authenticated id into g.current_user.

    Returns 401 if the header is missing, malformed, or names an unknown or
    deactivated user.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get(USER_HEADER)
        if not raw:
            return jsonify({"error": "Authentication required"}), 401

        try:
            user_id = int(raw)
        except ValueError:
            return jsonify({"error": "Invalid user id"}), 401

        user = db.session.get(User, user_id)
        if user is None or not user.active:
            return jsonify({"error": "Unknown or inactive user"}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def handle_service_errors(action: str):
    """
    Map service-layer exceptions to JSON error responses.

    ValidationError -> 400, ForbiddenError -> 403, NotFoundError -> 404,
    ConflictError -> 409. Anything else is logged and returned as 500.
    The session is rolled back in every error case.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except ValidationError as e:
                db.session.rollback()
                return jsonify({"error": str(e)}), 400
            except ForbiddenError as e:
                db.session.rollback()
                return jsonify({"error": str(e)}), 403
            except NotFoundError as e:
                db.session.rollback()
                return jsonify({"error": str(e)}), 404
            except ConflictError as e:
                db.session.rollback()
                return jsonify({"error": str(e)}), 409
            except Exception:
                db.session.rollback()
                current_app.logger.exception("Failed to %s", action)
                return jsonify({"error": "Internal server error"}), 500
        return decorated_function
    return decorator
