from flask import Blueprint, current_app, jsonify
from flask_wtf.csrf import CSRFError

from .errors import (
    AppError,
    AuthError,
    NotAMemberError,
    NotFoundError,
    ValidationError,
)

error_handlers_bp = Blueprint("error_handlers", __name__)


def _error_response(error):
    body = {"error": error.message, "kind": error.kind}
    if isinstance(error, AuthError):
        body["reason"] = error.reason
    return jsonify(body), error.status_code


@error_handlers_bp.app_errorhandler(ValidationError)
def handle_validation_error(error):
    """Handles validation errors."""
    current_app.logger.warning(f"Validation Error: {error.message}")
    return _error_response(error)


@error_handlers_bp.app_errorhandler(NotFoundError)
def handle_not_found_error(error):
    """Handles not found errors."""
    current_app.logger.warning(f"Not Found Error: {error.message}")
    return _error_response(error)


@error_handlers_bp.app_errorhandler(NotAMemberError)
def handle_not_a_member_error(error):
    """Handles actions on groups the caller has not joined."""
    current_app.logger.warning(f"Not A Member Error: {error.message}")
    return _error_response(error)


@error_handlers_bp.app_errorhandler(AuthError)
def handle_auth_error(error):
    """Handles identity provider failures."""
    current_app.logger.warning(f"Auth Error ({error.reason}): {error.message}")
    return _error_response(error)


@error_handlers_bp.app_errorhandler(AppError)
def handle_app_error(error):
    """Handles conflicts, storage and upstream failures."""
    current_app.logger.error(f"Application Error ({error.kind}): {error.message}")
    return _error_response(error)


@error_handlers_bp.app_errorhandler(404)
def handle_404(e):
    """Handles generic 404 errors for routes that don't exist."""
    return jsonify({"error": "Not found.", "kind": "not_found"}), 404


@error_handlers_bp.app_errorhandler(500)
def handle_500(e):
    """Handles unexpected server errors."""
    current_app.logger.error(f"Internal Server Error: {e}")
    return jsonify({"error": "Something went wrong.", "kind": "internal"}), 500


@error_handlers_bp.app_errorhandler(CSRFError)
def handle_csrf_error(e):
    """
    Handles CSRF errors, which usually indicate a session timeout or invalid form submission.
    """
    current_app.logger.warning(f"CSRF Error: {e.description}")
    return (
        jsonify(
            {
                "error": "Your session may have expired. Please try your action again.",
                "kind": "csrf",
            }
        ),
        400,
    )
