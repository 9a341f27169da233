"""JSON error handlers for host applications that expose the services."""

from flask import Blueprint, current_app, jsonify

from .errors import AppError, ConflictError, ForbiddenError, NotFoundError, ValidationError

error_handlers_bp = Blueprint("error_handlers", __name__)


@error_handlers_bp.app_errorhandler(ValidationError)
@error_handlers_bp.app_errorhandler(ForbiddenError)
@error_handlers_bp.app_errorhandler(ConflictError)
def handle_rejected_request(error):
    """Handles requests the engine rejected for domain reasons."""
    current_app.logger.warning(f"{type(error).__name__}: {error.message}")
    return jsonify({"ok": False, "error": error.message}), error.status_code


@error_handlers_bp.app_errorhandler(NotFoundError)
def handle_not_found_error(error):
    """Handles not found errors."""
    current_app.logger.warning(f"Not Found Error: {error.message}")
    return jsonify({"ok": False, "error": error.message}), error.status_code


@error_handlers_bp.app_errorhandler(AppError)
def handle_app_error(error):
    """Handles generic application errors."""
    current_app.logger.error(f"Application Error: {error.message}")
    return jsonify({"ok": False, "error": error.message}), error.status_code
