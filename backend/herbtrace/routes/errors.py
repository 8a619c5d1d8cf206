# Overview: Maps service-layer exceptions to JSON error responses for the API blueprints.

from flask import current_app, jsonify

from ..services.ledger_service import LedgerUnavailableError
from ..services.permission_service import PermissionDeniedError
from ..validation import ConflictError, NotFoundError, ValidationError


def json_error(exc: Exception, log_message: str = "Unhandled API error"):
    """
    400 ValidationError (incl. lifecycle errors), 403 PermissionDeniedError,
    404 NotFoundError, 409 ConflictError, 503 LedgerUnavailableError.
    Anything else is logged and returned as a 500.
    """
    if isinstance(exc, PermissionDeniedError):
        body = {"error": str(exc)}
        if exc.required_permission:
            body["required_permission"] = exc.required_permission
        return jsonify(body), 403
    if isinstance(exc, NotFoundError):
        return jsonify({"error": str(exc)}), 404
    if isinstance(exc, ConflictError):
        return jsonify({"error": str(exc)}), 409
    if isinstance(exc, ValidationError):
        return jsonify({"error": str(exc)}), 400
    if isinstance(exc, LedgerUnavailableError):
        current_app.logger.error("Ledger unavailable: %s", exc)
        return jsonify({"error": "Ledger unavailable", "detail": str(exc)}), 503

    current_app.logger.exception(log_message)
    return jsonify({"error": "Internal server error"}), 500
