# scanflow/errors.py
"""
Error taxonomy for the automation core.

Configuration-time errors (ValidationError, NotFoundError) are raised
synchronously to the caller and reject the mutation outright.

Run-time errors (ProviderError, ActionError, TemplateError,
TransportError) are caught where they happen, logged, and recorded in
history. They never crash the scheduler or cancel unrelated jobs.

register_error_handlers(app) maps every error to the same JSON shape
the rest of the API uses: {"error": "...", "message": "..."}.
"""

from __future__ import annotations

import logging
import traceback

from flask import jsonify

error_logger = logging.getLogger("scanflow.errors")


class ScanflowError(Exception):
    """Base class. `status_code` is used when the error reaches the API."""

    status_code = 500
    label = "Internal server error"

    def __init__(self, message: str = "", **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        out = {"error": self.label, "message": self.message}
        if self.details:
            out["details"] = self.details
        return out


class ValidationError(ScanflowError):
    status_code = 400
    label = "Validation failed"


class NotFoundError(ScanflowError):
    status_code = 404
    label = "Not found"


class ProviderError(ScanflowError):
    """Scan provider failure. Isolated per target."""

    status_code = 502
    label = "Scan provider error"


class ActionError(ScanflowError):
    """An action handler failed. Logged; the rule still counts as triggered."""

    status_code = 500
    label = "Action failed"


class ActionNotSupportedError(ActionError):
    status_code = 400
    label = "Action not supported"


class TemplateError(ScanflowError):
    status_code = 422
    label = "Template error"


class TransportError(ScanflowError):
    status_code = 502
    label = "Delivery failed"


class TimerRaceError(ScanflowError):
    """Raised if a job's timer handle is touched outside its lock."""

    status_code = 409
    label = "Conflict"


def register_error_handlers(app) -> None:
    @app.errorhandler(ScanflowError)
    def handle_scanflow_error(e: ScanflowError):
        if e.status_code >= 500:
            error_logger.error("%s: %s", type(e).__name__, e.message)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(400)
    def bad_request(e):
        return jsonify({
            "error": "Bad request",
            "message": str(e.description) if hasattr(e, "description") else "The request was malformed or invalid.",
        }), 400

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({
            "error": "Not found",
            "message": "The requested resource was not found.",
        }), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({
            "error": "Method not allowed",
            "message": "This HTTP method is not allowed for this endpoint.",
        }), 405

    @app.errorhandler(415)
    def unsupported_media_type(e):
        return jsonify({
            "error": "Unsupported media type",
            "message": "The request content type is not supported. Use application/json.",
        }), 415

    @app.errorhandler(500)
    def internal_error(e):
        error_logger.error(
            "500 Internal Server Error:\n%s", traceback.format_exc()
        )
        return jsonify({
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later.",
        }), 500

    @app.errorhandler(Exception)
    def catch_all(e):
        """Catch-all for any unhandled exception. Never leak tracebacks."""
        error_logger.error(
            "Unhandled exception: %s\n%s", str(e), traceback.format_exc()
        )
        return jsonify({
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later.",
        }), 500
