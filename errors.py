"""
Domain error taxonomy and JSON error handlers.

Services raise AppError subclasses; the handlers registered here turn them
into ``{"error": message}`` responses with the matching HTTP status.
"""

from __future__ import annotations

import logging

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status_code = 500

    def __init__(self, message: str = "internal server error"):
        super().__init__(message)
        self.message = message


class ValidationError(AppError):
    """Missing or malformed request fields, past deadlines, bad ranges."""
    status_code = 400


class AuthenticationRequired(AppError):
    status_code = 401

    def __init__(self, message: str = "login required"):
        super().__init__(message)


class Forbidden(AppError):
    """Role or ownership mismatch."""
    status_code = 403

    def __init__(self, message: str = "permission denied"):
        super().__init__(message)


class NotFound(AppError):
    status_code = 404

    def __init__(self, message: str = "not found"):
        super().__init__(message)


class Conflict(AppError):
    """Request clashes with current state (duplicate username, empty class)."""
    status_code = 409


class UpstreamFailure(AppError):
    """The language model call failed or returned unusable content."""
    status_code = 502


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(AppError)
    def _handle_app_error(exc: AppError):
        if exc.status_code >= 500:
            logger.error("%s: %s", type(exc).__name__, exc.message)
        return jsonify({"error": exc.message}), exc.status_code

    @app.errorhandler(HTTPException)
    def _handle_http_error(exc: HTTPException):
        if not request.path.startswith("/api"):
            return exc
        return jsonify({"error": exc.description or exc.name}), exc.code

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return _handle_http_error(exc)
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({"error": "internal server error"}), 500
