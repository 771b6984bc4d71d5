"""Standardised API error responses.

Usage
-----
    from mocflow.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "MOC request not found")
    return api_error(E.VALIDATION_REQUIRED, "title is required")
    return api_error(E.STAGE_GATE_BLOCKED, "Cannot advance", details={"required_roles": [...]})

``register_error_handlers(app)`` maps the ``mocflow.core.exceptions``
hierarchy onto these responses once for every blueprint.
"""

from __future__ import annotations

import logging

from flask import jsonify, request
from sqlalchemy.orm.exc import StaleDataError

from mocflow.core.exceptions import (
    ConcurrencyError,
    NotFoundError,
    StageGateError,
    StateTransitionError,
    ValidationError,
)
from mocflow.models import db

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Malformed input – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Business-rule validation – HTTP 422
    VALIDATION_RULE = "ERR_VALIDATION_RULE"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # State / concurrency – HTTP 409
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    STAGE_GATE_BLOCKED = "ERR_STAGE_GATE_BLOCKED"
    CONCURRENCY = "ERR_CONCURRENCY"

    # Permissions – HTTP 403
    FORBIDDEN = "ERR_FORBIDDEN"

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_RULE: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_STATE: 409,
    E.STAGE_GATE_BLOCKED: 409,
    E.CONCURRENCY: 409,
    E.FORBIDDEN: 403,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (missing roles, field errors, ...).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def register_error_handlers(app):
    """Install handlers for the platform exception hierarchy on *app*."""

    @app.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        db.session.rollback()
        return api_error(E.NOT_FOUND, str(error))

    @app.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        db.session.rollback()
        return api_error(E.VALIDATION_RULE, str(error), details=error.details)

    @app.errorhandler(StageGateError)
    def _handle_stage_gate(error: StageGateError):
        db.session.rollback()
        return api_error(E.STAGE_GATE_BLOCKED, str(error), details=error.details)

    @app.errorhandler(StateTransitionError)
    def _handle_state(error: StateTransitionError):
        db.session.rollback()
        return api_error(E.CONFLICT_STATE, str(error), details=error.details)

    @app.errorhandler(ConcurrencyError)
    def _handle_concurrency(error: ConcurrencyError):
        db.session.rollback()
        logger.warning("Concurrent modification: %s", error)
        return api_error(E.CONCURRENCY, str(error))

    @app.errorhandler(StaleDataError)
    def _handle_stale(error: StaleDataError):
        # Lost update detected on an autoflush rather than in commit_or_raise
        db.session.rollback()
        logger.warning("Stale row on flush: %s", error)
        return api_error(E.CONCURRENCY, "Record was modified concurrently; reload and retry")

    @app.errorhandler(404)
    def _handle_404(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def _handle_405(e):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405)

    @app.errorhandler(429)
    def _handle_429(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def _handle_500(e):
        db.session.rollback()
        logger.error("500 error on %s %s", request.method, request.path, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")
