"""Standardised API error responses.

Usage
-----
    from ideahub.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Idea not found")
    return api_error(E.VALIDATION_ERROR, "title is required")

Domain exceptions raised by services are turned into the same envelope by
``register_error_handlers``:

    {"success": false, "error": "<message>", "code": "<kind>"}
"""

from __future__ import annotations

import logging

from flask import jsonify

from ideahub.core.exceptions import DomainError

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error codes; identical to ``DomainError.kind``."""

    TENANT_INACTIVE = "tenant_inactive"
    TENANT_EXPIRED = "tenant_expired"
    ACCESS_DENIED = "access_denied"
    UNAUTHORIZED = "unauthorized"
    INVALID_IDEA_STATE = "invalid_idea_state"
    INVALID_TRANSITION = "invalid_transition"
    ALREADY_DECIDED = "already_decided"
    NOT_FOUND = "not_found"
    VALIDATION_ERROR = "validation_error"
    BAD_REQUEST = "bad_request"
    INTERNAL = "internal_error"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.TENANT_INACTIVE: 403,
    E.TENANT_EXPIRED: 403,
    E.ACCESS_DENIED: 403,
    E.UNAUTHORIZED: 403,
    E.INVALID_IDEA_STATE: 409,
    E.INVALID_TRANSITION: 409,
    E.ALREADY_DECIDED: 409,
    E.NOT_FOUND: 404,
    E.VALIDATION_ERROR: 422,
    E.BAD_REQUEST: 400,
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
        Human-readable explanation.
    status : int, optional
        HTTP status override. Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload.

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)``; drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "success": False,
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def register_error_handlers(app) -> None:
    """Map every ``DomainError`` subclass to the standard envelope."""

    @app.errorhandler(DomainError)
    def _domain_error(exc: DomainError):
        status = _DEFAULT_STATUS.get(exc.kind, 400)
        log = logger.warning if status == 403 else logger.info
        log(
            "Domain error %s: %s", exc.kind, exc.message,
            extra={"error_kind": exc.kind},
        )
        return api_error(exc.kind, exc.message, status=status, details=exc.details or None)
