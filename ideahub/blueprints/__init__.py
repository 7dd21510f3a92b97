"""
IdeaHub
Blueprint registry and shared request helpers.
"""

from flask import g, jsonify, request

from ideahub.core.exceptions import NotFoundError, ValidationError


def current_ctx():
    """The TenantContext built by the tenant middleware for this request."""
    ctx = getattr(g, "tenant_ctx", None)
    if ctx is None:
        raise NotFoundError("Tenant")
    return ctx


def json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def pagination(default_limit=50, max_limit=200):
    """Read limit/offset query params.

    Returns:
        (limit, offset)
    """
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return max(limit, 1), offset


def ok(payload=None, message=None, status=200, **extra):
    """Success envelope: ``{"success": true, "message": ..., **payload}``."""
    body = {"success": True}
    if message:
        body["message"] = message
    if payload:
        body.update(payload)
    body.update(extra)
    return jsonify(body), status
