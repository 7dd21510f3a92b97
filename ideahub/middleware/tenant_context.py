"""
Tenant Context Middleware - builds the per-request TenantContext.

Identity comes from the upstream gateway as an ``X-User-Id`` header; role and
tenant membership are read from the users table. The resolved context is
stored on ``g.tenant_ctx`` for blueprints to pass into services.

Chain order:
  timing.py  →  tenant_context.py  →  route handler

Resolution failures raise domain errors, which the app-level handlers turn
into 403/404 responses before any view runs.
"""

import logging

from flask import g, request

from ideahub.core.exceptions import AccessDeniedError, UnauthorizedError
from ideahub.models import db
from ideahub.models.auth import User
from ideahub.services.tenant_context import TenantContext

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"

# Paths that skip tenant context
TENANT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def _authenticated_user():
    raw = request.headers.get(USER_HEADER)
    if not raw:
        return None
    if not raw.isdigit():
        raise UnauthorizedError("Malformed user identity header")
    user = db.session.get(User, int(raw))
    if user is None:
        raise UnauthorizedError("Unknown user")
    if not user.is_active:
        logger.warning("Inactive user %s rejected", user.id, extra={"user_id": user.id})
        raise AccessDeniedError("User account is deactivated")
    return user


def init_tenant_context(app):
    """Register tenant context middleware as a before_request hook."""

    @app.before_request
    def _tenant_context():
        g.tenant_ctx = None

        if not request.path.startswith("/api/v1/"):
            return None

        for prefix in TENANT_SKIP_PREFIXES:
            if request.path.startswith(prefix):
                return None

        user = _authenticated_user()
        g.tenant_ctx = TenantContext.from_request(request.host, user)
        return None

    logger.info("Tenant context middleware installed")
