"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter. The Limiter instance
is created in ideahub/__init__.py with no default limits; this module applies
limits per route category, keyed by tenant + user when a context exists.

Usage:
    from ideahub.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

SOCIAL_LIMIT = "30/minute"
WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"


def rate_limit_key():
    """tenant:user when the request carries a context, else remote IP."""
    ctx = getattr(g, "tenant_ctx", None)
    if ctx is not None and ctx.user_id is not None:
        return f"tenant:{ctx.tenant_id}:user:{ctx.user_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits:
        - Social (likes, comments): 30/minute
        - Ideas / integrations:     60/minute
        - Notifications / stats:    200/minute
        - Health check:             exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("social_bp")
    if bp:
        limiter.limit(SOCIAL_LIMIT, key_func=rate_limit_key)(bp)

    for bp_name in ("idea_bp", "integration_bp"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT, key_func=rate_limit_key)(bp)

    for bp_name in ("notification_bp", "gamification_bp"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(READ_LIMIT, key_func=rate_limit_key)(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured - social: %s, write: %s, read: %s",
        SOCIAL_LIMIT, WRITE_LIMIT, READ_LIMIT,
    )
