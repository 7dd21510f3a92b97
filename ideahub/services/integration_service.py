"""Integration service - chat integration CRUD and event fan-out.

Mutations are administrator-only and run in their own unit of work.
``handle_event`` is the ``integrations`` event-bus subscriber: it forwards
idea lifecycle events to every active integration of the tenant that listens
for the event kind, and writes one IntegrationLog row per attempt. One
integration failing never stops the others.
"""

import logging

from flask import current_app

from ideahub.core.exceptions import UnauthorizedError, ValidationError
from ideahub.integrations import INTEGRATION_SENDERS, slack
from ideahub.integrations.gateway import GatewayResult
from ideahub.models import db
from ideahub.models.auth import User
from ideahub.models.base import utcnow
from ideahub.models.integration import INTEGRATION_TYPES, Integration, IntegrationLog
from ideahub.services.event_bus import (
    EVENT_KINDS,
    IDEA_APPROVED,
    IDEA_IMPLEMENTED,
    IDEA_REJECTED,
    IDEA_SUBMITTED,
)
from ideahub.services.helpers.unit_of_work import unit_of_work
from ideahub.services.tenant_context import TenantContext

logger = logging.getLogger(__name__)

FORWARDED_KINDS = frozenset({IDEA_SUBMITTED, IDEA_APPROVED, IDEA_REJECTED, IDEA_IMPLEMENTED})

_MESSAGES = {
    IDEA_SUBMITTED: "New idea submitted: {title}",
    IDEA_APPROVED: "Idea approved: {title}",
    IDEA_REJECTED: "Idea rejected: {title}",
    IDEA_IMPLEMENTED: "Idea implemented: {title}",
}

_STATUSES = {
    IDEA_SUBMITTED: "pending",
    IDEA_APPROVED: "approved",
    IDEA_REJECTED: "rejected",
    IDEA_IMPLEMENTED: "implemented",
}


# ── Validation ───────────────────────────────────────────────────────────


def _require_admin(ctx):
    user = ctx.require_user()
    if not user.is_admin:
        raise UnauthorizedError("Only administrators can manage integrations")
    return user


def _validate_config(itype, config):
    if not isinstance(config, dict):
        raise ValidationError("config must be an object", details={"config": "invalid"})
    url = config.get("webhook_url") or config.get("url")
    if not url:
        raise ValidationError(f"{itype} integrations need a webhook_url",
                              details={"config.webhook_url": "required"})
    if not str(url).startswith(("https://", "http://")):
        raise ValidationError("webhook_url must be an http(s) URL",
                              details={"config.webhook_url": "invalid"})
    return dict(config)


def _validate_events(events):
    if events is None:
        return None
    if not isinstance(events, list):
        raise ValidationError("events must be a list", details={"events": "invalid"})
    unknown = sorted(set(events) - EVENT_KINDS)
    if unknown:
        raise ValidationError(f"Unknown events: {unknown}", details={"events": unknown})
    return events


# ── CRUD ─────────────────────────────────────────────────────────────────


def list_integrations(ctx, itype=None):
    stmt = ctx.select(Integration).order_by(Integration.id)
    if itype:
        stmt = stmt.where(Integration.type == itype)
    return db.session.execute(stmt).scalars().all()


def get_integration(ctx, integration_id):
    return ctx.get(Integration, integration_id)


def create_integration(ctx, data):
    """Create an integration from a request-shaped dict."""
    user = _require_admin(ctx)
    itype = data.get("type")
    if itype not in INTEGRATION_TYPES:
        raise ValidationError(f"type must be one of {list(INTEGRATION_TYPES)}",
                              details={"type": itype})
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required", details={"name": "required"})

    with unit_of_work(dispatch=False):
        integration = ctx.add(Integration(
            type=itype,
            name=name[:100],
            config=_validate_config(itype, data.get("config")),
            events=_validate_events(data.get("events")),
            is_active=bool(data.get("is_active", True)),
        ))
        db.session.flush()

    logger.info("Integration %s (%s) created", integration.id, itype,
                extra={"tenant_id": ctx.tenant_id, "user_id": user.id})
    return integration


def update_integration(ctx, integration_id, data):
    _require_admin(ctx)
    with unit_of_work(dispatch=False):
        integration = ctx.get(Integration, integration_id)
        if "name" in data:
            name = (data.get("name") or "").strip()
            if not name:
                raise ValidationError("name cannot be empty", details={"name": "required"})
            integration.name = name[:100]
        if "config" in data:
            merged = dict(integration.config or {})
            merged.update(data["config"] or {})
            integration.config = _validate_config(integration.type, merged)
        if "events" in data:
            integration.events = _validate_events(data["events"])
        if "is_active" in data:
            integration.is_active = bool(data["is_active"])
    return integration


def delete_integration(ctx, integration_id):
    _require_admin(ctx)
    with unit_of_work(dispatch=False):
        integration = ctx.get(Integration, integration_id)
        db.session.delete(integration)


def list_logs(ctx, integration_id, limit=50):
    integration = ctx.get(Integration, integration_id)
    return db.session.execute(
        ctx.select(IntegrationLog)
        .where(IntegrationLog.integration_id == integration.id)
        .order_by(IntegrationLog.id.desc())
        .limit(limit)
    ).scalars().all()


# ── Sending ──────────────────────────────────────────────────────────────


def _send(integration, message, context):
    sender = INTEGRATION_SENDERS.get(integration.type)
    if sender is None:
        return GatewayResult.failure(f"No sender for integration type {integration.type}")
    return sender(integration.config or {}, message, context)


def _log(integration, action, result, request_data, event_id=None):
    log = IntegrationLog(
        tenant_id=integration.tenant_id,
        integration_id=integration.id,
        event_id=event_id,
        action=action,
        request_data=request_data,
        **result.to_log_dict(),
    )
    db.session.add(log)
    if result.ok:
        integration.last_sync_at = utcnow()
    return log


def test_connection(ctx, integration_id):
    """Send a test message and log it. Returns the GatewayResult."""
    _require_admin(ctx)
    with unit_of_work(dispatch=False):
        integration = ctx.get(Integration, integration_id)
        result = _send(integration, slack.TEST_MESSAGE, {"event_kind": "test"})
        _log(integration, "test_connection", result, {"message": slack.TEST_MESSAGE})
    logger.info("Integration %s test: ok=%s", integration.id, result.ok,
                extra={"tenant_id": ctx.tenant_id})
    return result


def _event_context(ctx, event):
    p = event.payload
    actor_id = p.get("approver_id") or p.get("implemented_by") or p.get("author_id")
    actor = ctx.get_or_none(User, actor_id) if actor_id else None
    base_url = current_app.config.get("APP_BASE_URL", "").rstrip("/")
    return {
        "event_kind": event.kind,
        "event_id": event.event_id,
        "idea_id": p.get("idea_id"),
        "title": p.get("title", ""),
        "status": _STATUSES.get(event.kind),
        "actor_name": actor.name if actor else None,
        "notes": p.get("notes"),
        "url": f"{base_url}/ideas/{p.get('idea_id')}",
    }


def dispatch_event(ctx, event):
    """Forward ``event`` to the tenant's listening integrations. Returns the logs."""
    integrations = db.session.execute(
        ctx.select(Integration)
        .where(Integration.is_active.is_(True))
        .order_by(Integration.id)
    ).scalars().all()
    targets = [i for i in integrations if i.wants(event.kind)]
    if not targets:
        return []

    context = _event_context(ctx, event)
    message = _MESSAGES.get(event.kind, "Idea update: {title}").format(title=context["title"])
    logs = []
    for integration in targets:
        extra = {"tenant_id": ctx.tenant_id, "event_id": event.event_id,
                 "event_kind": event.kind, "subscriber": f"integration:{integration.id}"}
        try:
            result = _send(integration, message, context)
        except Exception as exc:
            logger.exception("Integration %s raised on %s", integration.id, event.kind, extra=extra)
            result = GatewayResult.failure(str(exc)[:500])
        if not result.ok:
            logger.warning("Integration %s (%s) failed: %s", integration.id, integration.type,
                           result.error, extra=extra)
        logs.append(_log(integration, event.kind, result,
                         {"message": message, "idea_id": context["idea_id"]},
                         event_id=event.event_id))
    return logs


def handle_event(event):
    dispatch_event(TenantContext.system(event.tenant_id), event)
