"""
Logging setup for IdeaHub.

Every record is stamped with the current request id, tenant and user (when
emitted inside a request) so inbox, reward and dispatcher logs can be joined
per tenant. Production writes one JSON object per line; development and tests
write a short readable line.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# Record attributes (set via ``extra=`` or the context filter) that are
# carried into the structured payload.
CONTEXT_FIELDS = ("request_id", "tenant_id", "user_id")
EVENT_FIELDS = (
    "method", "path", "status", "duration_ms", "remote_addr",
    "idea_id", "event_id", "event_kind", "subscriber", "integration_id", "error_kind",
)


class RequestContextFilter(logging.Filter):
    """Copy request id and tenant scope from ``flask.g`` onto the record."""

    def filter(self, record):
        if has_request_context():
            ctx = getattr(g, "tenant_ctx", None)
            defaults = {
                "request_id": getattr(g, "request_id", None),
                "tenant_id": ctx.tenant_id if ctx else None,
                "user_id": ctx.user_id if ctx else None,
            }
            for key, value in defaults.items():
                if getattr(record, key, None) is None:
                    setattr(record, key, value)
        return True


def _record_fields(record, names):
    return {name: getattr(record, name) for name in names if getattr(record, name, None) is not None}


class JSONFormatter(logging.Formatter):
    def format(self, record):
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_record_fields(record, CONTEXT_FIELDS))
        payload.update(_record_fields(record, EVENT_FIELDS))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``12:00:01 INFO  ideahub.services.reward_engine [t=3 u=7] message``"""

    def format(self, record):
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        scope = " ".join(
            f"{label}={getattr(record, name)}"
            for label, name in (("t", "tenant_id"), ("u", "user_id"), ("ev", "event_kind"))
            if getattr(record, name, None) is not None
        )
        line = f"{ts} {record.levelname:<5} {record.name}"
        if scope:
            line += f" [{scope}]"
        line += f" {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install a single stderr handler on the root logger."""
    testing = app.config.get("TESTING", False)
    structured = not app.config.get("DEBUG", False) and not testing

    level_name = (app.config.get("LOG_LEVEL") or os.getenv("LOG_LEVEL") or "INFO").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if structured else ReadableFormatter())
    handler.addFilter(RequestContextFilter())

    root = logging.getLogger()
    # create_app runs once per test session and again in CLI calls
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    app.logger.setLevel(level)

    for name in ("urllib3", "werkzeug", "sqlalchemy.engine"):
        logging.getLogger(name).setLevel(logging.WARNING)

    if not testing:
        app.logger.info("Logging ready (level=%s, json=%s)", level_name, structured)
