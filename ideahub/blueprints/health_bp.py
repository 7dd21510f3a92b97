"""
Probes for load balancers and the container orchestrator.

    GET /api/v1/health/ready  - process is up
    GET /api/v1/health/live   - database reachable, outbox backlog, dispatcher mode

Dead outbox events mark the outbox "degraded" but keep the probe at 200;
only an unreachable database fails it.
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from ideahub.models import db
from ideahub.models.events import OutboxEvent

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


def _database_check():
    started = time.perf_counter()
    try:
        db.session.execute(select(1))
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Database probe failed: %s", exc)
        return {"status": "error", "detail": str(exc)}
    return {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000, 1)}


def _outbox_check():
    by_status = dict(db.session.execute(
        select(OutboxEvent.status, func.count(OutboxEvent.id)).group_by(OutboxEvent.status)
    ).all())
    dead = by_status.get("dead", 0)
    return {
        "status": "degraded" if dead else "ok",
        "pending": by_status.get("pending", 0),
        "dead": dead,
    }


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    checks = {"database": _database_check()}
    healthy = checks["database"]["status"] == "ok"
    if healthy:
        checks["outbox"] = _outbox_check()

    dispatcher = current_app.extensions.get("event_dispatcher")
    checks["dispatcher"] = {"mode": getattr(dispatcher, "mode", None)}

    return jsonify({
        "status": "healthy" if healthy else "degraded",
        "checks": checks,
    }), (200 if healthy else 503)
