"""
Chat integration models.

Integration   - per-tenant outbound channel (Slack, Teams, signed webhook)
IntegrationLog - append-only record of every send attempt
"""

from ideahub.models import db
from ideahub.models.base import TenantModel, iso, utcnow

INTEGRATION_TYPES = ("slack", "teams", "webhook")

# Events forwarded when an integration does not list its own.
DEFAULT_INTEGRATION_EVENTS = ["idea.submitted", "idea.approved"]


class Integration(TenantModel):
    __tablename__ = "integrations"

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(20), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    config = db.Column(db.JSON, default=dict, comment="webhook_url, secret, channel ...")
    events = db.Column(db.JSON, default=list)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    last_sync_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    logs = db.relationship(
        "IntegrationLog",
        backref="integration",
        cascade="all, delete-orphan",
        lazy="dynamic",
    )

    def wants(self, kind):
        return kind in (self.events or DEFAULT_INTEGRATION_EVENTS)

    def to_dict(self):
        config = dict(self.config or {})
        if config.get("secret"):
            config["secret"] = "***"
        return {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "config": config,
            "events": self.events or list(DEFAULT_INTEGRATION_EVENTS),
            "is_active": self.is_active,
            "last_sync_at": iso(self.last_sync_at),
            "created_at": iso(self.created_at),
        }


class IntegrationLog(TenantModel):
    __tablename__ = "integration_logs"

    id = db.Column(db.Integer, primary_key=True)
    integration_id = db.Column(
        db.Integer, db.ForeignKey("integrations.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    event_id = db.Column(db.String(64), nullable=True)
    action = db.Column(db.String(50), nullable=False)
    status = db.Column(db.String(20), nullable=False, comment="success | failed")
    request_data = db.Column(db.JSON, default=dict)
    response_status = db.Column(db.Integer, nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    duration_ms = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "integration_id": self.integration_id,
            "event_id": self.event_id,
            "action": self.action,
            "status": self.status,
            "response_status": self.response_status,
            "error_message": self.error_message,
            "duration_ms": self.duration_ms,
            "created_at": iso(self.created_at),
        }
