"""
Event outbox models.

OutboxEvent rows are written in the same transaction as the state change
that produced them and dispatched after commit. EventDelivery keeps one row
per (event, subscriber) so redelivery skips subscribers that already
succeeded and best-effort subscribers are never called twice.
"""

from ideahub.models import db
from ideahub.models.base import iso, utcnow

OUTBOX_STATUSES = ("pending", "dispatched", "dead")
DELIVERY_STATUSES = ("started", "succeeded", "failed")


class OutboxEvent(db.Model):
    __tablename__ = "outbox_events"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.String(64), unique=True, nullable=False)
    kind = db.Column(db.String(50), nullable=False)
    version = db.Column(db.Integer, default=1, nullable=False)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    payload = db.Column(db.JSON, nullable=False, default=dict)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    status = db.Column(db.String(20), default="pending", nullable=False)
    attempts = db.Column(db.Integer, default=0, nullable=False)
    last_error = db.Column(db.Text, nullable=True)
    dispatched_at = db.Column(db.DateTime(timezone=True), nullable=True)

    __table_args__ = (
        db.Index("ix_outbox_status_id", "status", "id"),
    )

    def to_dict(self):
        return {
            "event_id": self.event_id,
            "kind": self.kind,
            "version": self.version,
            "tenant_id": self.tenant_id,
            "occurred_at": iso(self.occurred_at),
            "payload": self.payload or {},
            "status": self.status,
            "attempts": self.attempts,
        }

    def __repr__(self):
        return f"<OutboxEvent {self.event_id}: {self.kind} {self.status}>"


class EventDelivery(db.Model):
    __tablename__ = "event_deliveries"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.String(64), nullable=False)
    subscriber = db.Column(db.String(60), nullable=False)
    status = db.Column(db.String(20), default="started", nullable=False)
    attempts = db.Column(db.Integer, default=0, nullable=False)
    error = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    __table_args__ = (
        db.UniqueConstraint("event_id", "subscriber", name="uq_delivery_event_subscriber"),
    )

    def to_dict(self):
        return {
            "event_id": self.event_id,
            "subscriber": self.subscriber,
            "status": self.status,
            "attempts": self.attempts,
            "error": self.error,
            "completed_at": iso(self.completed_at),
        }
