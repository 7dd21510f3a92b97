"""
Notification domain model.

Models:
    - Notification: in-app notification record with read tracking
"""

from ideahub.models import db
from ideahub.models.base import TenantModel, iso, utcnow


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_TYPES = {
    "idea_submitted",
    "approval_requested",
    "idea_approved",
    "idea_rejected",
    "idea_implemented",
    "new_comment",
    "comment_reply",
    "badge_earned",
    "level_up",
}


class Notification(TenantModel):
    """
    In-app notification entity.

    One record per recipient per (event, type); redelivery of the same event
    hits the unique constraint instead of producing a duplicate.
    """

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    type = db.Column(db.String(40), nullable=False)
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    data = db.Column(db.JSON, default=dict)
    event_id = db.Column(db.String(64), nullable=True, comment="Source domain event")

    # Read tracking
    is_read = db.Column(db.Boolean, default=False, nullable=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)
    email_sent = db.Column(db.Boolean, default=False, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        db.UniqueConstraint("user_id", "event_id", "type", name="uq_notification_user_event_type"),
        db.Index("ix_notifications_tenant_user_read", "tenant_id", "user_id", "is_read"),
    )

    def mark_read(self):
        self.is_read = True
        self.read_at = utcnow()

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "data": self.data or {},
            "event_id": self.event_id,
            "is_read": self.is_read,
            "read_at": iso(self.read_at),
            "email_sent": self.email_sent,
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.type} -> {self.user_id}>"
