"""Outbound email audit log."""

from ideahub.models import db
from ideahub.models.base import iso, utcnow


class EmailLog(db.Model):
    """
    Every email requested through EmailService is logged here, including the
    ones that only went to the log because no SMTP server is configured.
    """

    __tablename__ = "email_logs"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    recipient_email = db.Column(db.String(255), nullable=False, index=True)
    recipient_name = db.Column(db.String(150), nullable=True)
    subject = db.Column(db.String(500), nullable=False)
    template_name = db.Column(db.String(100), nullable=True)
    status = db.Column(db.String(20), default="queued", comment="queued, sent, logged, failed")
    error_message = db.Column(db.Text, nullable=True)
    notification_id = db.Column(db.Integer, nullable=True)
    event_id = db.Column(db.String(64), nullable=True)

    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_email": self.recipient_email,
            "recipient_name": self.recipient_name,
            "subject": self.subject,
            "template_name": self.template_name,
            "status": self.status,
            "error_message": self.error_message,
            "sent_at": iso(self.sent_at),
            "created_at": iso(self.created_at),
        }
