"""
Transactional mail for the idea workflow.

Every send attempt is recorded as an EmailLog row. With no MAIL_SERVER the
row is written with status "logged" and nothing leaves the process; SMTP
settings (MAIL_PORT, MAIL_USE_TLS, MAIL_USERNAME, MAIL_PASSWORD,
MAIL_DEFAULT_SENDER) are read per send, and APP_BASE_URL builds idea links.

The ``email`` event-bus subscriber (``handle_event``) sends:
    idea.submitted   → level-1 approvers   (idea_submitted)
    idea.approved    → author              (idea_approved)
    idea.rejected    → author              (idea_rejected)
    comment.created  → idea author and the replied-to comment author (comment_posted,
                       comment_reply), never the commenter
"""

from __future__ import annotations

import html
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

from flask import current_app

from ideahub.models import db
from ideahub.models.auth import User
from ideahub.models.base import utcnow
from ideahub.models.email import EmailLog
from ideahub.services.event_bus import (
    COMMENT_CREATED,
    IDEA_APPROVED,
    IDEA_REJECTED,
    IDEA_SUBMITTED,
)
from ideahub.services.notification_store import mark_email_sent, recipients_for
from ideahub.services.tenant_context import TenantContext

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Email Templates
# ═══════════════════════════════════════════════════════════════════════════

_LAYOUT = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <div style="background: #1e293b; color: white; padding: 16px 24px;">
        <h2 style="margin: 0; font-size: 18px;">IdeaHub</h2>
    </div>
    <div style="padding: 24px; border: 1px solid #e2e8f0; border-top: none;">
        {body}
        <p><a href="{idea_url}">View idea</a></p>
    </div>
</div>
"""

_TEMPLATES: dict[str, dict[str, str]] = {
    "idea_submitted": {
        "subject": "[IdeaHub] New idea awaiting approval: {title}",
        "body": "<p>Hi {recipient_name},</p>"
                "<p><strong>{author_name}</strong> submitted <em>{title}</em> "
                "and it is waiting for your review.</p>",
    },
    "idea_approved": {
        "subject": "[IdeaHub] Your idea was approved: {title}",
        "body": "<p>Hi {recipient_name},</p>"
                "<p>Congratulations! <em>{title}</em> has been approved.</p>",
    },
    "idea_rejected": {
        "subject": "[IdeaHub] Update on your idea: {title}",
        "body": "<p>Hi {recipient_name},</p>"
                "<p><em>{title}</em> was not approved this time.</p>"
                "<p>{notes}</p>",
    },
    "comment_posted": {
        "subject": "[IdeaHub] New comment on {title}",
        "body": "<p>Hi {recipient_name},</p>"
                "<p><strong>{commenter_name}</strong> commented on <em>{title}</em>:</p>"
                "<blockquote>{excerpt}</blockquote>",
    },
    "comment_reply": {
        "subject": "[IdeaHub] New reply to your comment on {title}",
        "body": "<p>Hi {recipient_name},</p>"
                "<p><strong>{commenter_name}</strong> replied to your comment on <em>{title}</em>:</p>"
                "<blockquote>{excerpt}</blockquote>",
    },
}


class EmailService:
    """Renders the built-in templates and delivers them, logging every attempt."""

    @staticmethod
    def is_configured() -> bool:
        return bool(current_app.config.get("MAIL_SERVER"))

    @staticmethod
    def get_template(template_name: str) -> dict[str, str] | None:
        return _TEMPLATES.get(template_name)

    @classmethod
    def send(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        subject: str,
        html_body: str,
        template_name: str | None = None,
        tenant_id: int | None = None,
        event_id: str | None = None,
    ) -> EmailLog:
        """
        Send an email and log it. Does not commit.

        Returns:
            The EmailLog record; status is ``logged`` in log-only mode.
        """
        log = EmailLog(
            tenant_id=tenant_id,
            recipient_email=to_email,
            recipient_name=to_name,
            subject=subject,
            template_name=template_name,
            status="queued",
            event_id=event_id,
        )
        db.session.add(log)
        db.session.flush()

        if not cls.is_configured():
            log.status = "logged"
            log.sent_at = utcnow()
            logger.info(
                "Email (log-only): to=%s subject='%s' template=%s",
                to_email, subject, template_name,
                extra={"tenant_id": tenant_id, "event_id": event_id},
            )
            return log

        try:
            cls._send_smtp(to_email=to_email, to_name=to_name,
                           subject=subject, html_body=html_body)
            log.status = "sent"
            log.sent_at = utcnow()
            logger.info("Email sent: to=%s subject='%s'", to_email, subject,
                        extra={"tenant_id": tenant_id, "event_id": event_id})
        except (smtplib.SMTPException, OSError) as exc:
            log.status = "failed"
            log.error_message = str(exc)[:1000]
            logger.error("Email failed: to=%s error=%s", to_email, exc,
                         extra={"tenant_id": tenant_id, "event_id": event_id})

        return log

    @classmethod
    def send_from_template(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        template_name: str,
        context: dict[str, Any],
        tenant_id: int | None = None,
        event_id: str | None = None,
    ) -> EmailLog | None:
        """Send an email using a named template; context values are HTML-escaped."""
        template = cls.get_template(template_name)
        if not template:
            logger.warning("Email template not found: %s", template_name)
            return None

        safe = _SafeDict({k: html.escape(str(v)) if v is not None else "" for k, v in context.items()})
        subject = template["subject"].format_map(_SafeDict(context))
        body = template["body"].format_map(safe)
        html_body = _LAYOUT.format_map(_SafeDict(body=body, idea_url=safe.get("idea_url", "#")))

        return cls.send(
            to_email=to_email,
            to_name=to_name,
            subject=subject,
            html_body=html_body,
            template_name=template_name,
            tenant_id=tenant_id,
            event_id=event_id,
        )

    @staticmethod
    def _send_smtp(*, to_email: str, to_name: str | None,
                   subject: str, html_body: str) -> None:
        cfg = current_app.config
        server = cfg.get("MAIL_SERVER")
        port = cfg.get("MAIL_PORT", 587)
        use_tls = cfg.get("MAIL_USE_TLS", True)
        username = cfg.get("MAIL_USERNAME")
        password = cfg.get("MAIL_PASSWORD")
        sender = cfg.get("MAIL_DEFAULT_SENDER", f"noreply@{server}")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = f"{to_name} <{to_email}>" if to_name else to_email
        msg.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(server, port, timeout=30) as smtp:
            if use_tls:
                smtp.starttls()
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg)


class _SafeDict(dict):
    """Dict that returns {key} for missing keys instead of raising."""

    def __missing__(self, key):
        return f"{{{key}}}"


# ═══════════════════════════════════════════════════════════════════════════
#  Event subscriber
# ═══════════════════════════════════════════════════════════════════════════

EMAIL_KINDS = frozenset({IDEA_SUBMITTED, IDEA_APPROVED, IDEA_REJECTED, COMMENT_CREATED})


def _route(event):
    """Return (template_name, recipient ids) for an event."""
    p = event.payload
    if event.kind == IDEA_SUBMITTED:
        return "idea_submitted", list(p.get("approver_ids") or [])
    if event.kind == IDEA_APPROVED:
        return "idea_approved", [p["author_id"]]
    if event.kind == IDEA_REJECTED:
        return "idea_rejected", [p["author_id"]]
    if event.kind == COMMENT_CREATED:
        # same audience as the inbox: idea author and replied-to author, never the commenter
        return "comment_posted", recipients_for(event)
    return None, []


def handle_event(event):
    template_name, recipient_ids = _route(event)
    if not template_name or not recipient_ids:
        return

    ctx = TenantContext.system(event.tenant_id)
    p = event.payload
    author = ctx.get_or_none(User, p["author_id"]) if p.get("author_id") else None
    base_url = current_app.config.get("APP_BASE_URL", "").rstrip("/")

    for user_id in recipient_ids:
        recipient = ctx.get_or_none(User, user_id)
        if recipient is None or not recipient.email:
            continue
        name = template_name
        if event.kind == COMMENT_CREATED and user_id == p.get("parent_author_id") \
                and user_id != p.get("author_id"):
            name = "comment_reply"
        log = EmailService.send_from_template(
            to_email=recipient.email,
            to_name=recipient.name,
            template_name=name,
            context={
                "recipient_name": recipient.name,
                "author_name": author.name if author else "",
                "title": p.get("title", ""),
                "notes": p.get("notes") or "",
                "commenter_name": p.get("commenter_name", ""),
                "excerpt": p.get("excerpt", ""),
                "idea_url": f"{base_url}/ideas/{p.get('idea_id')}",
            },
            tenant_id=ctx.tenant_id,
            event_id=event.event_id,
        )
        if log is not None and log.status in ("sent", "logged"):
            mark_email_sent(ctx, recipient.id, event.event_id)
