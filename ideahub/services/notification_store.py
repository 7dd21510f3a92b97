"""
NotificationStore - per-user inbox.

``deliver`` is idempotent per (user, event, type): redelivering an event finds
the existing row instead of creating a second one. ``handle_event`` is the
``notification_store`` event-bus subscriber and decides who hears about what:

    idea.submitted      level-1 approvers
    approval.decided    next-level approvers, when a level just completed
    idea.approved       author
    idea.rejected       author
    idea.implemented    author
    comment.created     idea author (unless self) and parent comment author
    badge.earned        the user
    user.leveled_up     the user
"""

import logging

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from ideahub.core.exceptions import UnauthorizedError
from ideahub.models import db
from ideahub.models.auth import User
from ideahub.models.base import utcnow
from ideahub.models.notification import Notification
from ideahub.services.event_bus import (
    APPROVAL_DECIDED,
    BADGE_EARNED,
    COMMENT_CREATED,
    IDEA_APPROVED,
    IDEA_IMPLEMENTED,
    IDEA_REJECTED,
    IDEA_SUBMITTED,
    USER_LEVELED_UP,
)
from ideahub.services.tenant_context import TenantContext

logger = logging.getLogger(__name__)

ROUTED_KINDS = frozenset({
    IDEA_SUBMITTED, APPROVAL_DECIDED, IDEA_APPROVED, IDEA_REJECTED,
    IDEA_IMPLEMENTED, COMMENT_CREATED, BADGE_EARNED, USER_LEVELED_UP,
})


# ── Rendering ────────────────────────────────────────────────────────────────


def render(event, user_id):
    """Map an event to (type, title, message, data) for ``user_id``."""
    p = event.payload
    title_text = p.get("title", "")
    data = {"event_kind": event.kind}
    if "idea_id" in p:
        data["idea_id"] = p["idea_id"]

    if event.kind == IDEA_SUBMITTED:
        return ("approval_requested", "New idea awaiting your approval",
                f'"{title_text}" was submitted and needs your review.', data)
    if event.kind == APPROVAL_DECIDED:
        data["level"] = p.get("current_level")
        return ("approval_requested", f"Idea reached approval level {p.get('current_level')}",
                f'"{title_text}" cleared level {p.get("level")} and needs your review.', data)
    if event.kind == IDEA_APPROVED:
        return ("idea_approved", "Your idea was approved!",
                f'Congratulations! "{title_text}" has been approved.', data)
    if event.kind == IDEA_REJECTED:
        notes = p.get("notes")
        msg = f'"{title_text}" was not approved.'
        if notes:
            msg += f" Feedback: {notes}"
        return ("idea_rejected", "Your idea was not approved", msg, data)
    if event.kind == IDEA_IMPLEMENTED:
        return ("idea_implemented", "Your idea was implemented",
                f'"{title_text}" has been marked as implemented.', data)
    if event.kind == COMMENT_CREATED:
        data["comment_id"] = p.get("comment_id")
        if p.get("parent_author_id") == user_id and p.get("author_id") != user_id:
            return ("comment_reply", "New reply to your comment",
                    f'{p.get("commenter_name", "Someone")} replied on "{title_text}".', data)
        return ("new_comment", "New comment on your idea",
                f'{p.get("commenter_name", "Someone")} commented on "{title_text}".', data)
    if event.kind == BADGE_EARNED:
        data.update({"badge_id": p.get("badge_id"), "slug": p.get("slug"),
                     "points_reward": p.get("points_reward")})
        return ("badge_earned", "New badge earned!",
                f'You earned the "{p.get("name")}" badge.', data)
    if event.kind == USER_LEVELED_UP:
        data.update({"level": p.get("new_level"), "title": p.get("title")})
        return ("level_up", f"Level up! You reached level {p.get('new_level')}",
                f'Your new rank is {p.get("title")}.', data)
    raise ValueError(f"No notification template for {event.kind}")


def recipients_for(event):
    p = event.payload
    if event.kind == IDEA_SUBMITTED:
        return list(p.get("approver_ids") or [])
    if event.kind == APPROVAL_DECIDED:
        return list(p.get("next_level_approver_ids") or [])
    if event.kind in (IDEA_APPROVED, IDEA_REJECTED, IDEA_IMPLEMENTED):
        return [p["author_id"]]
    if event.kind == COMMENT_CREATED:
        commenter = p.get("user_id")
        targets = []
        for uid in (p.get("author_id"), p.get("parent_author_id")):
            if uid is not None and uid != commenter and uid not in targets:
                targets.append(uid)
        return targets
    if event.kind in (BADGE_EARNED, USER_LEVELED_UP):
        return [p["user_id"]]
    return []


# ═════════════════════════════════════════════════════════════════════════════
# Store operations
# ═════════════════════════════════════════════════════════════════════════════


def _existing(ctx, user_id, event_id, ntype):
    return db.session.execute(
        ctx.select(Notification).where(
            Notification.user_id == user_id,
            Notification.event_id == event_id,
            Notification.type == ntype,
        )
    ).scalar_one_or_none()


def deliver(ctx, user_id, event):
    """Create (or return the existing) inbox row for ``user_id``."""
    ntype, title, message, data = render(event, user_id)
    found = _existing(ctx, user_id, event.event_id, ntype)
    if found is not None:
        return found

    notif = Notification(
        user_id=user_id, type=ntype, title=title, message=message,
        data=data, event_id=event.event_id, is_read=False,
    )
    try:
        with db.session.begin_nested():
            ctx.add(notif)
    except IntegrityError:
        return _existing(ctx, user_id, event.event_id, ntype)
    return notif


def handle_event(event):
    ctx = TenantContext.system(event.tenant_id)
    for user_id in recipients_for(event):
        if ctx.get_or_none(User, user_id) is None:
            logger.warning("Notification recipient %s not in tenant", user_id,
                           extra={"tenant_id": ctx.tenant_id, "event_id": event.event_id})
            continue
        deliver(ctx, user_id, event)


def list_for_user(ctx, unread_only=False, limit=50, offset=0):
    """Caller's notifications, newest first. Returns (items, total)."""
    user = ctx.require_user()
    stmt = ctx.select(Notification).where(Notification.user_id == user.id)
    if unread_only:
        stmt = stmt.where(Notification.is_read.is_(False))
    total = db.session.execute(
        stmt.with_only_columns(func.count(Notification.id)).order_by(None)
    ).scalar_one()
    items = db.session.execute(
        stmt.order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset(offset).limit(limit)
    ).scalars().all()
    return items, total


def unread_count(ctx):
    user = ctx.require_user()
    return db.session.execute(
        ctx.select(Notification)
        .with_only_columns(func.count(Notification.id))
        .where(Notification.user_id == user.id, Notification.is_read.is_(False))
    ).scalar_one()


def mark_read(ctx, notification_id):
    """Mark one notification read. Only its owner may do so."""
    user = ctx.require_user()
    notif = ctx.get(Notification, notification_id)
    if notif.user_id != user.id:
        logger.warning("User %s tried to read notification %s", user.id, notif.id,
                       extra={"tenant_id": ctx.tenant_id, "user_id": user.id})
        raise UnauthorizedError("You can only update your own notifications")
    if not notif.is_read:
        notif.mark_read()
    db.session.commit()
    return notif


def mark_all_read(ctx):
    """Mark all of the caller's unread notifications read. Returns the count."""
    user = ctx.require_user()
    result = db.session.execute(
        update(Notification)
        .where(
            Notification.tenant_id == ctx.tenant_id,
            Notification.user_id == user.id,
            Notification.is_read.is_(False),
        )
        .values(is_read=True, read_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )
    db.session.commit()
    return result.rowcount


def mark_email_sent(ctx, user_id, event_id):
    db.session.execute(
        update(Notification)
        .where(
            Notification.tenant_id == ctx.tenant_id,
            Notification.user_id == user_id,
            Notification.event_id == event_id,
        )
        .values(email_sent=True)
        .execution_options(synchronize_session=False)
    )


def delete_notification(ctx, notification_id):
    user = ctx.require_user()
    notif = ctx.get(Notification, notification_id)
    if notif.user_id != user.id:
        raise UnauthorizedError("You can only delete your own notifications")
    db.session.delete(notif)
    db.session.commit()


def recent(ctx, since_id=0, limit=20):
    """Notifications newer than ``since_id``; used by polling clients."""
    user = ctx.require_user()
    return db.session.execute(
        ctx.select(Notification)
        .where(Notification.user_id == user.id, Notification.id > since_id)
        .order_by(Notification.id)
        .limit(limit)
    ).scalars().all()
