"""
Social actions on ideas: likes, comments, views.

Counters on the idea row are changed with ``SET col = col + n`` so concurrent
likes and comments never lose an update.
"""

import logging

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError

from ideahub.core.exceptions import NotFoundError, ValidationError
from ideahub.models import db
from ideahub.models.idea import Comment, Idea, IdeaLike
from ideahub.services.event_bus import (
    COMMENT_CREATED,
    IDEA_LIKED,
    IDEA_UNLIKED,
    DomainEvent,
    bus,
)
from ideahub.services.helpers.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)

MAX_COMMENT_LENGTH = 5000


def _bump(ctx, idea, column, delta):
    attr = getattr(Idea, column)
    db.session.execute(
        update(Idea)
        .where(Idea.id == idea.id, Idea.tenant_id == ctx.tenant_id)
        .values({attr: attr + delta})
        .execution_options(synchronize_session=False)
    )


def visible_idea(ctx, idea_id):
    idea = ctx.get(Idea, idea_id)
    if idea.status == "draft" and idea.author_id != ctx.user_id:
        # drafts are private to their author
        raise NotFoundError("Idea", idea_id)
    return idea


def has_liked(ctx, idea_id):
    return db.session.execute(
        ctx.select(IdeaLike).where(IdeaLike.idea_id == idea_id, IdeaLike.user_id == ctx.user_id)
    ).scalar_one_or_none() is not None


def like(ctx, idea_id):
    """Like an idea. Liking twice is a no-op. Returns (liked, likes_count)."""
    user = ctx.require_user()
    with unit_of_work():
        idea = visible_idea(ctx, idea_id)
        try:
            with db.session.begin_nested():
                ctx.add(IdeaLike(idea_id=idea.id, user_id=user.id))
        except IntegrityError:
            db.session.refresh(idea)
            return True, idea.likes_count
        _bump(ctx, idea, "likes_count", 1)
        bus.publish(DomainEvent(kind=IDEA_LIKED, tenant_id=ctx.tenant_id, payload={
            "idea_id": idea.id, "author_id": idea.author_id, "user_id": user.id,
            "title": idea.title,
        }))
    db.session.refresh(idea)
    return True, idea.likes_count


def unlike(ctx, idea_id):
    """Remove a like. Unliking an idea you never liked is a no-op."""
    user = ctx.require_user()
    with unit_of_work():
        idea = visible_idea(ctx, idea_id)
        result = db.session.execute(
            delete(IdeaLike)
            .where(
                IdeaLike.tenant_id == ctx.tenant_id,
                IdeaLike.idea_id == idea.id,
                IdeaLike.user_id == user.id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            _bump(ctx, idea, "likes_count", -1)
            bus.publish(DomainEvent(kind=IDEA_UNLIKED, tenant_id=ctx.tenant_id, payload={
                "idea_id": idea.id, "author_id": idea.author_id, "user_id": user.id,
                "title": idea.title,
            }))
    db.session.refresh(idea)
    return False, max(0, idea.likes_count)


def toggle_like(ctx, idea_id):
    if has_liked(ctx, idea_id):
        return unlike(ctx, idea_id)
    return like(ctx, idea_id)


def add_comment(ctx, idea_id, content, parent_id=None):
    user = ctx.require_user()
    content = (content or "").strip()
    if not content:
        raise ValidationError("content is required", details={"content": "required"})
    if len(content) > MAX_COMMENT_LENGTH:
        raise ValidationError(f"content must be at most {MAX_COMMENT_LENGTH} characters")

    with unit_of_work():
        idea = visible_idea(ctx, idea_id)
        parent = None
        if parent_id is not None:
            parent = ctx.get(Comment, parent_id)
            if parent.idea_id != idea.id:
                raise ValidationError("parent comment belongs to another idea",
                                      details={"parent_id": parent_id})
        comment = ctx.add(Comment(
            idea_id=idea.id, user_id=user.id, parent_id=parent.id if parent else None,
            content=content,
        ))
        db.session.flush()
        _bump(ctx, idea, "comments_count", 1)
        bus.publish(DomainEvent(kind=COMMENT_CREATED, tenant_id=ctx.tenant_id, payload={
            "comment_id": comment.id,
            "idea_id": idea.id,
            "title": idea.title,
            "author_id": idea.author_id,
            "user_id": user.id,
            "commenter_name": user.name,
            "parent_id": parent.id if parent else None,
            "parent_author_id": parent.user_id if parent else None,
            "excerpt": content[:200],
        }))

    logger.info("Comment %s on idea %s", comment.id, idea.id,
                extra={"tenant_id": ctx.tenant_id, "idea_id": idea.id, "user_id": user.id})
    return comment


def list_comments(ctx, idea_id):
    idea = visible_idea(ctx, idea_id)
    return db.session.execute(
        ctx.select(Comment).where(Comment.idea_id == idea.id).order_by(Comment.created_at, Comment.id)
    ).scalars().all()


def record_view(ctx, idea_id):
    with unit_of_work(dispatch=False):
        idea = visible_idea(ctx, idea_id)
        _bump(ctx, idea, "views_count", 1)
    db.session.refresh(idea)
    return idea.views_count
