"""
IdeaHub - Idea domain models.

Models:
    - Idea: subject of the approval workflow
    - Comment: threaded comment on an idea (drives comment.created)
    - IdeaLike: one row per (idea, user) like

Idea.status is owned by ``ideahub.services.workflow_service``; nothing else
writes it.
"""

from ideahub.models import db
from ideahub.models.base import TenantModel, iso, utcnow


# ── Constants ────────────────────────────────────────────────────────────────

IDEA_STATUSES = ("draft", "pending", "approved", "rejected", "implemented", "archived")

IDEA_TRANSITIONS = {
    "draft":       ["pending"],
    "pending":     ["approved", "rejected"],
    "approved":    ["implemented"],
    "rejected":    [],
    "implemented": [],
    "archived":    [],
}

# Timestamp stamped on first entry into a status.
STATUS_TIMESTAMPS = {
    "pending": "submitted_at",
    "approved": "approved_at",
    "rejected": "rejected_at",
    "implemented": "implemented_at",
}


def validate_idea_transition(old_status, new_status):
    """Return True if old_status -> new_status is a legal idea transition."""
    return new_status in IDEA_TRANSITIONS.get(old_status, [])


class Idea(TenantModel):
    """An idea moving through draft -> pending -> approved/rejected -> implemented."""

    __tablename__ = "ideas"

    id = db.Column(db.Integer, primary_key=True)
    author_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    budget = db.Column(db.Numeric(12, 2), nullable=True)
    status = db.Column(db.String(20), default="draft", nullable=False)

    # Revisions: a rejected idea comes back as a fresh draft pointing at its parent
    revision = db.Column(db.Integer, default=1, nullable=False)
    parent_id = db.Column(db.Integer, db.ForeignKey("ideas.id", ondelete="SET NULL"), nullable=True)

    # Approval routing snapshot, fixed at submission
    workflow_id = db.Column(
        db.Integer, db.ForeignKey("approval_workflows.id", ondelete="SET NULL"), nullable=True,
    )
    total_levels = db.Column(db.Integer, default=0, nullable=False)

    # Counters (atomic increments only)
    likes_count = db.Column(db.Integer, default=0, nullable=False)
    comments_count = db.Column(db.Integer, default=0, nullable=False)
    views_count = db.Column(db.Integer, default=0, nullable=False)

    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    implemented_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    author = db.relationship("User", foreign_keys=[author_id])

    __table_args__ = (
        db.Index("ix_ideas_tenant_status", "tenant_id", "status"),
        db.Index("ix_ideas_tenant_author", "tenant_id", "author_id"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "author_id": self.author_id,
            "title": self.title,
            "description": self.description,
            "budget": float(self.budget) if self.budget is not None else None,
            "status": self.status,
            "revision": self.revision,
            "parent_id": self.parent_id,
            "workflow_id": self.workflow_id,
            "total_levels": self.total_levels,
            "likes_count": self.likes_count,
            "comments_count": self.comments_count,
            "views_count": self.views_count,
            "submitted_at": iso(self.submitted_at),
            "approved_at": iso(self.approved_at),
            "rejected_at": iso(self.rejected_at),
            "implemented_at": iso(self.implemented_at),
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f"<Idea {self.id}: {self.status} {self.title[:40]}>"


class Comment(TenantModel):
    __tablename__ = "comments"

    id = db.Column(db.Integer, primary_key=True)
    idea_id = db.Column(
        db.Integer, db.ForeignKey("ideas.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    parent_id = db.Column(db.Integer, db.ForeignKey("comments.id", ondelete="CASCADE"), nullable=True)
    content = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "idea_id": self.idea_id,
            "user_id": self.user_id,
            "parent_id": self.parent_id,
            "content": self.content,
            "created_at": iso(self.created_at),
        }


class IdeaLike(TenantModel):
    __tablename__ = "idea_likes"

    id = db.Column(db.Integer, primary_key=True)
    idea_id = db.Column(
        db.Integer, db.ForeignKey("ideas.id", ondelete="CASCADE"), nullable=False,
    )
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        db.UniqueConstraint("idea_id", "user_id", name="uq_idea_like_user"),
    )
