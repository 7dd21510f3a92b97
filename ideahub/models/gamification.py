"""
Gamification models - reward ledger, badges, badge grants.

RewardLedgerEntry is the idempotency record for reward application: the
unique (user_id, event_id) constraint is what makes replayed events no-ops.
UserBadge is append-only with a unique (user_id, badge_id) constraint.
"""

from ideahub.models import db
from ideahub.models.base import TenantModel, iso, utcnow

BADGE_RARITIES = ("common", "rare", "epic", "legendary")


class RewardLedgerEntry(TenantModel):
    __tablename__ = "reward_ledger"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    event_id = db.Column(db.String(64), nullable=False)
    event_kind = db.Column(db.String(50), nullable=False)
    points = db.Column(db.Integer, default=0, nullable=False)
    experience = db.Column(db.Integer, default=0, nullable=False)
    reason = db.Column(db.String(200), default="")
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("user_id", "event_id", name="uq_reward_user_event"),
        db.Index("ix_reward_tenant_user", "tenant_id", "user_id"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "event_id": self.event_id,
            "event_kind": self.event_kind,
            "points": self.points,
            "experience": self.experience,
            "reason": self.reason,
            "created_at": iso(self.created_at),
        }


class Badge(db.Model):
    """
    Badge definition.

    tenant_id NULL = platform badge visible to every tenant; a tenant may add
    its own. ``criteria`` is a numeric threshold over a user counter:
        {"field": "ideas_submitted", "count": 10}
    ``field`` may also be "level".
    """

    __tablename__ = "badges"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    slug = db.Column(db.String(100), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    icon = db.Column(db.String(100), nullable=True)
    category = db.Column(db.String(30), nullable=True)
    criteria = db.Column(db.JSON, nullable=False, default=dict)
    points_reward = db.Column(db.Integer, default=0, nullable=False)
    rarity = db.Column(db.String(20), default="common")
    sort_order = db.Column(db.Integer, default=0)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "slug", name="uq_badge_tenant_slug"),
    )

    def is_satisfied_by(self, user):
        field = (self.criteria or {}).get("field")
        target = (self.criteria or {}).get("count")
        if not field or target is None:
            return False
        return int(getattr(user, field, 0) or 0) >= int(target)

    def to_dict(self):
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "category": self.category,
            "criteria": self.criteria or {},
            "points_reward": self.points_reward,
            "rarity": self.rarity,
        }


class UserBadge(TenantModel):
    __tablename__ = "user_badges"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    badge_id = db.Column(db.Integer, db.ForeignKey("badges.id", ondelete="CASCADE"), nullable=False)
    event_id = db.Column(db.String(64), nullable=True, comment="Event that triggered the grant")
    earned_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)

    badge = db.relationship("Badge")

    __table_args__ = (
        db.UniqueConstraint("user_id", "badge_id", name="uq_user_badge"),
    )

    def to_dict(self):
        d = self.badge.to_dict() if self.badge else {"id": self.badge_id}
        d["earned_at"] = iso(self.earned_at)
        return d
