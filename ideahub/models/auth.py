"""
Auth Models - tenants and users.

Tenant is the isolation boundary; every other table carries a tenant_id.
User carries the role that drives approval authority plus the gamification
columns the reward engine mutates with atomic increments.
"""

from datetime import datetime, timezone

from ideahub.models import db
from ideahub.models.base import as_utc, iso, utcnow


# ── Roles & authority tiers ──────────────────────────────────────────────────

ROLE_TIERS = {
    "employee": 0,
    "team_lead": 1,
    "department_head": 2,
    "admin": 3,
}

VALID_ROLES = frozenset(ROLE_TIERS)
MAX_TIER = max(ROLE_TIERS.values())

# Counters the reward engine increments and badge criteria read.
USER_COUNTERS = (
    "ideas_submitted",
    "ideas_approved",
    "ideas_implemented",
    "comments_posted",
    "likes_given",
    "likes_received",
    "total_badges",
)


# ═══════════════════════════════════════════════════════════════
# 1. TENANTS
# ═══════════════════════════════════════════════════════════════
class Tenant(db.Model):
    __tablename__ = "tenants"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    subdomain = db.Column(db.String(100), unique=True, nullable=False)
    domain = db.Column(db.String(200), unique=True, nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    trial_ends_at = db.Column(db.DateTime(timezone=True), nullable=True)
    subscribed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    settings = db.Column(db.JSON, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    users = db.relationship("User", back_populates="tenant", lazy="dynamic")

    def is_on_trial(self, now=None):
        now = now or datetime.now(timezone.utc)
        ends = as_utc(self.trial_ends_at)
        return bool(ends and ends > now and not self.subscribed_at)

    def has_expired(self, now=None):
        """True when the trial ended and the tenant never subscribed."""
        now = now or datetime.now(timezone.utc)
        ends = as_utc(self.trial_ends_at)
        return bool(ends and ends <= now and not self.subscribed_at)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "subdomain": self.subdomain,
            "domain": self.domain,
            "is_active": self.is_active,
            "trial_ends_at": iso(self.trial_ends_at),
            "subscribed_at": iso(self.subscribed_at),
            "settings": self.settings or {},
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f"<Tenant {self.id}: {self.subdomain}>"


# ═══════════════════════════════════════════════════════════════
# 2. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    email = db.Column(db.String(200), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    role = db.Column(db.String(30), default="employee", nullable=False)
    is_platform_admin = db.Column(db.Boolean, default=False, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    # Gamification
    points = db.Column(db.Integer, default=0, nullable=False)
    experience = db.Column(db.Integer, default=0, nullable=False)
    level = db.Column(db.Integer, default=1, nullable=False)
    title = db.Column(db.String(50), default="Newcomer")
    ideas_submitted = db.Column(db.Integer, default=0, nullable=False)
    ideas_approved = db.Column(db.Integer, default=0, nullable=False)
    ideas_implemented = db.Column(db.Integer, default=0, nullable=False)
    comments_posted = db.Column(db.Integer, default=0, nullable=False)
    likes_given = db.Column(db.Integer, default=0, nullable=False)
    likes_received = db.Column(db.Integer, default=0, nullable=False)
    total_badges = db.Column(db.Integer, default=0, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    # Same email can exist in different tenants
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "email", name="uq_user_tenant_email"),
        db.Index("ix_users_tenant_id", "tenant_id"),
        db.Index("ix_users_tenant_points", "tenant_id", "points"),
    )

    tenant = db.relationship("Tenant", back_populates="users")

    @property
    def tier(self):
        """Approval authority tier derived from the role."""
        return ROLE_TIERS.get(self.role, 0)

    @property
    def is_admin(self):
        return self.role == "admin"

    def to_dict(self, include_stats=False):
        d = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "is_active": self.is_active,
            "points": self.points,
            "level": self.level,
            "title": self.title,
        }
        if include_stats:
            d["experience"] = self.experience
            for counter in USER_COUNTERS:
                d[counter] = getattr(self, counter)
        return d

    def __repr__(self):
        return f"<User {self.id}: {self.email}>"
