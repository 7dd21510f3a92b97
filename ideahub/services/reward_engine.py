"""
RewardEngine - points, experience, levels and badges.

Runs as the ``reward_engine`` event-bus subscriber. Every grant is keyed by
(user_id, event_id) in ``reward_ledger``; the row is inserted inside a
savepoint and a unique violation means the event was already applied, so
redelivery is a no-op. Counter and balance changes are atomic SQL
increments, never read-modify-write.

Level curve (cumulative):
    xp_to_reach(L) = Σ_{k=1}^{L-1} floor(100 · k^1.5)
    level 2 at 100 xp, level 3 at 382, level 4 at 901, ...
"""

import logging
import math
from dataclasses import dataclass
from functools import lru_cache

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError

from ideahub.models import db
from ideahub.models.auth import USER_COUNTERS, User
from ideahub.models.gamification import Badge, RewardLedgerEntry, UserBadge
from ideahub.services.event_bus import (
    BADGE_EARNED,
    COMMENT_CREATED,
    IDEA_APPROVED,
    IDEA_IMPLEMENTED,
    IDEA_LIKED,
    IDEA_SUBMITTED,
    IDEA_UNLIKED,
    USER_LEVELED_UP,
    DomainEvent,
    bus,
)
from ideahub.services.tenant_context import TenantContext

logger = logging.getLogger(__name__)

MAX_LEVEL = 100
BADGE_EXPERIENCE = 50

RANK_TITLES = (
    (50, "Innovation Master"),
    (40, "Visionary Leader"),
    (30, "Expert Innovator"),
    (20, "Senior Contributor"),
    (10, "Active Contributor"),
    (5, "Rising Star"),
)
DEFAULT_TITLE = "Newcomer"


@dataclass(frozen=True)
class RewardRule:
    recipient: str          # payload key holding the user id
    points: int
    experience: int
    counter: str | None
    reason: str
    skip_if_actor: bool = False   # no grant when recipient is the acting user


REWARD_RULES = {
    IDEA_SUBMITTED: (RewardRule("author_id", 10, 20, "ideas_submitted", "Submitted an idea"),),
    IDEA_APPROVED: (RewardRule("author_id", 50, 100, "ideas_approved", "Idea approved"),),
    IDEA_IMPLEMENTED: (RewardRule("author_id", 100, 200, "ideas_implemented", "Idea implemented"),),
    COMMENT_CREATED: (RewardRule("user_id", 5, 10, "comments_posted", "Posted a comment"),),
    IDEA_LIKED: (
        RewardRule("author_id", 2, 5, "likes_received", "Received a like", skip_if_actor=True),
        RewardRule("user_id", 0, 2, "likes_given", "Liked an idea"),
    ),
    IDEA_UNLIKED: (
        RewardRule("author_id", -2, 0, None, "Lost a like", skip_if_actor=True),
    ),
}

REWARDED_KINDS = frozenset(REWARD_RULES)


# ── Level curve ──────────────────────────────────────────────────────────────


@lru_cache(maxsize=None)
def xp_to_reach(level):
    """Total experience needed to reach ``level`` (level 1 needs 0)."""
    if level <= 1:
        return 0
    return xp_to_reach(level - 1) + math.floor(100 * (level - 1) ** 1.5)


def level_for_experience(experience):
    level = 1
    while level < MAX_LEVEL and experience >= xp_to_reach(level + 1):
        level += 1
    return level


def rank_for_level(level):
    for threshold, title in RANK_TITLES:
        if level >= threshold:
            return title
    return DEFAULT_TITLE


# ── Default badge catalogue ──────────────────────────────────────────────────

DEFAULT_BADGES = [
    # slug, name, description, category, field, count, points, rarity
    ("first-idea", "First Idea", "Submitted your first idea", "ideas", "ideas_submitted", 1, 10, "common"),
    ("idea-generator", "Idea Generator", "Submitted 10 ideas", "ideas", "ideas_submitted", 10, 50, "rare"),
    ("innovation-machine", "Innovation Machine", "Submitted 50 ideas", "ideas", "ideas_submitted", 50, 200, "epic"),
    ("first-approval", "First Approval", "Got your first idea approved", "approvals", "ideas_approved", 1, 25, "common"),
    ("approved-innovator", "Approved Innovator", "Got 5 ideas approved", "approvals", "ideas_approved", 5, 100, "rare"),
    ("elite-innovator", "Elite Innovator", "Got 25 ideas approved", "approvals", "ideas_approved", 25, 500, "legendary"),
    ("first-comment", "First Comment", "Posted your first comment", "engagement", "comments_posted", 1, 5, "common"),
    ("conversationalist", "Conversationalist", "Posted 25 comments", "engagement", "comments_posted", 25, 50, "rare"),
    ("discussion-champion", "Discussion Champion", "Posted 100 comments", "engagement", "comments_posted", 100, 150, "epic"),
    ("popular-idea", "Popular", "Received 10 likes", "social", "likes_received", 10, 25, "common"),
    ("crowd-favorite", "Crowd Favorite", "Received 50 likes", "social", "likes_received", 50, 100, "rare"),
    ("viral-innovator", "Viral Innovator", "Received 100 likes", "social", "likes_received", 100, 250, "epic"),
    ("rising-star", "Rising Star", "Reached level 5", "level", "level", 5, 50, "common"),
    ("active-contributor", "Active Contributor", "Reached level 10", "level", "level", 10, 100, "rare"),
    ("senior-contributor", "Senior Contributor", "Reached level 20", "level", "level", 20, 200, "rare"),
    ("expert-innovator", "Expert Innovator", "Reached level 30", "level", "level", 30, 300, "epic"),
    ("visionary-leader", "Visionary Leader", "Reached level 40", "level", "level", 40, 400, "epic"),
    ("innovation-master", "Innovation Master", "Reached level 50", "level", "level", 50, 500, "legendary"),
]


def seed_default_badges(tenant_id=None):
    """Insert missing catalogue badges. Returns the number created. Does not commit."""
    existing = set(db.session.execute(
        select(Badge.slug).where(
            Badge.tenant_id.is_(None) if tenant_id is None else Badge.tenant_id == tenant_id
        )
    ).scalars())
    created = 0
    for order, (slug, name, desc, category, fld, count, points, rarity) in enumerate(DEFAULT_BADGES):
        if slug in existing:
            continue
        db.session.add(Badge(
            tenant_id=tenant_id, slug=slug, name=name, description=desc, category=category,
            criteria={"field": fld, "count": count}, points_reward=points, rarity=rarity,
            sort_order=order,
        ))
        created += 1
    db.session.flush()
    return created


# ═════════════════════════════════════════════════════════════════════════════
# Grants
# ═════════════════════════════════════════════════════════════════════════════


def _increment(ctx, user, **deltas):
    values = {}
    for column, delta in deltas.items():
        if delta:
            attr = getattr(User, column)
            values[attr] = attr + delta
    if values:
        db.session.execute(
            update(User)
            .where(User.id == user.id, User.tenant_id == ctx.tenant_id)
            .values(values)
            .execution_options(synchronize_session=False)
        )
    db.session.refresh(user)


def _insert_ledger_entry(ctx, user, event_id, kind, points, experience, reason):
    """Savepoint insert; None when (user, event_id) was already applied."""
    exists = db.session.execute(
        select(RewardLedgerEntry.id).where(
            RewardLedgerEntry.user_id == user.id, RewardLedgerEntry.event_id == event_id,
        )
    ).first()
    if exists:
        return None
    entry = RewardLedgerEntry(
        user_id=user.id, event_id=event_id, event_kind=kind,
        points=points, experience=experience, reason=reason,
    )
    try:
        with db.session.begin_nested():
            ctx.add(entry)
    except IntegrityError:
        return None
    return entry


def grant(ctx, user, event, points, experience, counter=None, reason=""):
    """Apply one reward for ``event`` to ``user`` exactly once.

    Returns the ledger entry, or None for a replay.
    """
    entry = _insert_ledger_entry(ctx, user, event.event_id, event.kind, points, experience, reason)
    extra = {"tenant_id": ctx.tenant_id, "user_id": user.id,
             "event_id": event.event_id, "event_kind": event.kind}
    if entry is None:
        logger.info("Reward replay skipped", extra=extra)
        return None

    deltas = {"points": points, "experience": experience}
    if counter:
        if counter not in USER_COUNTERS:
            raise ValueError(f"Unknown counter: {counter}")
        deltas[counter] = 1
    _increment(ctx, user, **deltas)
    logger.info("Granted %+d pts / %+d xp (%s)", points, experience, reason, extra=extra)

    _settle(ctx, user, event)
    return entry


def _check_level(ctx, user, event):
    new_level = level_for_experience(user.experience or 0)
    if new_level <= (user.level or 1):
        return False
    old_level = user.level
    title = rank_for_level(new_level)
    result = db.session.execute(
        update(User)
        .where(User.id == user.id, User.tenant_id == ctx.tenant_id, User.level < new_level)
        .values(level=new_level, title=title)
        .execution_options(synchronize_session=False)
    )
    db.session.refresh(user)
    if result.rowcount != 1:
        return False
    bus.publish(DomainEvent(kind=USER_LEVELED_UP, tenant_id=ctx.tenant_id, payload={
        "user_id": user.id,
        "old_level": old_level,
        "new_level": new_level,
        "title": title,
        "next_level_xp": xp_to_reach(new_level + 1),
        "source_event_id": event.event_id,
    }))
    logger.info("User %s leveled up %s → %s", user.id, old_level, new_level,
                extra={"tenant_id": ctx.tenant_id, "user_id": user.id})
    return True


def available_badges(ctx):
    return db.session.execute(
        select(Badge)
        .where(
            Badge.is_active.is_(True),
            or_(Badge.tenant_id.is_(None), Badge.tenant_id == ctx.tenant_id),
        )
        .order_by(Badge.sort_order, Badge.id)
    ).scalars().all()


def earned_badge_ids(ctx, user):
    return set(db.session.execute(
        select(UserBadge.badge_id).where(
            UserBadge.user_id == user.id, UserBadge.tenant_id == ctx.tenant_id,
        )
    ).scalars())


def award_badge(ctx, user, badge, event):
    """Grant ``badge`` once. Returns the UserBadge, or None if already held."""
    user_badge = UserBadge(user_id=user.id, badge_id=badge.id, event_id=event.event_id)
    try:
        with db.session.begin_nested():
            ctx.add(user_badge)
    except IntegrityError:
        return None

    _insert_ledger_entry(
        ctx, user, f"{event.event_id}:badge:{badge.id}", BADGE_EARNED,
        badge.points_reward, BADGE_EXPERIENCE, f"Earned badge: {badge.name}",
    )
    _increment(ctx, user, total_badges=1, points=badge.points_reward, experience=BADGE_EXPERIENCE)

    bus.publish(DomainEvent(kind=BADGE_EARNED, tenant_id=ctx.tenant_id, payload={
        "user_id": user.id,
        "badge_id": badge.id,
        "slug": badge.slug,
        "name": badge.name,
        "icon": badge.icon,
        "rarity": badge.rarity,
        "points_reward": badge.points_reward,
        "source_event_id": event.event_id,
    }))
    logger.info("User %s earned badge %s", user.id, badge.slug,
                extra={"tenant_id": ctx.tenant_id, "user_id": user.id, "event_id": event.event_id})
    return user_badge


def check_badges(ctx, user, event):
    earned = earned_badge_ids(ctx, user)
    granted = []
    for badge in available_badges(ctx):
        if badge.id in earned or not badge.is_satisfied_by(user):
            continue
        if award_badge(ctx, user, badge, event) is not None:
            granted.append(badge)
    return granted


def _settle(ctx, user, event):
    """Level and badge checks until nothing changes (badge xp can level up)."""
    while True:
        _check_level(ctx, user, event)
        if not check_badges(ctx, user, event):
            break


# ═════════════════════════════════════════════════════════════════════════════
# Subscriber
# ═════════════════════════════════════════════════════════════════════════════


def apply_event(ctx, event):
    """Apply every reward rule for ``event``. Returns the new ledger entries."""
    applied = []
    actor_id = event.payload.get("user_id")
    for rule in REWARD_RULES.get(event.kind, ()):
        user_id = event.payload.get(rule.recipient)
        if user_id is None:
            continue
        if rule.skip_if_actor and user_id == actor_id:
            continue
        user = ctx.get_or_none(User, user_id)
        if user is None:
            logger.warning("Reward recipient %s not found", user_id,
                           extra={"tenant_id": ctx.tenant_id, "event_id": event.event_id})
            continue
        entry = grant(ctx, user, event, rule.points, rule.experience, rule.counter, rule.reason)
        if entry is not None:
            applied.append(entry)
    return applied


def handle_event(event):
    apply_event(TenantContext.system(event.tenant_id), event)


# ═════════════════════════════════════════════════════════════════════════════
# Queries
# ═════════════════════════════════════════════════════════════════════════════


def get_user_stats(ctx, user_id):
    user = ctx.get(User, user_id)
    current_floor = xp_to_reach(user.level)
    next_xp = xp_to_reach(user.level + 1)
    span = max(next_xp - current_floor, 1)
    progress = int(min(100, max(0, (user.experience - current_floor) * 100 / span)))

    badges = db.session.execute(
        ctx.select(UserBadge).where(UserBadge.user_id == user.id).order_by(UserBadge.earned_at)
    ).scalars().all()

    rank = db.session.execute(
        ctx.select(User).with_only_columns(func.count(User.id))
        .where(User.is_active.is_(True), User.points > user.points)
    ).scalar_one() + 1

    stats = user.to_dict(include_stats=True)
    stats.update({
        "level_progress": progress,
        "next_level_xp": next_xp,
        "rank": rank,
        "badges": [b.to_dict() for b in badges],
    })
    return stats


def leaderboard(ctx, limit=10):
    limit = max(1, min(int(limit), 100))
    users = db.session.execute(
        ctx.select(User)
        .where(User.is_active.is_(True))
        .order_by(User.points.desc(), User.experience.desc(), User.id)
        .limit(limit)
    ).scalars().all()
    return [
        {"rank": i + 1, **u.to_dict()}
        for i, u in enumerate(users)
    ]


def ledger_for_user(ctx, user_id, limit=50):
    user = ctx.get(User, user_id)
    return db.session.execute(
        ctx.select(RewardLedgerEntry)
        .where(RewardLedgerEntry.user_id == user.id)
        .order_by(RewardLedgerEntry.id.desc())
        .limit(limit)
    ).scalars().all()
