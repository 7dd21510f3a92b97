"""
ApprovalLedger - append-only approval decisions and their aggregates.

The ledger records facts and answers questions about them; it never changes
``Idea.status`` (that is the workflow service's job).

Level aggregation:
    rejected     any decision at the level is a rejection
    approved     every row at the level is approved (and at least one exists)
    in_progress  at least one final decision, not all approved
    pending      no final decision yet

Workflow aggregation walks levels 1..total_levels in ascending order and stops
at the first rejected level.
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from ideahub.core.exceptions import (
    AlreadyDecidedError,
    InvalidIdeaStateError,
    UnauthorizedError,
    ValidationError,
)
from ideahub.models import db
from ideahub.models.approval import (
    DEFAULT_APPROVER_ROLES,
    FINAL_DECISIONS,
    ApprovalDecision,
    ApprovalWorkflow,
)
from ideahub.models.auth import MAX_TIER, User
from ideahub.models.base import utcnow

logger = logging.getLogger(__name__)


@dataclass
class WorkflowLevel:
    level: int
    status: str
    approved: int = 0
    rejected: int = 0
    pending: int = 0
    pending_approver_ids: list = field(default_factory=list)

    @property
    def total(self):
        return self.approved + self.rejected + self.pending

    def to_dict(self):
        return {
            "level": self.level,
            "status": self.status,
            "approved": self.approved,
            "rejected": self.rejected,
            "pending": self.pending,
            "total": self.total,
            "pending_approver_ids": list(self.pending_approver_ids),
        }


@dataclass
class WorkflowStatus:
    overall: str
    current_level: int
    total_levels: int
    levels: list = field(default_factory=list)

    def to_dict(self):
        return {
            "overall": self.overall,
            "current_level": self.current_level,
            "total_levels": self.total_levels,
            "levels": [lv.to_dict() for lv in self.levels],
        }


# ═════════════════════════════════════════════════════════════════════════════
# Routing
# ═════════════════════════════════════════════════════════════════════════════


def select_workflow(ctx, idea):
    """Highest-priority active workflow matching the budget, else the default."""
    workflows = db.session.execute(
        ctx.select(ApprovalWorkflow)
        .where(ApprovalWorkflow.is_active.is_(True))
        .order_by(ApprovalWorkflow.priority.desc(), ApprovalWorkflow.id)
    ).scalars().all()

    for wf in workflows:
        if wf.is_default:
            continue
        if wf.matches_budget(idea.budget):
            return wf

    for wf in workflows:
        if wf.is_default:
            return wf
    return None


def _approvers_for_level(ctx, entry):
    ids = []
    roles = entry.get("approver_roles") or []
    if roles:
        ids.extend(
            u.id for u in db.session.execute(
                ctx.select(User)
                .where(User.role.in_(roles), User.is_active.is_(True))
                .order_by(User.id)
            ).scalars()
        )
    for approver_id in entry.get("approver_ids") or []:
        user = ctx.get_or_none(User, int(approver_id))
        if user is not None and user.is_active:
            ids.append(user.id)
        else:
            logger.warning(
                "Workflow approver %s is not an active user in tenant %s",
                approver_id, ctx.tenant_id, extra={"tenant_id": ctx.tenant_id},
            )
    # de-duplicate, keep order
    return list(dict.fromkeys(ids))


def assign_approvers(ctx, idea):
    """Create one pending decision row per (approver, level).

    Returns the number of levels the idea must clear.
    """
    workflow = select_workflow(ctx, idea)
    if workflow is not None and workflow.levels:
        plan = [
            (int(entry["level"]), _approvers_for_level(ctx, entry))
            for entry in sorted(workflow.levels, key=lambda e: int(e["level"]))
        ]
    else:
        workflow = None
        plan = [(1, _approvers_for_level(ctx, {"approver_roles": list(DEFAULT_APPROVER_ROLES)}))]

    for level, approver_ids in plan:
        if not approver_ids:
            logger.warning(
                "Idea %s level %s has no assigned approvers", idea.id, level,
                extra={"tenant_id": ctx.tenant_id, "idea_id": idea.id},
            )
        for approver_id in approver_ids:
            ctx.add(ApprovalDecision(
                idea_id=idea.id, approver_id=approver_id, level=level, decision="pending",
            ))

    idea.workflow_id = workflow.id if workflow is not None else None
    idea.total_levels = max(level for level, _ in plan)
    db.session.flush()

    logger.info(
        "Assigned %d approval level(s) to idea %s (workflow=%s)",
        idea.total_levels, idea.id, idea.workflow_id,
        extra={"tenant_id": ctx.tenant_id, "idea_id": idea.id},
    )
    return idea.total_levels


# ═════════════════════════════════════════════════════════════════════════════
# Decisions
# ═════════════════════════════════════════════════════════════════════════════


def decisions_for(ctx, idea, level=None):
    stmt = ctx.select(ApprovalDecision).where(ApprovalDecision.idea_id == idea.id)
    if level is not None:
        stmt = stmt.where(ApprovalDecision.level == level)
    return db.session.execute(
        stmt.order_by(ApprovalDecision.level, ApprovalDecision.id)
    ).scalars().all()


def _find_decision(ctx, idea, approver_id, level):
    return db.session.execute(
        ctx.select(ApprovalDecision).where(
            ApprovalDecision.idea_id == idea.id,
            ApprovalDecision.approver_id == approver_id,
            ApprovalDecision.level == level,
        )
    ).scalar_one_or_none()


def required_tier(ctx, idea, level):
    """Authority tier an unassigned approver needs to decide at ``level``."""
    default = min(level, MAX_TIER)
    if idea.workflow_id is None:
        return default
    workflow = ctx.get_or_none(ApprovalWorkflow, idea.workflow_id)
    entry = workflow.level_definition(level) if workflow is not None else None
    if entry is None or entry.get("min_tier") is None:
        return default
    return int(entry["min_tier"])


def record_decision(ctx, idea, approver, level, decision, notes=None):
    """Append an approver's final decision at ``level``.

    Raises:
        ValidationError: decision is not approved/rejected, or level out of range.
        AlreadyDecidedError: approver already decided at this level.
        InvalidIdeaStateError: idea is not pending.
        UnauthorizedError: approver neither assigned nor senior enough.
    """
    if decision not in FINAL_DECISIONS:
        raise ValidationError(
            "decision must be 'approved' or 'rejected'", details={"decision": decision},
        )

    row = _find_decision(ctx, idea, approver.id, level)
    if row is not None and row.is_final:
        raise AlreadyDecidedError(
            f"You already {row.decision} this idea at level {level}",
            details={"decision": row.decision, "level": level},
        )

    if idea.status != "pending":
        raise InvalidIdeaStateError(
            f"Idea is '{idea.status}', not awaiting approval",
            details={"status": idea.status},
        )

    if not 1 <= int(level) <= (idea.total_levels or 0):
        raise ValidationError(
            f"level must be between 1 and {idea.total_levels}", details={"level": level},
        )

    if row is None:
        needed = required_tier(ctx, idea, level)
        if approver.tier < needed:
            raise UnauthorizedError(
                f"Level {level} requires authority tier {needed}",
                details={"level": level, "required_tier": needed, "tier": approver.tier},
            )
        row = ApprovalDecision(idea_id=idea.id, approver_id=approver.id, level=level)

    row.decision = decision
    row.notes = notes
    row.decided_at = utcnow()

    try:
        with db.session.begin_nested():
            ctx.add(row)
    except IntegrityError:
        raise AlreadyDecidedError(f"A decision at level {level} was already recorded")

    logger.info(
        "Decision %s by user %s at level %s on idea %s", decision, approver.id, level, idea.id,
        extra={"tenant_id": ctx.tenant_id, "idea_id": idea.id, "user_id": approver.id},
    )
    return row


# ═════════════════════════════════════════════════════════════════════════════
# Aggregates
# ═════════════════════════════════════════════════════════════════════════════


def _aggregate(level, rows):
    lv = WorkflowLevel(level=level, status="pending")
    for row in rows:
        if row.decision == "approved":
            lv.approved += 1
        elif row.decision == "rejected":
            lv.rejected += 1
        else:
            lv.pending += 1
            lv.pending_approver_ids.append(row.approver_id)

    if lv.rejected:
        lv.status = "rejected"
    elif lv.approved and not lv.pending:
        lv.status = "approved"
    elif lv.approved:
        lv.status = "in_progress"
    return lv


def level_status(ctx, idea, level):
    return _aggregate(level, decisions_for(ctx, idea, level))


def workflow_status(ctx, idea):
    total = idea.total_levels or 0
    if total == 0:
        return WorkflowStatus(overall="pending", current_level=0, total_levels=0)

    by_level = {}
    for row in decisions_for(ctx, idea):
        by_level.setdefault(row.level, []).append(row)

    levels = []
    current = None
    overall = "in_progress"
    for level in range(1, total + 1):
        lv = _aggregate(level, by_level.get(level, []))
        levels.append(lv)
        if lv.status == "rejected":
            overall = "rejected"
            if current is None:
                current = level
            break
        if lv.status != "approved" and current is None:
            current = level

    if overall != "rejected" and current is None:
        overall = "approved"
        current = total

    return WorkflowStatus(overall=overall, current_level=current, total_levels=total, levels=levels)


def pending_approvers(ctx, idea, level):
    return level_status(ctx, idea, level).pending_approver_ids


def next_level_for(ctx, idea, approver):
    """Lowest level where ``approver`` still has a pending assignment.

    Falls back to the idea's current level when the approver is not assigned.
    """
    row = db.session.execute(
        ctx.select(ApprovalDecision)
        .where(
            ApprovalDecision.idea_id == idea.id,
            ApprovalDecision.approver_id == approver.id,
            ApprovalDecision.decision == "pending",
        )
        .order_by(ApprovalDecision.level)
        .limit(1)
    ).scalar_one_or_none()
    if row is not None:
        return row.level
    status = workflow_status(ctx, idea)
    return status.current_level or 1


def pending_for_approver(ctx, approver_id, limit=50):
    """Pending assignments for ``approver_id`` on ideas still awaiting approval."""
    from ideahub.models.idea import Idea

    return db.session.execute(
        ctx.select(ApprovalDecision)
        .join(Idea, Idea.id == ApprovalDecision.idea_id)
        .where(
            ApprovalDecision.approver_id == approver_id,
            ApprovalDecision.decision == "pending",
            Idea.status == "pending",
        )
        .order_by(ApprovalDecision.created_at)
        .limit(limit)
    ).scalars().all()
