"""
Idea workflow - the only writer of ``Idea.status``.

    draft ──submit──▶ pending ──approve──▶ approved ──implement──▶ implemented
                         │
                         └──reject──▶ rejected ──revise──▶ (new draft, revision+1)

Each operation is one unit of work: the ledger write, the status change and
the outbox rows commit together or not at all. Decisions lock the idea row
and write the status with a compare-and-set, so two concurrent approvers can
never both move the idea to ``approved``.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from sqlalchemy import func, update

from ideahub.core.exceptions import (
    InvalidTransitionError,
    UnauthorizedError,
    ValidationError,
)
from ideahub.models import db
from ideahub.models.idea import STATUS_TIMESTAMPS, Idea, validate_idea_transition
from ideahub.models.base import utcnow
from ideahub.services import approval_ledger as ledger
from ideahub.services import social_service
from ideahub.services.event_bus import (
    APPROVAL_DECIDED,
    IDEA_APPROVED,
    IDEA_CREATED,
    IDEA_IMPLEMENTED,
    IDEA_REJECTED,
    IDEA_SUBMITTED,
    DomainEvent,
    bus,
)
from ideahub.services.helpers.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)


@dataclass
class WorkflowResult:
    success: bool
    message: str
    idea: Idea
    decision: object = None
    workflow_status: object = None
    events: list = field(default_factory=list)

    def to_dict(self):
        return {
            "success": self.success,
            "message": self.message,
            "idea": self.idea.to_dict(),
            "decision": self.decision.to_dict() if self.decision is not None else None,
            "workflow_status": (
                self.workflow_status.to_dict() if self.workflow_status is not None else None
            ),
            "events": [e.kind for e in self.events],
        }


# ── Helpers ──────────────────────────────────────────────────────────────────


def _parse_budget(budget):
    if budget is None or budget == "":
        return None
    try:
        value = Decimal(str(budget))
    except (InvalidOperation, ValueError):
        raise ValidationError("budget must be a number", details={"budget": budget})
    if value < 0:
        raise ValidationError("budget cannot be negative", details={"budget": budget})
    return value


def _publish(ctx, kind, payload, events):
    event = bus.publish(DomainEvent(kind=kind, tenant_id=ctx.tenant_id, payload=payload))
    events.append(event)
    return event


def _transition(idea, target):
    if not validate_idea_transition(idea.status, target):
        raise InvalidTransitionError(idea.status, target)
    idea.status = target
    stamp = STATUS_TIMESTAMPS.get(target)
    if stamp and getattr(idea, stamp) is None:
        setattr(idea, stamp, utcnow())


def _compare_and_set(ctx, idea, expected, target):
    """``UPDATE ideas SET status=target WHERE status=expected``; True if this caller won."""
    values = {"status": target, "updated_at": utcnow()}
    stamp = STATUS_TIMESTAMPS.get(target)
    if stamp and getattr(idea, stamp) is None:
        values[stamp] = utcnow()
    result = db.session.execute(
        update(Idea)
        .where(Idea.id == idea.id, Idea.tenant_id == ctx.tenant_id, Idea.status == expected)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.session.refresh(idea)
    return result.rowcount == 1


def _idea_payload(idea, **extra):
    payload = {
        "idea_id": idea.id,
        "author_id": idea.author_id,
        "title": idea.title,
        "revision": idea.revision,
    }
    payload.update(extra)
    return payload


# ═════════════════════════════════════════════════════════════════════════════
# Operations
# ═════════════════════════════════════════════════════════════════════════════


def create_idea(ctx, title, description="", budget=None):
    user = ctx.require_user()
    title = (title or "").strip()
    if not title:
        raise ValidationError("title is required", details={"title": "required"})
    if len(title) > 300:
        raise ValidationError("title must be at most 300 characters", details={"title": "too long"})

    events = []
    with unit_of_work():
        idea = ctx.add(Idea(
            author_id=user.id,
            title=title,
            description=description or "",
            budget=_parse_budget(budget),
            status="draft",
        ))
        db.session.flush()
        _publish(ctx, IDEA_CREATED, _idea_payload(idea, parent_id=None), events)

    logger.info("Idea %s created", idea.id,
                extra={"tenant_id": ctx.tenant_id, "idea_id": idea.id, "user_id": user.id})
    return WorkflowResult(True, "Idea created", idea, events=events)


def submit(ctx, idea_id):
    """draft → pending. Author only."""
    user = ctx.require_user()
    events = []
    with unit_of_work():
        idea = ctx.get(Idea, idea_id, for_update=True)
        if idea.author_id != user.id:
            raise UnauthorizedError("Only the author can submit this idea")
        _transition(idea, "pending")
        ledger.assign_approvers(ctx, idea)
        status = ledger.workflow_status(ctx, idea)
        first_level = status.levels[0].pending_approver_ids if status.levels else []
        _publish(ctx, IDEA_SUBMITTED, _idea_payload(
            idea, total_levels=idea.total_levels, approver_ids=first_level,
        ), events)

    logger.info("Idea %s submitted (%d levels)", idea.id, idea.total_levels,
                extra={"tenant_id": ctx.tenant_id, "idea_id": idea.id, "user_id": user.id})
    return WorkflowResult(True, "Idea submitted for approval", idea,
                          workflow_status=status, events=events)


def approve(ctx, idea_id, level=None, notes=None):
    return _decide(ctx, idea_id, "approved", level, notes)


def reject(ctx, idea_id, level=None, notes=None):
    return _decide(ctx, idea_id, "rejected", level, notes)


def _decide(ctx, idea_id, decision, level, notes):
    approver = ctx.require_user()
    events = []
    with unit_of_work():
        idea = ctx.get(Idea, idea_id, for_update=True)
        if level is None:
            level = ledger.next_level_for(ctx, idea, approver)
        else:
            try:
                level = int(level)
            except (TypeError, ValueError):
                raise ValidationError("level must be an integer", details={"level": level})

        before = ledger.workflow_status(ctx, idea)
        row = ledger.record_decision(ctx, idea, approver, level, decision, notes)
        status = ledger.workflow_status(ctx, idea)

        next_level_ids = []
        if status.overall == "in_progress" and status.current_level > before.current_level:
            next_level_ids = ledger.pending_approvers(ctx, idea, status.current_level)

        _publish(ctx, APPROVAL_DECIDED, _idea_payload(
            idea,
            approver_id=approver.id,
            level=level,
            decision=decision,
            notes=notes,
            overall=status.overall,
            current_level=status.current_level,
            next_level_approver_ids=next_level_ids,
        ), events)

        message = f"Decision recorded at level {level}"
        if status.overall == "approved":
            if _compare_and_set(ctx, idea, "pending", "approved"):
                _publish(ctx, IDEA_APPROVED, _idea_payload(
                    idea, approver_id=approver.id, notes=notes,
                ), events)
                message = "Idea approved"
        elif status.overall == "rejected":
            if _compare_and_set(ctx, idea, "pending", "rejected"):
                _publish(ctx, IDEA_REJECTED, _idea_payload(
                    idea, approver_id=approver.id, level=level, notes=notes,
                ), events)
                message = "Idea rejected"

    logger.info(
        "Idea %s: %s at level %s → overall %s", idea.id, decision, level, status.overall,
        extra={"tenant_id": ctx.tenant_id, "idea_id": idea.id, "user_id": approver.id},
    )
    return WorkflowResult(True, message, idea, decision=row, workflow_status=status, events=events)


def mark_implemented(ctx, idea_id):
    """approved → implemented. Administrators only."""
    user = ctx.require_user()
    if not user.is_admin:
        raise UnauthorizedError("Only administrators can mark ideas as implemented")

    events = []
    with unit_of_work():
        idea = ctx.get(Idea, idea_id, for_update=True)
        if not validate_idea_transition(idea.status, "implemented"):
            raise InvalidTransitionError(idea.status, "implemented")
        if not _compare_and_set(ctx, idea, "approved", "implemented"):
            raise InvalidTransitionError(idea.status, "implemented")
        _publish(ctx, IDEA_IMPLEMENTED, _idea_payload(idea, implemented_by=user.id), events)

    logger.info("Idea %s implemented", idea.id,
                extra={"tenant_id": ctx.tenant_id, "idea_id": idea.id, "user_id": user.id})
    return WorkflowResult(True, "Idea marked as implemented", idea, events=events)


def revise(ctx, idea_id):
    """Copy a rejected idea into a fresh draft (revision + 1). Author only."""
    user = ctx.require_user()
    events = []
    with unit_of_work():
        original = ctx.get(Idea, idea_id)
        if original.author_id != user.id:
            raise UnauthorizedError("Only the author can revise this idea")
        if original.status != "rejected":
            raise InvalidTransitionError(
                original.status, "draft", "Only rejected ideas can be revised",
            )
        idea = ctx.add(Idea(
            author_id=user.id,
            title=original.title,
            description=original.description,
            budget=original.budget,
            status="draft",
            revision=original.revision + 1,
            parent_id=original.id,
        ))
        db.session.flush()
        _publish(ctx, IDEA_CREATED, _idea_payload(idea, parent_id=original.id), events)

    logger.info("Idea %s revised as %s (revision %d)", original.id, idea.id, idea.revision,
                extra={"tenant_id": ctx.tenant_id, "idea_id": idea.id, "user_id": user.id})
    return WorkflowResult(True, "Revision created", idea, events=events)


def get_workflow_status(ctx, idea_id):
    idea = social_service.visible_idea(ctx, idea_id)
    return idea, ledger.workflow_status(ctx, idea)


def list_ideas(ctx, status=None, author_id=None, limit=50, offset=0):
    """Ideas visible to the caller, newest first. Drafts only for their author."""
    stmt = ctx.select(Idea)
    if status:
        stmt = stmt.where(Idea.status == status)
    if author_id is not None:
        stmt = stmt.where(Idea.author_id == author_id)
    stmt = stmt.where((Idea.status != "draft") | (Idea.author_id == ctx.user_id))
    total = db.session.execute(
        stmt.with_only_columns(func.count(Idea.id)).order_by(None)
    ).scalar_one()
    items = db.session.execute(
        stmt.order_by(Idea.created_at.desc(), Idea.id.desc()).offset(offset).limit(limit)
    ).scalars().all()
    return items, total
