"""
Approval ledger unit tests.

Tests cover:
  - workflow selection (budget routing, default fallback, role fallback)
  - approver assignment at submission
  - decision guards: value, already decided, idea state, level range, authority
  - per-level and whole-workflow aggregation
"""

from types import SimpleNamespace

import pytest

from ideahub.core.exceptions import (
    AlreadyDecidedError,
    InvalidIdeaStateError,
    UnauthorizedError,
    ValidationError,
)
from ideahub.models import db
from ideahub.models.approval import ApprovalDecision
from ideahub.services import approval_ledger as ledger


def _rows(idea):
    return db.session.execute(
        db.select(ApprovalDecision)
        .where(ApprovalDecision.idea_id == idea.id)
        .order_by(ApprovalDecision.level, ApprovalDecision.approver_id)
    ).scalars().all()


# ═════════════════════════════════════════════════════════════════════════
# ROUTING & ASSIGNMENT
# ═════════════════════════════════════════════════════════════════════════


class TestRouting:
    def test_role_fallback_without_workflow(self, author, make_user, make_idea):
        head = make_user("department_head")
        boss = make_user("admin")
        make_user("team_lead")

        idea = make_idea(author, submit=True)

        assert idea.total_levels == 1
        assert idea.workflow_id is None
        assert [(r.approver_id, r.level, r.decision) for r in _rows(idea)] == [
            (head.id, 1, "pending"), (boss.id, 1, "pending"),
        ]

    def test_budget_routes_to_matching_workflow(self, author, make_user, make_workflow, make_idea, ctx_for):
        lead = make_user("team_lead")
        head = make_user("department_head")
        default = make_workflow([{"level": 1, "approver_ids": [lead.id]}], name="Default", is_default=True)
        big = make_workflow(
            [{"level": 1, "approver_ids": [lead.id]}, {"level": 2, "approver_ids": [head.id]}],
            name="Big spend", min_budget=10000, priority=10,
        )

        small_idea = make_idea(author, "Cheap", budget=100)
        big_idea = make_idea(author, "Costly", budget="25000")

        assert ledger.select_workflow(ctx_for(author), small_idea).id == default.id
        assert ledger.select_workflow(ctx_for(author), big_idea).id == big.id

    def test_assignment_snapshots_levels(self, author, make_user, make_workflow, make_idea):
        lead = make_user("team_lead")
        head = make_user("department_head")
        wf = make_workflow(
            [{"level": 2, "approver_roles": ["department_head"]},
             {"level": 1, "approver_ids": [lead.id]}],
            is_default=True,
        )

        idea = make_idea(author, submit=True)

        assert idea.workflow_id == wf.id
        assert idea.total_levels == 2
        assert [(r.approver_id, r.level) for r in _rows(idea)] == [(lead.id, 1), (head.id, 2)]

    def test_inactive_approver_skipped(self, author, make_user, make_workflow, make_idea):
        gone = make_user("department_head", is_active=False)
        make_workflow([{"level": 1, "approver_ids": [gone.id]}], is_default=True)

        idea = make_idea(author, submit=True)

        assert _rows(idea) == []
        assert idea.total_levels == 1

    def test_required_tier_from_workflow(self, author, make_user, make_workflow, make_idea, ctx_for):
        lead = make_user("team_lead")
        make_workflow([{"level": 1, "approver_ids": [lead.id], "min_tier": 3}], is_default=True)
        idea = make_idea(author, submit=True)
        assert ledger.required_tier(ctx_for(author), idea, 1) == 3

    def test_required_tier_default_tracks_level(self, author, make_idea, ctx_for):
        idea = make_idea(author)
        assert ledger.required_tier(ctx_for(author), idea, 1) == 1
        assert ledger.required_tier(ctx_for(author), idea, 5) == 3


# ═════════════════════════════════════════════════════════════════════════
# DECISIONS
# ═════════════════════════════════════════════════════════════════════════


class TestRecordDecision:
    @pytest.fixture()
    def pending_idea(self, author, approver, make_idea):
        return make_idea(author, submit=True)

    def test_assigned_approver_decides(self, pending_idea, approver, ctx_for):
        row = ledger.record_decision(ctx_for(approver), pending_idea, approver, 1, "approved", "nice")
        db.session.commit()

        assert row.decision == "approved"
        assert row.notes == "nice"
        assert row.decided_at is not None
        assert len(_rows(pending_idea)) == 1

    def test_invalid_decision_value(self, pending_idea, approver, ctx_for):
        with pytest.raises(ValidationError):
            ledger.record_decision(ctx_for(approver), pending_idea, approver, 1, "maybe")

    def test_already_decided_leaves_row_unchanged(self, pending_idea, approver, ctx_for):
        ctx = ctx_for(approver)
        ledger.record_decision(ctx, pending_idea, approver, 1, "approved", "first")
        db.session.commit()

        with pytest.raises(AlreadyDecidedError):
            ledger.record_decision(ctx, pending_idea, approver, 1, "rejected", "second")
        db.session.rollback()

        row = _rows(pending_idea)[0]
        assert row.decision == "approved"
        assert row.notes == "first"

    def test_idea_not_pending(self, author, approver, make_idea, ctx_for):
        draft = make_idea(author)
        with pytest.raises(InvalidIdeaStateError):
            ledger.record_decision(ctx_for(approver), draft, approver, 1, "approved")

    def test_level_out_of_range(self, pending_idea, approver, ctx_for):
        with pytest.raises(ValidationError):
            ledger.record_decision(ctx_for(approver), pending_idea, approver, 2, "approved")

    def test_unassigned_without_authority(self, pending_idea, make_user, ctx_for):
        clerk = make_user("employee")
        with pytest.raises(UnauthorizedError):
            ledger.record_decision(ctx_for(clerk), pending_idea, clerk, 1, "approved")
        assert len(_rows(pending_idea)) == 1

    def test_unassigned_with_authority_adds_row(self, pending_idea, make_user, ctx_for):
        lead = make_user("team_lead")
        ledger.record_decision(ctx_for(lead), pending_idea, lead, 1, "approved")
        db.session.commit()
        assert {r.approver_id for r in _rows(pending_idea)} >= {lead.id}


# ═════════════════════════════════════════════════════════════════════════
# AGGREGATION
# ═════════════════════════════════════════════════════════════════════════


def _fake(decision, approver_id=1):
    return SimpleNamespace(decision=decision, approver_id=approver_id)


class TestLevelAggregation:
    @pytest.mark.parametrize("decisions,expected", [
        ([], "pending"),
        (["pending", "pending"], "pending"),
        (["approved", "pending"], "in_progress"),
        (["approved", "approved"], "approved"),
        (["approved", "rejected"], "rejected"),
        (["pending", "rejected"], "rejected"),
    ])
    def test_status(self, decisions, expected):
        rows = [_fake(d, i) for i, d in enumerate(decisions)]
        assert ledger._aggregate(1, rows).status == expected

    def test_counts_and_pending_ids(self):
        lv = ledger._aggregate(1, [_fake("approved", 1), _fake("pending", 2), _fake("pending", 3)])
        assert (lv.approved, lv.rejected, lv.pending, lv.total) == (1, 0, 2, 3)
        assert lv.pending_approver_ids == [2, 3]


class TestWorkflowStatus:
    @pytest.fixture()
    def two_level(self, author, make_user, make_workflow, make_idea):
        first = make_user("team_lead")
        second = make_user("department_head")
        make_workflow(
            [{"level": 1, "approver_ids": [first.id]}, {"level": 2, "approver_ids": [second.id]}],
            is_default=True,
        )
        return make_idea(author, submit=True), first, second

    def test_no_levels(self, author, make_idea, ctx_for):
        status = ledger.workflow_status(ctx_for(author), make_idea(author))
        assert (status.overall, status.current_level, status.total_levels) == ("pending", 0, 0)

    def test_initial(self, two_level, ctx_for):
        idea, first, _ = two_level
        status = ledger.workflow_status(ctx_for(first), idea)
        assert status.overall == "in_progress"
        assert status.current_level == 1
        assert [lv.status for lv in status.levels] == ["pending", "pending"]

    def test_first_level_cleared(self, two_level, ctx_for):
        idea, first, _ = two_level
        ledger.record_decision(ctx_for(first), idea, first, 1, "approved")
        status = ledger.workflow_status(ctx_for(first), idea)
        assert status.current_level == 2
        assert status.overall == "in_progress"

    def test_all_cleared(self, two_level, ctx_for):
        idea, first, second = two_level
        ledger.record_decision(ctx_for(first), idea, first, 1, "approved")
        ledger.record_decision(ctx_for(second), idea, second, 2, "approved")
        status = ledger.workflow_status(ctx_for(first), idea)
        assert (status.overall, status.current_level) == ("approved", 2)

    def test_rejection_halts_at_rejecting_level(self, two_level, ctx_for):
        idea, first, _ = two_level
        ledger.record_decision(ctx_for(first), idea, first, 1, "rejected")
        status = ledger.workflow_status(ctx_for(first), idea)
        assert (status.overall, status.current_level) == ("rejected", 1)
        assert len(status.levels) == 1

    def test_rejection_above_pending_level_keeps_lowest_current(self, two_level, ctx_for):
        idea, _, second = two_level
        ledger.record_decision(ctx_for(second), idea, second, 2, "rejected")
        status = ledger.workflow_status(ctx_for(second), idea)
        assert (status.overall, status.current_level) == ("rejected", 1)
        assert [lv.status for lv in status.levels] == ["pending", "rejected"]

    def test_levels_not_order_gated(self, two_level, ctx_for):
        idea, _, second = two_level
        ledger.record_decision(ctx_for(second), idea, second, 2, "approved")
        status = ledger.workflow_status(ctx_for(second), idea)
        assert status.current_level == 1
        assert [lv.status for lv in status.levels] == ["pending", "approved"]

    def test_pending_for_approver(self, two_level, ctx_for):
        idea, first, second = two_level
        assert [r.idea_id for r in ledger.pending_for_approver(ctx_for(first), first.id)] == [idea.id]
        assert ledger.next_level_for(ctx_for(second), idea, second) == 2
