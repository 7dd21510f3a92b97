"""
Approval Workflow - ApprovalWorkflow and ApprovalDecision models.

ApprovalWorkflow is a tenant-owned routing rule describing the levels an idea
must clear. ApprovalDecision is the per-(idea, approver, level) fact.

Business rules:
- At most one decision row per (idea_id, approver_id, level) - enforced by a
  unique constraint, not just application code.
- A row starts as 'pending' when the approver is assigned at submission time.
- Once a row is 'approved' or 'rejected' it is never updated or deleted;
  a correction requires a new idea revision and therefore a new workflow cycle.
"""

from ideahub.models import db
from ideahub.models.base import TenantModel, iso, utcnow

# ── Constants ─────────────────────────────────────────────────────────────────

DECISIONS = frozenset({"pending", "approved", "rejected"})
FINAL_DECISIONS = frozenset({"approved", "rejected"})

# Roles assigned to the fallback single-level workflow.
DEFAULT_APPROVER_ROLES = ("admin", "department_head")


class ApprovalWorkflow(TenantModel):
    """
    Routing rule: which approvers sit at which level.

    ``levels`` is a JSON list:
        [{"level": 1, "approver_roles": ["team_lead"], "approver_ids": [7],
          "min_tier": 1}, ...]

    The highest-priority active workflow whose budget bounds contain the
    idea's budget wins; otherwise the tenant's default workflow is used.
    """

    __tablename__ = "approval_workflows"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    min_budget = db.Column(db.Integer, nullable=True)
    max_budget = db.Column(db.Integer, nullable=True)
    levels = db.Column(db.JSON, nullable=False, default=list)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    is_default = db.Column(db.Boolean, default=False, nullable=False)
    priority = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def matches_budget(self, budget):
        value = float(budget or 0)
        if self.min_budget is not None and value < self.min_budget:
            return False
        if self.max_budget is not None and value > self.max_budget:
            return False
        return True

    def level_definition(self, level):
        for entry in self.levels or []:
            if int(entry.get("level", 0)) == int(level):
                return entry
        return None

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "description": self.description,
            "min_budget": self.min_budget,
            "max_budget": self.max_budget,
            "levels": self.levels or [],
            "is_active": self.is_active,
            "is_default": self.is_default,
            "priority": self.priority,
        }


class ApprovalDecision(TenantModel):
    """One approver's decision at one level for one idea."""

    __tablename__ = "approval_decisions"

    id = db.Column(db.Integer, primary_key=True)
    idea_id = db.Column(
        db.Integer, db.ForeignKey("ideas.id", ondelete="CASCADE"), nullable=False,
    )
    approver_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
    )
    level = db.Column(db.Integer, nullable=False, comment="1-based, ascending authority")
    decision = db.Column(
        db.String(20), nullable=False, default="pending",
        comment="pending | approved | rejected",
    )
    notes = db.Column(db.Text, nullable=True)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        db.UniqueConstraint("idea_id", "approver_id", "level", name="uq_decision_idea_approver_level"),
        db.Index("ix_decision_idea_level", "idea_id", "level"),
        db.Index("ix_decision_tenant_approver", "tenant_id", "approver_id", "decision"),
    )

    @property
    def is_final(self):
        return self.decision in FINAL_DECISIONS

    def to_dict(self):
        return {
            "id": self.id,
            "idea_id": self.idea_id,
            "approver_id": self.approver_id,
            "level": self.level,
            "decision": self.decision,
            "notes": self.notes,
            "decided_at": iso(self.decided_at),
        }

    def __repr__(self):
        return f"<ApprovalDecision idea={self.idea_id} approver={self.approver_id} L{self.level} {self.decision}>"
