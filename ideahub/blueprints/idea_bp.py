"""
Idea Blueprint - idea lifecycle and approval workflow.

Endpoints:
    GET    /api/v1/ideas                       - list (drafts only for their author)
    POST   /api/v1/ideas                       - create a draft
    GET    /api/v1/ideas/<id>                  - detail (counts a view)
    POST   /api/v1/ideas/<id>/submit           - draft → pending
    POST   /api/v1/ideas/<id>/approve          - record an approval
    POST   /api/v1/ideas/<id>/reject           - record a rejection
    POST   /api/v1/ideas/<id>/implement        - approved → implemented
    POST   /api/v1/ideas/<id>/revise           - rejected → new draft revision
    GET    /api/v1/ideas/<id>/workflow         - per-level approval status
    GET    /api/v1/approvals/pending           - caller's open approval assignments
"""

import logging

from flask import Blueprint, request

from ideahub.blueprints import current_ctx, json_body, ok, pagination
from ideahub.services import approval_ledger, social_service, workflow_service

logger = logging.getLogger(__name__)

idea_bp = Blueprint("idea_bp", __name__, url_prefix="/api/v1")


@idea_bp.route("/ideas", methods=["GET"])
def list_ideas():
    ctx = current_ctx()
    limit, offset = pagination()
    author_id = request.args.get("author_id", type=int)
    items, total = workflow_service.list_ideas(
        ctx, status=request.args.get("status"), author_id=author_id, limit=limit, offset=offset,
    )
    return ok({"items": [i.to_dict() for i in items], "total": total})


@idea_bp.route("/ideas", methods=["POST"])
def create_idea():
    data = json_body()
    result = workflow_service.create_idea(
        current_ctx(),
        title=data.get("title"),
        description=data.get("description", ""),
        budget=data.get("budget"),
    )
    return ok(result.to_dict(), status=201)


@idea_bp.route("/ideas/<int:idea_id>", methods=["GET"])
def get_idea(idea_id):
    ctx = current_ctx()
    social_service.record_view(ctx, idea_id)
    idea = social_service.visible_idea(ctx, idea_id)
    body = {"idea": idea.to_dict()}
    if ctx.user is not None:
        body["liked"] = social_service.has_liked(ctx, idea_id)
    return ok(body)


@idea_bp.route("/ideas/<int:idea_id>/submit", methods=["POST"])
def submit_idea(idea_id):
    return ok(workflow_service.submit(current_ctx(), idea_id).to_dict())


@idea_bp.route("/ideas/<int:idea_id>/approve", methods=["POST"])
def approve_idea(idea_id):
    data = json_body()
    result = workflow_service.approve(
        current_ctx(), idea_id, level=data.get("level"), notes=data.get("notes"),
    )
    return ok(result.to_dict())


@idea_bp.route("/ideas/<int:idea_id>/reject", methods=["POST"])
def reject_idea(idea_id):
    data = json_body()
    result = workflow_service.reject(
        current_ctx(), idea_id, level=data.get("level"), notes=data.get("notes"),
    )
    return ok(result.to_dict())


@idea_bp.route("/ideas/<int:idea_id>/implement", methods=["POST"])
def implement_idea(idea_id):
    return ok(workflow_service.mark_implemented(current_ctx(), idea_id).to_dict())


@idea_bp.route("/ideas/<int:idea_id>/revise", methods=["POST"])
def revise_idea(idea_id):
    return ok(workflow_service.revise(current_ctx(), idea_id).to_dict(), status=201)


@idea_bp.route("/ideas/<int:idea_id>/workflow", methods=["GET"])
def workflow_status(idea_id):
    idea, status = workflow_service.get_workflow_status(current_ctx(), idea_id)
    return ok({"idea_id": idea.id, "idea_status": idea.status, "workflow": status.to_dict()})


@idea_bp.route("/approvals/pending", methods=["GET"])
def pending_approvals():
    ctx = current_ctx()
    user = ctx.require_user()
    limit, _ = pagination()
    rows = approval_ledger.pending_for_approver(ctx, user.id, limit=limit)
    return ok({"items": [r.to_dict() for r in rows], "total": len(rows)})
