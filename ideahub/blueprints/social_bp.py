"""
Social Blueprint - likes and comments.

Endpoints:
    POST   /api/v1/ideas/<id>/like             - like (idempotent)
    DELETE /api/v1/ideas/<id>/like             - unlike
    POST   /api/v1/ideas/<id>/like/toggle      - flip the caller's like
    GET    /api/v1/ideas/<id>/comments         - list comments
    POST   /api/v1/ideas/<id>/comments         - add a comment or reply
"""

from flask import Blueprint

from ideahub.blueprints import current_ctx, json_body, ok
from ideahub.services import social_service

social_bp = Blueprint("social_bp", __name__, url_prefix="/api/v1")


def _like_response(liked, count, message):
    return ok({"liked": liked, "likes_count": count}, message=message)


@social_bp.route("/ideas/<int:idea_id>/like", methods=["POST"])
def like(idea_id):
    liked, count = social_service.like(current_ctx(), idea_id)
    return _like_response(liked, count, "Idea liked")


@social_bp.route("/ideas/<int:idea_id>/like", methods=["DELETE"])
def unlike(idea_id):
    liked, count = social_service.unlike(current_ctx(), idea_id)
    return _like_response(liked, count, "Like removed")


@social_bp.route("/ideas/<int:idea_id>/like/toggle", methods=["POST"])
def toggle_like(idea_id):
    liked, count = social_service.toggle_like(current_ctx(), idea_id)
    return _like_response(liked, count, "Idea liked" if liked else "Like removed")


@social_bp.route("/ideas/<int:idea_id>/comments", methods=["GET"])
def list_comments(idea_id):
    comments = social_service.list_comments(current_ctx(), idea_id)
    return ok({"items": [c.to_dict() for c in comments], "total": len(comments)})


@social_bp.route("/ideas/<int:idea_id>/comments", methods=["POST"])
def add_comment(idea_id):
    data = json_body()
    comment = social_service.add_comment(
        current_ctx(), idea_id, data.get("content"), parent_id=data.get("parent_id"),
    )
    return ok({"comment": comment.to_dict()}, message="Comment added", status=201)
