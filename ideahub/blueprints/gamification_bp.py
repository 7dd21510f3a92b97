"""
Gamification Blueprint - stats, leaderboard, badges.

Endpoints:
    GET    /api/v1/gamification/me               - caller's stats
    GET    /api/v1/gamification/users/<id>       - a user's stats
    GET    /api/v1/gamification/users/<id>/ledger - reward history
    GET    /api/v1/gamification/leaderboard      - top users by points
    GET    /api/v1/gamification/badges           - catalogue with earned flags
"""

from flask import Blueprint, request

from ideahub.blueprints import current_ctx, ok, pagination
from ideahub.services import reward_engine

gamification_bp = Blueprint("gamification_bp", __name__, url_prefix="/api/v1/gamification")


@gamification_bp.route("/me", methods=["GET"])
def my_stats():
    ctx = current_ctx()
    user = ctx.require_user()
    return ok({"stats": reward_engine.get_user_stats(ctx, user.id)})


@gamification_bp.route("/users/<int:user_id>", methods=["GET"])
def user_stats(user_id):
    return ok({"stats": reward_engine.get_user_stats(current_ctx(), user_id)})


@gamification_bp.route("/users/<int:user_id>/ledger", methods=["GET"])
def user_ledger(user_id):
    limit, _ = pagination()
    entries = reward_engine.ledger_for_user(current_ctx(), user_id, limit=limit)
    return ok({"items": [e.to_dict() for e in entries]})


@gamification_bp.route("/leaderboard", methods=["GET"])
def leaderboard():
    limit = request.args.get("limit", 10, type=int)
    return ok({"leaderboard": reward_engine.leaderboard(current_ctx(), limit=limit)})


@gamification_bp.route("/badges", methods=["GET"])
def badges():
    ctx = current_ctx()
    earned = set()
    if ctx.user is not None:
        earned = reward_engine.earned_badge_ids(ctx, ctx.user)
    return ok({"items": [
        {**b.to_dict(), "earned": b.id in earned}
        for b in reward_engine.available_badges(ctx)
    ]})
