"""
Notification Blueprint - the caller's inbox.

Endpoints:
    GET    /api/v1/notifications               - list (?unread_only=true)
    GET    /api/v1/notifications/unread-count  - badge counter
    GET    /api/v1/notifications/recent        - poll newer than ?since_id
    PATCH  /api/v1/notifications/<id>/read     - mark one read
    POST   /api/v1/notifications/mark-all-read - mark all read
    DELETE /api/v1/notifications/<id>          - delete one
"""

from flask import Blueprint, request

from ideahub.blueprints import current_ctx, ok, pagination
from ideahub.services import notification_store

notification_bp = Blueprint("notification_bp", __name__, url_prefix="/api/v1")


@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    ctx = current_ctx()
    limit, offset = pagination()
    unread_only = request.args.get("unread_only", "false").lower() in ("1", "true", "yes")
    items, total = notification_store.list_for_user(ctx, unread_only=unread_only,
                                                    limit=limit, offset=offset)
    return ok({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": notification_store.unread_count(ctx),
    })


@notification_bp.route("/notifications/unread-count", methods=["GET"])
def unread_count():
    return ok({"unread_count": notification_store.unread_count(current_ctx())})


@notification_bp.route("/notifications/recent", methods=["GET"])
def recent():
    since_id = request.args.get("since_id", 0, type=int)
    limit, _ = pagination(default_limit=20, max_limit=100)
    items = notification_store.recent(current_ctx(), since_id=since_id, limit=limit)
    return ok({"items": [n.to_dict() for n in items]})


@notification_bp.route("/notifications/<int:nid>/read", methods=["PATCH", "POST"])
def mark_read(nid):
    notif = notification_store.mark_read(current_ctx(), nid)
    return ok({"notification": notif.to_dict()}, message="Notification marked as read")


@notification_bp.route("/notifications/mark-all-read", methods=["POST"])
def mark_all_read():
    count = notification_store.mark_all_read(current_ctx())
    return ok({"updated": count}, message=f"{count} notifications marked as read")


@notification_bp.route("/notifications/<int:nid>", methods=["DELETE"])
def delete_notification(nid):
    notification_store.delete_notification(current_ctx(), nid)
    return ok({"deleted": True, "id": nid})
