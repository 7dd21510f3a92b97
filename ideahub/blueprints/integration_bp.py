"""
Integration Blueprint - chat integrations (Slack, Teams, signed webhook).

Endpoints:
    GET    /api/v1/integrations                 - list (?type=slack)
    POST   /api/v1/integrations                 - create (admin)
    GET    /api/v1/integrations/<id>            - detail
    PUT    /api/v1/integrations/<id>            - update (admin)
    DELETE /api/v1/integrations/<id>            - delete (admin)
    GET    /api/v1/integrations/<id>/logs       - delivery log
    POST   /api/v1/integrations/<id>/test       - send a test message (admin)
"""

from flask import Blueprint, request

from ideahub.blueprints import current_ctx, json_body, ok, pagination
from ideahub.services import integration_service

integration_bp = Blueprint("integration_bp", __name__, url_prefix="/api/v1/integrations")


@integration_bp.route("", methods=["GET"])
def list_integrations():
    items = integration_service.list_integrations(current_ctx(), itype=request.args.get("type"))
    return ok({"items": [i.to_dict() for i in items], "total": len(items)})


@integration_bp.route("", methods=["POST"])
def create_integration():
    integration = integration_service.create_integration(current_ctx(), json_body())
    return ok({"integration": integration.to_dict()}, message="Integration created", status=201)


@integration_bp.route("/<int:integration_id>", methods=["GET"])
def get_integration(integration_id):
    integration = integration_service.get_integration(current_ctx(), integration_id)
    return ok({"integration": integration.to_dict()})


@integration_bp.route("/<int:integration_id>", methods=["PUT", "PATCH"])
def update_integration(integration_id):
    integration = integration_service.update_integration(current_ctx(), integration_id, json_body())
    return ok({"integration": integration.to_dict()}, message="Integration updated")


@integration_bp.route("/<int:integration_id>", methods=["DELETE"])
def delete_integration(integration_id):
    integration_service.delete_integration(current_ctx(), integration_id)
    return ok({"deleted": True, "id": integration_id}, message="Integration deleted")


@integration_bp.route("/<int:integration_id>/logs", methods=["GET"])
def integration_logs(integration_id):
    limit, _ = pagination()
    logs = integration_service.list_logs(current_ctx(), integration_id, limit=limit)
    return ok({"items": [entry.to_dict() for entry in logs]})


@integration_bp.route("/<int:integration_id>/test", methods=["POST"])
def test_integration(integration_id):
    result = integration_service.test_connection(current_ctx(), integration_id)
    body = {
        "ok": result.ok,
        "status_code": result.status_code,
        "error": result.error,
        "duration_ms": result.duration_ms,
    }
    message = "Connection successful" if result.ok else "Connection failed"
    return ok(body, message=message)
