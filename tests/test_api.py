"""
HTTP API tests - blueprints, tenant middleware and the error envelope.
"""

import pytest

from ideahub.models import db


# ═════════════════════════════════════════════════════════════════════════
# HEALTH
# ═════════════════════════════════════════════════════════════════════════


class TestHealth:
    def test_ready(self, client):
        res = client.get("/api/v1/health/ready")
        assert res.status_code == 200
        assert res.get_json() == {"status": "ok"}

    def test_live(self, client):
        res = client.get("/api/v1/health/live")
        body = res.get_json()
        assert res.status_code == 200
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["status"] == "ok"
        assert body["checks"]["outbox"]["dead"] == 0
        assert body["checks"]["dispatcher"]["mode"] == "sync"


# ═════════════════════════════════════════════════════════════════════════
# TENANT MIDDLEWARE
# ═════════════════════════════════════════════════════════════════════════


class TestTenantResolution:
    def test_no_identity_no_tenant(self, client, tenant):
        res = client.get("/api/v1/ideas")
        assert res.status_code == 404
        assert res.get_json()["code"] == "not_found"

    def test_unknown_user(self, client, tenant):
        res = client.get("/api/v1/ideas", headers={"X-User-Id": "9999"})
        assert res.status_code == 403
        assert res.get_json()["code"] == "unauthorized"

    def test_malformed_header(self, client, tenant):
        res = client.get("/api/v1/ideas", headers={"X-User-Id": "abc"})
        assert res.status_code == 403

    def test_inactive_tenant(self, client, tenant, author, api_headers):
        tenant.is_active = False
        db.session.commit()
        res = client.get("/api/v1/ideas", headers=api_headers(author))
        assert res.status_code == 403
        assert res.get_json()["code"] == "tenant_inactive"

    def test_cross_tenant_host(self, client, author, other_tenant, api_headers):
        res = client.get("/api/v1/ideas", headers=api_headers(author),
                         base_url="http://globex.ideahub.io")
        assert res.status_code == 403
        assert res.get_json()["code"] == "access_denied"

    def test_subdomain_with_user(self, client, author, api_headers):
        res = client.get("/api/v1/ideas", headers=api_headers(author),
                         base_url="http://acme.ideahub.io")
        assert res.status_code == 200


# ═════════════════════════════════════════════════════════════════════════
# IDEAS & WORKFLOW
# ═════════════════════════════════════════════════════════════════════════


class TestIdeaApi:
    def _create(self, client, user, api_headers, **body):
        body.setdefault("title", "Bike racks")
        return client.post("/api/v1/ideas", json=body, headers=api_headers(user))

    def test_create(self, client, author, api_headers):
        res = self._create(client, author, api_headers, description="More racks", budget=300)
        body = res.get_json()

        assert res.status_code == 201
        assert body["success"] is True
        assert body["idea"]["status"] == "draft"
        assert body["events"] == ["idea.created"]

    def test_create_validation(self, client, author, api_headers):
        res = self._create(client, author, api_headers, title="")
        assert res.status_code == 422
        assert res.get_json()["code"] == "validation_error"

    def test_body_must_be_object(self, client, author, api_headers):
        res = client.post("/api/v1/ideas", json=["x"], headers=api_headers(author))
        assert res.status_code == 422

    def test_full_lifecycle(self, client, author, approver, admin, api_headers):
        idea_id = self._create(client, author, api_headers).get_json()["idea"]["id"]

        res = client.post(f"/api/v1/ideas/{idea_id}/submit", headers=api_headers(author))
        assert res.status_code == 200
        assert res.get_json()["idea"]["status"] == "pending"

        pending = client.get("/api/v1/approvals/pending", headers=api_headers(approver)).get_json()
        assert [p["idea_id"] for p in pending["items"]] == [idea_id]

        client.post(f"/api/v1/ideas/{idea_id}/approve", json={"notes": "ok"}, headers=api_headers(approver))
        res = client.post(f"/api/v1/ideas/{idea_id}/approve", headers=api_headers(admin))
        body = res.get_json()
        assert body["idea"]["status"] == "approved"
        assert body["workflow_status"]["overall"] == "approved"

        res = client.get(f"/api/v1/ideas/{idea_id}/workflow", headers=api_headers(author))
        assert res.get_json()["workflow"]["levels"][0]["approved"] == 2

        res = client.post(f"/api/v1/ideas/{idea_id}/implement", headers=api_headers(admin))
        assert res.get_json()["idea"]["status"] == "implemented"

    def test_non_owner_submit(self, client, author, make_user, api_headers):
        idea_id = self._create(client, author, api_headers).get_json()["idea"]["id"]
        res = client.post(f"/api/v1/ideas/{idea_id}/submit", headers=api_headers(make_user("employee")))
        assert res.status_code == 403
        assert res.get_json()["code"] == "unauthorized"

    def test_double_decision(self, client, author, approver, admin, api_headers):
        idea_id = self._create(client, author, api_headers).get_json()["idea"]["id"]
        client.post(f"/api/v1/ideas/{idea_id}/submit", headers=api_headers(author))
        client.post(f"/api/v1/ideas/{idea_id}/approve", json={"level": 1}, headers=api_headers(approver))

        res = client.post(f"/api/v1/ideas/{idea_id}/reject", json={"level": 1}, headers=api_headers(approver))
        assert res.status_code == 409
        assert res.get_json()["code"] == "already_decided"

    def test_draft_hidden_from_others(self, client, author, make_user, api_headers):
        idea_id = self._create(client, author, api_headers).get_json()["idea"]["id"]
        res = client.get(f"/api/v1/ideas/{idea_id}", headers=api_headers(make_user("employee")))
        assert res.status_code == 404

    def test_detail_counts_views(self, client, author, approver, make_idea, api_headers):
        idea = make_idea(author, submit=True)
        client.get(f"/api/v1/ideas/{idea.id}", headers=api_headers(approver))
        body = client.get(f"/api/v1/ideas/{idea.id}", headers=api_headers(approver)).get_json()
        assert body["idea"]["views_count"] == 2
        assert body["liked"] is False

    def test_revise(self, client, author, approver, make_idea, ctx_for, api_headers):
        from ideahub.services import workflow_service

        idea = make_idea(author, submit=True)
        workflow_service.reject(ctx_for(approver), idea.id)
        res = client.post(f"/api/v1/ideas/{idea.id}/revise", headers=api_headers(author))
        assert res.status_code == 201
        assert res.get_json()["idea"]["revision"] == 2


# ═════════════════════════════════════════════════════════════════════════
# SOCIAL, NOTIFICATIONS, GAMIFICATION
# ═════════════════════════════════════════════════════════════════════════


class TestSocialApi:
    def test_like_and_comment(self, client, author, approver, make_idea, api_headers):
        idea = make_idea(author, submit=True)
        headers = api_headers(approver)

        res = client.post(f"/api/v1/ideas/{idea.id}/like", headers=headers)
        assert res.get_json()["likes_count"] == 1
        res = client.delete(f"/api/v1/ideas/{idea.id}/like", headers=headers)
        assert res.get_json() == {"success": True, "message": "Like removed", "liked": False, "likes_count": 0}

        res = client.post(f"/api/v1/ideas/{idea.id}/comments", json={"content": "Yes!"}, headers=headers)
        assert res.status_code == 201
        listing = client.get(f"/api/v1/ideas/{idea.id}/comments", headers=headers).get_json()
        assert listing["total"] == 1


class TestNotificationApi:
    def test_inbox_flow(self, client, author, approver, make_idea, api_headers):
        make_idea(author, "One", submit=True)
        make_idea(author, "Two", submit=True)
        headers = api_headers(approver)

        body = client.get("/api/v1/notifications", headers=headers).get_json()
        assert body["total"] == 2
        assert body["unread_count"] == 2

        first = body["items"][0]["id"]
        res = client.patch(f"/api/v1/notifications/{first}/read", headers=headers)
        assert res.status_code == 200
        assert client.get("/api/v1/notifications/unread-count", headers=headers).get_json()["unread_count"] == 1

        res = client.post("/api/v1/notifications/mark-all-read", headers=headers)
        assert res.get_json()["updated"] == 1

    def test_cannot_read_others(self, client, author, approver, make_idea, api_headers):
        make_idea(author, submit=True)
        body = client.get("/api/v1/notifications", headers=api_headers(approver)).get_json()
        res = client.patch(f"/api/v1/notifications/{body['items'][0]['id']}/read",
                           headers=api_headers(author))
        assert res.status_code == 403


class TestGamificationApi:
    def test_me_and_leaderboard(self, client, author, approver, make_idea, api_headers):
        make_idea(author, submit=True)
        me = client.get("/api/v1/gamification/me", headers=api_headers(author)).get_json()
        assert me["stats"]["points"] == 10

        board = client.get("/api/v1/gamification/leaderboard", headers=api_headers(approver)).get_json()
        assert board["leaderboard"][0]["id"] == author.id


class TestIntegrationApi:
    def test_admin_only(self, client, approver, admin, api_headers):
        payload = {"type": "slack", "name": "Ideas", "config": {"webhook_url": "https://hooks.slack.com/x"}}
        assert client.post("/api/v1/integrations", json=payload, headers=api_headers(approver)).status_code == 403

        res = client.post("/api/v1/integrations", json=payload, headers=api_headers(admin))
        assert res.status_code == 201
        listing = client.get("/api/v1/integrations", headers=api_headers(admin)).get_json()
        assert len(listing["items"]) == 1


# ═════════════════════════════════════════════════════════════════════════
# ERROR ENVELOPE
# ═════════════════════════════════════════════════════════════════════════


class TestErrors:
    def test_unknown_route(self, client):
        res = client.get("/nowhere")
        assert res.status_code == 404
        assert res.get_json()["success"] is False

    @pytest.mark.parametrize("method", ["put", "delete"])
    def test_method_not_allowed(self, client, author, api_headers, method):
        res = getattr(client, method)("/api/v1/ideas", headers=api_headers(author))
        assert res.status_code == 405
