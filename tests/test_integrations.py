"""
Chat integration tests.

Covers:
  - WebhookGateway retry / timeout / non-retryable responses
  - Slack, Teams and signed-webhook payloads
  - integration CRUD (admin only), secret masking
  - event fan-out on idea approval, failure isolation, test connection
"""

import hashlib
import hmac
import json
import threading
from unittest.mock import MagicMock, Mock, patch

import pytest
import requests

from ideahub.core.exceptions import NotFoundError, UnauthorizedError, ValidationError
from ideahub.integrations import slack, teams, webhook
from ideahub.integrations.gateway import WebhookGateway, gateway
from ideahub.models import db
from ideahub.models.integration import Integration, IntegrationLog
from ideahub.services import integration_service, workflow_service


def _resp(status=200, body=b"ok"):
    resp = MagicMock()
    resp.status_code = status
    resp.ok = 200 <= status < 300
    resp.content = body
    resp.text = body.decode()
    resp.json.side_effect = ValueError("not json")
    return resp


def _sent(session, call=-1):
    """Decode the JSON body of a recorded session.post call."""
    return json.loads(session.post.call_args_list[call].kwargs["data"])


@pytest.fixture()
def http():
    session = Mock()
    session.post.return_value = _resp()
    with patch.object(gateway, "_session", session), \
            patch("ideahub.integrations.gateway.time.sleep"):
        yield session


# ═════════════════════════════════════════════════════════════════════════
# GATEWAY
# ═════════════════════════════════════════════════════════════════════════


class TestGateway:
    def test_success(self, http):
        result = gateway.post_json("https://hooks.example.com/x", {"text": "hi"})

        assert result.ok
        assert result.status_code == 200
        assert result.data == "ok"
        assert result.attempts == 1
        kwargs = http.post.call_args.kwargs
        assert kwargs["headers"]["Content-Type"] == "application/json"
        assert result.payload_hash == hashlib.sha256(kwargs["data"]).hexdigest()

    def test_retries_server_error(self, http):
        http.post.side_effect = [_resp(500, b"oops"), _resp(200)]
        result = gateway.post_json("https://hooks.example.com/x", {"text": "hi"})

        assert result.ok
        assert result.attempts == 2

    def test_gives_up_after_retry_budget(self, http):
        http.post.return_value = _resp(503, b"busy")
        result = gateway.post_json("https://hooks.example.com/x", {})

        assert not result.ok
        assert result.attempts == 2
        assert "HTTP 503" in result.error
        assert result.to_log_dict()["status"] == "failed"

    def test_client_error_not_retried(self, http):
        http.post.return_value = _resp(400, b"bad payload")
        result = gateway.post_json("https://hooks.example.com/x", {})

        assert not result.ok
        assert result.status_code == 400
        assert http.post.call_count == 1

    def test_rate_limit_retried(self, http):
        http.post.side_effect = [_resp(429, b"slow down"), _resp(204, b"")]
        result = gateway.post_json("https://hooks.example.com/x", {})
        assert result.ok
        assert result.data is None

    def test_timeout(self, http):
        http.post.side_effect = requests.Timeout()
        result = gateway.post_json("https://hooks.example.com/x", {})

        assert not result.ok
        assert result.status_code is None
        assert "timed out" in result.error
        assert http.post.call_count == 2

    def test_missing_url(self, http):
        result = gateway.post_json("", {})
        assert not result.ok
        assert result.attempts == 0
        http.post.assert_not_called()

    def test_injected_session(self):
        session = Mock()
        session.post.return_value = _resp()
        assert WebhookGateway(session=session).post_json("https://x.test", {}).ok
        session.post.assert_called_once()

    def test_session_per_thread(self):
        gw = WebhookGateway()
        seen = {}

        def grab(name):
            seen[name] = gw.session

        workers = [threading.Thread(target=grab, args=(n,)) for n in ("a", "b")]
        for t in workers:
            t.start()
        for t in workers:
            t.join()

        assert isinstance(seen["a"], requests.Session)
        assert seen["a"] is not seen["b"]
        assert gw.session is gw.session


# ═════════════════════════════════════════════════════════════════════════
# SENDERS
# ═════════════════════════════════════════════════════════════════════════


CONTEXT = {
    "event_kind": "idea.approved",
    "idea_id": 3,
    "title": "Solar roof",
    "status": "approved",
    "actor_name": "Dana Head",
    "notes": "Great",
    "url": "http://localhost:5000/ideas/3",
}


class TestSenders:
    def test_slack_blocks(self, http):
        slack.send_notification(
            {"webhook_url": "https://hooks.slack.com/x", "channel": "#ideas"}, "Idea approved", CONTEXT,
        )
        body = _sent(http)
        assert body["text"] == "Idea approved"
        assert body["channel"] == "#ideas"
        assert body["blocks"][0]["type"] == "header"
        assert "Solar roof" in json.dumps(body["blocks"])

    def test_teams_card(self, http):
        teams.send_notification({"webhook_url": "https://outlook.office.com/x"}, "Idea approved", CONTEXT)
        card = _sent(http)
        assert card["@type"] == "MessageCard"
        assert card["themeColor"] == teams.THEME_COLORS["idea.approved"]
        assert {"name": "By", "value": "Dana Head"} in card["sections"][0]["facts"]
        assert card["potentialAction"][0]["targets"][0]["uri"] == CONTEXT["url"]

    def test_webhook_signature(self, http):
        webhook.send_notification({"url": "https://example.com/hook", "secret": "s3cret"}, "Idea approved", CONTEXT)

        kwargs = http.post.call_args.kwargs
        expected = "sha256=" + hmac.new(b"s3cret", kwargs["data"], hashlib.sha256).hexdigest()
        assert kwargs["headers"][webhook.SIGNATURE_HEADER] == expected
        assert json.loads(kwargs["data"])["event"] == "idea.approved"

    def test_webhook_unsigned_without_secret(self, http):
        webhook.send_notification({"url": "https://example.com/hook"}, "hi", {})
        assert webhook.SIGNATURE_HEADER not in http.post.call_args.kwargs["headers"]


# ═════════════════════════════════════════════════════════════════════════
# SERVICE
# ═════════════════════════════════════════════════════════════════════════


SLACK = {"type": "slack", "name": "Ideas channel", "config": {"webhook_url": "https://hooks.slack.com/x"}}


class TestCrud:
    def test_create_requires_admin(self, approver, ctx_for):
        with pytest.raises(UnauthorizedError):
            integration_service.create_integration(ctx_for(approver), SLACK)

    @pytest.mark.parametrize("data", [
        {**SLACK, "type": "fax"},
        {**SLACK, "name": " "},
        {**SLACK, "config": {}},
        {**SLACK, "config": {"webhook_url": "ftp://nope"}},
        {**SLACK, "events": ["idea.exploded"]},
    ])
    def test_create_validation(self, admin, ctx_for, data):
        with pytest.raises(ValidationError):
            integration_service.create_integration(ctx_for(admin), data)

    def test_create_update_delete(self, admin, ctx_for):
        ctx = ctx_for(admin)
        created = integration_service.create_integration(ctx, {
            "type": "webhook", "name": "Audit", "config": {"url": "https://example.com/h", "secret": "k"},
        })
        assert created.to_dict()["config"]["secret"] == "***"
        assert created.to_dict()["events"] == ["idea.submitted", "idea.approved"]

        updated = integration_service.update_integration(ctx, created.id, {
            "name": "Audit log", "config": {"secret": "k2"}, "events": ["idea.rejected"],
        })
        assert updated.name == "Audit log"
        assert updated.config == {"url": "https://example.com/h", "secret": "k2"}
        assert updated.wants("idea.rejected") and not updated.wants("idea.approved")

        integration_service.delete_integration(ctx, created.id)
        assert integration_service.list_integrations(ctx) == []

    def test_other_tenant_invisible(self, admin, other_tenant, make_user, ctx_for):
        created = integration_service.create_integration(ctx_for(admin), SLACK)
        outsider = make_user("admin", tenant=other_tenant)
        assert integration_service.list_integrations(ctx_for(outsider)) == []
        with pytest.raises(NotFoundError):
            integration_service.get_integration(ctx_for(outsider), created.id)


class TestDispatch:
    @pytest.fixture()
    def slack_hook(self, admin, ctx_for):
        return integration_service.create_integration(ctx_for(admin), SLACK)

    def _logs(self, action=None):
        stmt = db.select(IntegrationLog).order_by(IntegrationLog.id)
        if action:
            stmt = stmt.where(IntegrationLog.action == action)
        return db.session.execute(stmt).scalars().all()

    def test_approval_forwarded(self, http, slack_hook, author, approver, admin, make_idea, ctx_for):
        idea = make_idea(author, submit=True)
        workflow_service.approve(ctx_for(approver), idea.id)
        workflow_service.approve(ctx_for(admin), idea.id)

        [log] = self._logs("idea.approved")
        assert log.status == "success"
        assert log.event_id is not None
        assert log.request_data["idea_id"] == idea.id
        assert len(self._logs("idea.submitted")) == 1
        assert db.session.get(Integration, slack_hook.id).last_sync_at is not None
        assert _sent(http)["text"] == f"Idea approved: {idea.title}"

    def test_one_failure_does_not_block_others(
        self, http, slack_hook, admin, author, approver, make_idea, ctx_for,
    ):
        integration_service.create_integration(ctx_for(admin), {
            "type": "teams", "name": "Teams", "config": {"webhook_url": "https://outlook.office.com/x"},
        })
        http.post.side_effect = [_resp(400, b"bad"), _resp(200)]

        make_idea(author, submit=True)

        logs = self._logs("idea.submitted")
        assert [log.status for log in logs] == ["failed", "success"]
        assert logs[0].response_status == 400

    def test_sender_exception_is_logged(self, slack_hook, author, approver, make_idea):
        with patch.dict(integration_service.INTEGRATION_SENDERS, {"slack": Mock(side_effect=KeyError("x"))}):
            make_idea(author, submit=True)
        [log] = self._logs("idea.submitted")
        assert log.status == "failed"

    def test_inactive_integration_skipped(self, http, slack_hook, admin, author, approver, make_idea, ctx_for):
        integration_service.update_integration(ctx_for(admin), slack_hook.id, {"is_active": False})
        make_idea(author, submit=True)
        assert self._logs() == []
        http.post.assert_not_called()

    def test_test_connection(self, http, slack_hook, admin, approver, ctx_for):
        result = integration_service.test_connection(ctx_for(admin), slack_hook.id)

        assert result.ok
        assert _sent(http)["text"] == slack.TEST_MESSAGE
        [log] = integration_service.list_logs(ctx_for(admin), slack_hook.id)
        assert log.action == "test_connection"

        with pytest.raises(UnauthorizedError):
            integration_service.test_connection(ctx_for(approver), slack_hook.id)
