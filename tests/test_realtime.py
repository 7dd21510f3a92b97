"""Realtime broadcaster tests."""

from unittest.mock import Mock

from ideahub.services import social_service, workflow_service
from ideahub.services.event_bus import DomainEvent
from ideahub.services.realtime import (
    GLOBAL_CHANNEL,
    Broadcaster,
    broadcaster,
    channels_for,
    idea_channel,
    user_channel,
)


class TestBroadcaster:
    def test_history_is_bounded(self):
        b = Broadcaster(history_size=3)
        for n in range(5):
            b.broadcast("idea.1", {"n": n}, tenant_id=1)
        assert [m["n"] for m in b.history("idea.1", tenant_id=1)] == [2, 3, 4]
        assert [m["n"] for m in b.history("idea.1", tenant_id=1, limit=1)] == [4]

    def test_history_is_per_tenant(self):
        b = Broadcaster()
        b.broadcast(GLOBAL_CHANNEL, {"n": 1}, tenant_id=1)
        b.broadcast(GLOBAL_CHANNEL, {"n": 2}, tenant_id=2)
        assert b.history(GLOBAL_CHANNEL, tenant_id=1) == [{"n": 1}]

    def test_idle_channels_evicted(self):
        b = Broadcaster(max_channels=2)
        b.broadcast("idea.1", {"n": 1}, tenant_id=1)
        b.broadcast("idea.2", {"n": 2}, tenant_id=1)
        b.broadcast("idea.1", {"n": 3}, tenant_id=1)
        b.broadcast("idea.3", {"n": 4}, tenant_id=1)

        assert b.history("idea.2", tenant_id=1) == []
        assert [m["n"] for m in b.history("idea.1", tenant_id=1)] == [1, 3]
        assert b.history("idea.3", tenant_id=1) == [{"n": 4}]

    def test_failing_listener_isolated(self):
        b = Broadcaster()
        bad = Mock(side_effect=RuntimeError("socket closed"))
        good = Mock()
        b.register_listener(bad)
        b.register_listener(good)

        b.broadcast("user.1", {"x": 1})

        good.assert_called_once_with("user.1", {"x": 1})
        b.unregister_listener(good)
        b.broadcast("user.1", {"x": 2})
        assert good.call_count == 1


class TestChannels:
    def test_badge_is_private(self):
        event = DomainEvent(kind="badge.earned", tenant_id=1, payload={"user_id": 5, "badge_id": 2})
        assert channels_for(event) == [user_channel(5)]

    def test_approval_fans_out(self):
        event = DomainEvent(kind="idea.approved", tenant_id=1, payload={"idea_id": 3, "author_id": 5})
        assert channels_for(event) == [user_channel(5), idea_channel(3), GLOBAL_CHANNEL]

    def test_like_is_idea_only(self):
        event = DomainEvent(kind="idea.liked", tenant_id=1, payload={"idea_id": 3, "author_id": 5, "user_id": 6})
        assert channels_for(event) == [idea_channel(3)]


class TestEventBroadcasts:
    def test_approval_reaches_author_channel(self, tenant, author, approver, admin, make_idea, ctx_for):
        idea = make_idea(author, submit=True)
        workflow_service.approve(ctx_for(approver), idea.id)
        workflow_service.approve(ctx_for(admin), idea.id)

        mine = [m["event"] for m in broadcaster.history(user_channel(author.id), tenant_id=tenant.id)]
        assert "idea.approved" in mine
        assert "user.leveled_up" in mine
        feed = [m["event"] for m in broadcaster.history(GLOBAL_CHANNEL, tenant_id=tenant.id)]
        assert feed == ["idea.submitted", "idea.approved"]

    def test_listener_sees_comment(self, tenant, author, approver, make_idea, ctx_for):
        listener = Mock()
        broadcaster.register_listener(listener)
        idea = make_idea(author, submit=True)
        listener.reset_mock()

        social_service.add_comment(ctx_for(approver), idea.id, "Hello")

        channel, message = listener.call_args.args
        assert channel == idea_channel(idea.id)
        assert message["event"] == "comment.created"
        assert message["tenant_id"] == tenant.id

    def test_other_tenant_feed_empty(self, tenant, other_tenant, author, approver, make_idea):
        make_idea(author, submit=True)
        assert broadcaster.history(GLOBAL_CHANNEL, tenant_id=other_tenant.id) == []
