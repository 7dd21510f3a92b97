"""
Notification store tests - routing, idempotent delivery, inbox operations.
"""

import pytest

from ideahub.core.exceptions import NotFoundError, UnauthorizedError
from ideahub.models import db
from ideahub.models.notification import Notification
from ideahub.services import notification_store as store
from ideahub.services import social_service, workflow_service
from ideahub.services.event_bus import DomainEvent


def _inbox(user, ntype=None):
    stmt = db.select(Notification).where(Notification.user_id == user.id)
    if ntype:
        stmt = stmt.where(Notification.type == ntype)
    return db.session.execute(stmt.order_by(Notification.id)).scalars().all()


# ═════════════════════════════════════════════════════════════════════════
# ROUTING
# ═════════════════════════════════════════════════════════════════════════


class TestRouting:
    def test_submit_notifies_approvers(self, author, approver, admin, make_idea):
        idea = make_idea(author, submit=True)

        for user in (approver, admin):
            [notif] = _inbox(user, "approval_requested")
            assert notif.data["idea_id"] == idea.id
            assert idea.title in notif.message
            assert notif.is_read is False
        assert _inbox(author, "approval_requested") == []

    def test_next_level_approvers_told_when_level_clears(
        self, author, make_user, make_workflow, make_idea, ctx_for,
    ):
        first = make_user("team_lead")
        second = make_user("department_head")
        make_workflow(
            [{"level": 1, "approver_ids": [first.id]}, {"level": 2, "approver_ids": [second.id]}],
            is_default=True,
        )
        idea = make_idea(author, submit=True)
        assert _inbox(second) == []

        workflow_service.approve(ctx_for(first), idea.id)

        [notif] = _inbox(second, "approval_requested")
        assert notif.data["level"] == 2

    def test_author_told_of_rejection_with_feedback(self, author, approver, make_idea, ctx_for):
        idea = make_idea(author, submit=True)
        workflow_service.reject(ctx_for(approver), idea.id, notes="Needs a budget")

        [notif] = _inbox(author, "idea_rejected")
        assert "Needs a budget" in notif.message

    def test_comment_and_reply(self, author, make_user, make_idea, ctx_for):
        idea = make_idea(author, submit=True)
        alice = make_user("employee", name="Alice")
        bob = make_user("employee", name="Bob")

        top = social_service.add_comment(ctx_for(alice), idea.id, "Love it")
        social_service.add_comment(ctx_for(bob), idea.id, "Agreed", parent_id=top.id)

        assert len(_inbox(author, "new_comment")) == 2
        [reply] = _inbox(alice, "comment_reply")
        assert "Bob" in reply.message
        assert _inbox(bob) == []

    def test_own_comment_is_silent(self, author, make_idea, ctx_for):
        idea = make_idea(author, submit=True)
        social_service.add_comment(ctx_for(author), idea.id, "Note to self")
        assert _inbox(author, "new_comment") == []

    def test_approval_brings_level_up(self, author, approver, admin, make_idea, ctx_for):
        idea = make_idea(author, submit=True)
        workflow_service.approve(ctx_for(approver), idea.id)
        assert _inbox(author, "level_up") == []

        workflow_service.approve(ctx_for(admin), idea.id)

        assert len(_inbox(author, "idea_approved")) == 1
        [level_up] = _inbox(author, "level_up")
        assert level_up.data["level"] == 2


class TestDeliver:
    def test_redelivery_is_idempotent(self, tenant, author, ctx_for):
        ctx = ctx_for(author)
        event = DomainEvent(kind="idea.approved", tenant_id=tenant.id,
                            payload={"idea_id": 7, "author_id": author.id, "title": "T"})

        first = store.deliver(ctx, author.id, event)
        second = store.deliver(ctx, author.id, event)
        db.session.commit()

        assert first.id == second.id
        assert len(_inbox(author)) == 1

    def test_unknown_recipient_ignored(self, tenant, other_tenant, make_user):
        outsider = make_user("employee", tenant=other_tenant)
        event = DomainEvent(kind="idea.approved", tenant_id=tenant.id,
                            payload={"idea_id": 7, "author_id": outsider.id, "title": "T"})
        store.handle_event(event)
        db.session.commit()
        assert _inbox(outsider) == []

    def test_render_unknown_kind(self, tenant):
        event = DomainEvent(kind="idea.created", tenant_id=tenant.id, payload={})
        with pytest.raises(ValueError):
            store.render(event, 1)


# ═════════════════════════════════════════════════════════════════════════
# INBOX
# ═════════════════════════════════════════════════════════════════════════


class TestInbox:
    @pytest.fixture()
    def inbox(self, author, approver, make_idea):
        for n in range(3):
            make_idea(author, f"Idea {n}", submit=True)
        return _inbox(approver)

    def test_list_newest_first_and_paged(self, inbox, approver, ctx_for):
        items, total = store.list_for_user(ctx_for(approver), limit=2)
        assert total == 3
        assert [n.id for n in items] == [inbox[2].id, inbox[1].id]

    def test_mark_read(self, inbox, approver, ctx_for):
        ctx = ctx_for(approver)
        notif = store.mark_read(ctx, inbox[0].id)

        assert notif.is_read is True
        assert notif.read_at is not None
        assert store.unread_count(ctx) == 2
        _, unread_total = store.list_for_user(ctx, unread_only=True)
        assert unread_total == 2

    def test_mark_read_by_other_user(self, inbox, author, ctx_for):
        with pytest.raises(UnauthorizedError):
            store.mark_read(ctx_for(author), inbox[0].id)

    def test_mark_all_read(self, inbox, approver, ctx_for):
        ctx = ctx_for(approver)
        store.mark_read(ctx, inbox[0].id)
        assert store.mark_all_read(ctx) == 2
        assert store.unread_count(ctx) == 0

    def test_delete(self, inbox, approver, author, ctx_for):
        with pytest.raises(UnauthorizedError):
            store.delete_notification(ctx_for(author), inbox[0].id)
        store.delete_notification(ctx_for(approver), inbox[0].id)
        assert len(_inbox(approver)) == 2

    def test_recent_since(self, inbox, approver, ctx_for):
        newer = store.recent(ctx_for(approver), since_id=inbox[0].id)
        assert [n.id for n in newer] == [inbox[1].id, inbox[2].id]

    def test_other_tenant_cannot_see(self, inbox, other_tenant, make_user, ctx_for):
        outsider = make_user("admin", tenant=other_tenant)
        with pytest.raises(NotFoundError):
            store.mark_read(ctx_for(outsider), inbox[0].id)
        assert store.list_for_user(ctx_for(outsider)) == ([], 0)
