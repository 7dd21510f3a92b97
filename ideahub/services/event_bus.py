"""
EventBus - transactional outbox + after-commit fan-out.

publish():
    Appends an OutboxEvent to the current session. Nothing is delivered
    until the unit of work commits; a rollback discards the event.

dispatch_pending():
    Delivers committed outbox rows in creation order. Every
    (event, subscriber) pair gets one EventDelivery row:

    core subscribers (reward_engine, notification_store)
        Run inside their own transaction. A failure rolls that transaction
        back and leaves the event pending; the next dispatch retries only the
        subscribers that have not succeeded. After EVENT_MAX_ATTEMPTS the
        event is marked ``dead``.

    best-effort subscribers (realtime, integrations, email)
        The delivery row is committed *before* the call, so each is
        attempted at most once per event. Failures are logged and recorded,
        never retried, never surfaced.

    Events published by subscribers during dispatch are picked up by the
    running loop; a nested dispatch_pending() call on the same thread
    returns immediately.

EventDispatcher:
    Triggers dispatch_pending() after each commit, inline (``sync``) or on a
    worker pool (``async``).
"""

import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from ideahub.models import db
from ideahub.models.base import as_utc, utcnow
from ideahub.models.events import EventDelivery, OutboxEvent

logger = logging.getLogger(__name__)

# ── Event kinds ──────────────────────────────────────────────────────────────

IDEA_CREATED = "idea.created"
IDEA_SUBMITTED = "idea.submitted"
APPROVAL_DECIDED = "approval.decided"
IDEA_APPROVED = "idea.approved"
IDEA_REJECTED = "idea.rejected"
IDEA_IMPLEMENTED = "idea.implemented"
COMMENT_CREATED = "comment.created"
IDEA_LIKED = "idea.liked"
IDEA_UNLIKED = "idea.unliked"
USER_LEVELED_UP = "user.leveled_up"
BADGE_EARNED = "badge.earned"

EVENT_KINDS = frozenset({
    IDEA_CREATED, IDEA_SUBMITTED, APPROVAL_DECIDED, IDEA_APPROVED,
    IDEA_REJECTED, IDEA_IMPLEMENTED, COMMENT_CREATED, IDEA_LIKED,
    IDEA_UNLIKED, USER_LEVELED_UP, BADGE_EARNED,
})

DEFAULT_MAX_ATTEMPTS = 5


@dataclass(frozen=True)
class DomainEvent:
    kind: str
    tenant_id: int
    payload: dict
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    occurred_at: datetime = field(default_factory=utcnow)
    version: int = 1

    def to_dict(self):
        return {
            "event_id": self.event_id,
            "kind": self.kind,
            "version": self.version,
            "tenant_id": self.tenant_id,
            "occurred_at": self.occurred_at.isoformat(),
            "payload": dict(self.payload),
        }

    @classmethod
    def from_outbox(cls, row):
        return cls(
            kind=row.kind,
            tenant_id=row.tenant_id,
            payload=dict(row.payload or {}),
            event_id=row.event_id,
            occurred_at=as_utc(row.occurred_at),
            version=row.version,
        )


@dataclass
class Subscriber:
    name: str
    handler: object
    kinds: frozenset | None = None
    best_effort: bool = False

    def wants(self, kind):
        return self.kinds is None or kind in self.kinds


class EventBus:
    """Outbox writer and subscriber registry."""

    def __init__(self):
        self._subscribers: dict[str, Subscriber] = {}
        self._local = threading.local()
        self.max_attempts = DEFAULT_MAX_ATTEMPTS

    # ── Registration ──────────────────────────────────────────────────────

    def subscribe(self, name, handler, kinds=None, best_effort=False):
        if kinds is not None:
            unknown = set(kinds) - EVENT_KINDS
            if unknown:
                raise ValueError(f"Unknown event kinds for {name}: {sorted(unknown)}")
            kinds = frozenset(kinds)
        self._subscribers[name] = Subscriber(name, handler, kinds, best_effort)
        logger.debug("Subscriber registered: %s", name, extra={"subscriber": name})

    def unsubscribe(self, name):
        self._subscribers.pop(name, None)

    def clear(self):
        self._subscribers.clear()

    @property
    def subscribers(self):
        return list(self._subscribers.values())

    # ── Publish ───────────────────────────────────────────────────────────

    def publish(self, event):
        """Stage ``event`` in the current transaction. Never commits."""
        if event.kind not in EVENT_KINDS:
            raise ValueError(f"Unknown event kind: {event.kind}")
        db.session.add(OutboxEvent(
            event_id=event.event_id,
            kind=event.kind,
            version=event.version,
            tenant_id=event.tenant_id,
            payload=dict(event.payload),
            occurred_at=event.occurred_at,
        ))
        logger.debug(
            "Event staged: %s", event.kind,
            extra={"event_id": event.event_id, "event_kind": event.kind, "tenant_id": event.tenant_id},
        )
        return event

    # ── Dispatch ──────────────────────────────────────────────────────────

    def dispatch_pending(self, limit=None):
        """Deliver committed pending events. Returns the number processed.

        Each event is attempted at most once per call; failed core deliveries
        wait for the next call.
        """
        if getattr(self._local, "dispatching", False):
            return 0

        self._local.dispatching = True
        processed = 0
        attempted = set()
        try:
            while limit is None or processed < limit:
                stmt = (
                    select(OutboxEvent.id)
                    .where(OutboxEvent.status == "pending")
                    .order_by(OutboxEvent.id)
                )
                ids = [i for i in db.session.execute(stmt).scalars() if i not in attempted]
                if not ids:
                    break
                for outbox_id in ids:
                    if limit is not None and processed >= limit:
                        break
                    attempted.add(outbox_id)
                    self._deliver(outbox_id)
                    processed += 1
        finally:
            self._local.dispatching = False
        return processed

    def _deliver(self, outbox_id):
        row = db.session.get(OutboxEvent, outbox_id)
        if row is None or row.status != "pending":
            return
        event = DomainEvent.from_outbox(row)
        log_extra = {"event_id": event.event_id, "event_kind": event.kind, "tenant_id": event.tenant_id}

        previous = {
            d.subscriber: d.status
            for d in db.session.execute(
                select(EventDelivery).where(EventDelivery.event_id == event.event_id)
            ).scalars()
        }

        failed = []
        for sub in list(self._subscribers.values()):
            if not sub.wants(event.kind):
                continue
            if sub.best_effort:
                if sub.name in previous:
                    continue
                self._deliver_best_effort(sub, event)
            else:
                if previous.get(sub.name) == "succeeded":
                    continue
                if not self._deliver_core(sub, event):
                    failed.append(sub.name)

        row = db.session.get(OutboxEvent, outbox_id)
        row.attempts = (row.attempts or 0) + 1
        if not failed:
            row.status = "dispatched"
            row.dispatched_at = utcnow()
            row.last_error = None
        else:
            row.last_error = f"failed subscribers: {', '.join(failed)}"
            if row.attempts >= self.max_attempts:
                row.status = "dead"
                logger.error(
                    "Event %s dead after %d attempts (%s)", event.kind, row.attempts, row.last_error,
                    extra=log_extra,
                )
        db.session.commit()

    def _delivery_row(self, event_id, subscriber):
        delivery = db.session.execute(
            select(EventDelivery).where(
                EventDelivery.event_id == event_id,
                EventDelivery.subscriber == subscriber,
            )
        ).scalar_one_or_none()
        if delivery is None:
            delivery = EventDelivery(event_id=event_id, subscriber=subscriber, attempts=0)
            db.session.add(delivery)
        return delivery

    def _deliver_core(self, sub, event):
        extra = {"event_id": event.event_id, "event_kind": event.kind,
                 "tenant_id": event.tenant_id, "subscriber": sub.name}
        try:
            sub.handler(event)
            delivery = self._delivery_row(event.event_id, sub.name)
            delivery.status = "succeeded"
            delivery.attempts = (delivery.attempts or 0) + 1
            delivery.error = None
            delivery.completed_at = utcnow()
            db.session.commit()
            return True
        except Exception as exc:
            db.session.rollback()
            logger.exception("Subscriber %s failed on %s", sub.name, event.kind, extra=extra)
            delivery = self._delivery_row(event.event_id, sub.name)
            delivery.status = "failed"
            delivery.attempts = (delivery.attempts or 0) + 1
            delivery.error = str(exc)[:2000]
            db.session.commit()
            return False

    def _deliver_best_effort(self, sub, event):
        extra = {"event_id": event.event_id, "event_kind": event.kind,
                 "tenant_id": event.tenant_id, "subscriber": sub.name}
        try:
            db.session.add(EventDelivery(
                event_id=event.event_id, subscriber=sub.name, status="started", attempts=1,
            ))
            db.session.commit()
        except IntegrityError:
            # Another dispatcher claimed this delivery first
            db.session.rollback()
            return

        status, error = "succeeded", None
        try:
            sub.handler(event)
            db.session.commit()
        except Exception as exc:
            db.session.rollback()
            status, error = "failed", str(exc)[:2000]
            logger.warning(
                "Best-effort subscriber %s failed on %s: %s", sub.name, event.kind, exc,
                extra=extra,
            )

        delivery = self._delivery_row(event.event_id, sub.name)
        delivery.status = status
        delivery.error = error
        delivery.completed_at = utcnow()
        db.session.commit()


class EventDispatcher:
    """Runs ``bus.dispatch_pending()`` after every committed unit of work."""

    def __init__(self, bus):
        self.bus = bus
        self.mode = "sync"
        self._app = None
        self._executor = None

    def init_app(self, app):
        self._app = app
        self.mode = app.config.get("EVENT_DISPATCH_MODE", "sync")
        self.bus.max_attempts = app.config.get("EVENT_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS)
        if self.mode == "async" and self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=app.config.get("EVENT_WORKER_THREADS", 4),
                thread_name_prefix="ideahub-events",
            )
        app.extensions["event_dispatcher"] = self
        logger.info("Event dispatcher ready (mode=%s)", self.mode)

    def notify(self):
        if self._app is None:
            return
        if self.mode == "async":
            self._executor.submit(self._run)
        else:
            self.bus.dispatch_pending()

    def _run(self):
        with self._app.app_context():
            try:
                self.bus.dispatch_pending()
            except Exception:
                logger.exception("Background event dispatch failed")
            finally:
                db.session.remove()

    def shutdown(self):
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None


bus = EventBus()
dispatcher = EventDispatcher(bus)


def publish(event):
    return bus.publish(event)


def register_default_subscribers(target=None):
    """Wire the standard subscribers, core first, in delivery order."""
    from ideahub.services import (
        email_service,
        integration_service,
        notification_store,
        realtime,
        reward_engine,
    )

    target = target or bus
    target.subscribe("reward_engine", reward_engine.handle_event, kinds=reward_engine.REWARDED_KINDS)
    target.subscribe("notification_store", notification_store.handle_event,
                     kinds=notification_store.ROUTED_KINDS)
    target.subscribe("realtime", realtime.handle_event, kinds=realtime.BROADCAST_KINDS, best_effort=True)
    target.subscribe("integrations", integration_service.handle_event,
                     kinds=integration_service.FORWARDED_KINDS, best_effort=True)
    target.subscribe("email", email_service.handle_event, kinds=email_service.EMAIL_KINDS, best_effort=True)
    return target
