"""
Real-time broadcaster.

Channels:
    user.{id}       private to one user (badges, level-ups, own idea decisions)
    idea.{id}       public per idea (status changes, new comments, likes)
    notifications   global feed of lifecycle events

History is kept per (tenant, channel), bounded and in memory, and every
registered listener is called on broadcast; a websocket or push transport plugs in through
``register_listener``. ``handle_event`` is the ``realtime`` event-bus
subscriber.
"""

import logging
import threading
from collections import OrderedDict, deque

from ideahub.services.event_bus import (
    APPROVAL_DECIDED,
    BADGE_EARNED,
    COMMENT_CREATED,
    IDEA_APPROVED,
    IDEA_IMPLEMENTED,
    IDEA_LIKED,
    IDEA_REJECTED,
    IDEA_SUBMITTED,
    IDEA_UNLIKED,
    USER_LEVELED_UP,
)

logger = logging.getLogger(__name__)

GLOBAL_CHANNEL = "notifications"
DEFAULT_HISTORY_SIZE = 100
DEFAULT_MAX_CHANNELS = 10_000

BROADCAST_KINDS = frozenset({
    IDEA_SUBMITTED, APPROVAL_DECIDED, IDEA_APPROVED, IDEA_REJECTED,
    IDEA_IMPLEMENTED, COMMENT_CREATED, IDEA_LIKED, IDEA_UNLIKED,
    BADGE_EARNED, USER_LEVELED_UP,
})


def user_channel(user_id):
    return f"user.{user_id}"


def idea_channel(idea_id):
    return f"idea.{idea_id}"


class Broadcaster:
    """In-memory channel fan-out with bounded per-channel history.

    At most ``max_channels`` (tenant, channel) histories are kept; the one
    written to least recently is dropped first.
    """

    def __init__(self, history_size=DEFAULT_HISTORY_SIZE, max_channels=DEFAULT_MAX_CHANNELS):
        self.history_size = history_size
        self.max_channels = max_channels
        self._lock = threading.Lock()
        self._history = OrderedDict()
        self._listeners = []

    def init_app(self, app):
        self.history_size = app.config.get("REALTIME_HISTORY_SIZE", DEFAULT_HISTORY_SIZE)
        self.max_channels = app.config.get("REALTIME_MAX_CHANNELS", DEFAULT_MAX_CHANNELS)
        self.reset()
        app.extensions["realtime"] = self

    def register_listener(self, listener):
        """``listener(channel, message)`` is called for every broadcast."""
        with self._lock:
            self._listeners.append(listener)

    def unregister_listener(self, listener):
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def reset(self):
        with self._lock:
            self._history = OrderedDict()
            self._listeners = []

    def broadcast(self, channel, message, tenant_id=None):
        with self._lock:
            key = (tenant_id, channel)
            buf = self._history.get(key)
            if buf is None:
                buf = self._history[key] = deque(maxlen=self.history_size)
                while len(self._history) > self.max_channels:
                    self._history.popitem(last=False)
            else:
                self._history.move_to_end(key)
            buf.append(message)
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(channel, message)
            except Exception:
                logger.exception("Realtime listener failed on %s", channel)

    def history(self, channel, tenant_id=None, limit=None):
        with self._lock:
            items = list(self._history.get((tenant_id, channel), ()))
        return items[-limit:] if limit else items


broadcaster = Broadcaster()


def channels_for(event):
    """Channels an event is broadcast on."""
    p = event.payload
    channels = []
    if event.kind in (BADGE_EARNED, USER_LEVELED_UP):
        channels.append(user_channel(p["user_id"]))
        return channels
    if event.kind in (IDEA_APPROVED, IDEA_REJECTED, IDEA_IMPLEMENTED):
        channels.append(user_channel(p["author_id"]))
    if p.get("idea_id") is not None:
        channels.append(idea_channel(p["idea_id"]))
    if event.kind in (IDEA_SUBMITTED, IDEA_APPROVED, IDEA_REJECTED, IDEA_IMPLEMENTED):
        channels.append(GLOBAL_CHANNEL)
    return channels


def handle_event(event):
    message = {
        "event": event.kind,
        "event_id": event.event_id,
        "tenant_id": event.tenant_id,
        "occurred_at": event.occurred_at.isoformat(),
        "data": dict(event.payload),
    }
    for channel in channels_for(event):
        broadcaster.broadcast(channel, message, tenant_id=event.tenant_id)
