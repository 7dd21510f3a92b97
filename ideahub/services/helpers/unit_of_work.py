"""
Unit of work - one commit per core operation.

    with unit_of_work():
        idea.status = "pending"
        bus.publish(DomainEvent(...))

Commits on normal exit, rolls back on any exception (outbox rows included),
then asks the event dispatcher to deliver what was committed. Nested blocks
join the outermost one; only the outermost commits and dispatches.
"""

import threading
from contextlib import contextmanager

from ideahub.models import db

_state = threading.local()


def in_unit_of_work():
    return getattr(_state, "depth", 0) > 0


@contextmanager
def unit_of_work(dispatch=True):
    if in_unit_of_work():
        _state.depth += 1
        try:
            yield db.session
        finally:
            _state.depth -= 1
        return

    _state.depth = 1
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    finally:
        _state.depth = 0

    if dispatch:
        from ideahub.services.event_bus import dispatcher
        dispatcher.notify()
