"""
Shared pytest fixtures for the IdeaHub test suite.

Provides:
    - app: Flask application (session-scoped, in-memory SQLite, sync dispatch)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - tenant / other_tenant: Pre-created Tenant entities
    - make_user / make_idea: factories
    - author / approver / admin: common users in ``tenant``
    - ctx_for: build a TenantContext for a user
    - api_headers: X-User-Id header dict for the test client
    - threaded: file-backed SQLite app plus a runner for parallel operations
"""

import threading

import pytest

from ideahub import create_app
from ideahub.models import db as _db
from ideahub.services.realtime import broadcaster


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        broadcaster.reset()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Factories ────────────────────────────────────────────────────────────


def _make_tenant(*, name="Acme", subdomain="acme", domain=None, **kwargs):
    from ideahub.models.auth import Tenant

    tenant = Tenant(name=name, subdomain=subdomain, domain=domain, **kwargs)
    _db.session.add(tenant)
    _db.session.commit()
    return tenant


@pytest.fixture()
def tenant():
    return _make_tenant()


@pytest.fixture()
def other_tenant():
    return _make_tenant(name="Globex", subdomain="globex")


@pytest.fixture()
def make_tenant():
    return _make_tenant


@pytest.fixture()
def make_user(tenant):
    """Factory: make_user(role="employee", tenant=None, **columns)."""
    from ideahub.models.auth import User

    counter = {"n": 0}

    def _make(role="employee", *, tenant=tenant, name=None, **kwargs):
        counter["n"] += 1
        n = counter["n"]
        user = User(
            tenant_id=tenant.id,
            email=kwargs.pop("email", f"{role}{n}@t{tenant.id}.example.com"),
            name=name or f"{role.replace('_', ' ').title()} {n}",
            role=role,
            **kwargs,
        )
        _db.session.add(user)
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def author(make_user):
    return make_user("employee", name="Ada Author")


@pytest.fixture()
def approver(make_user):
    return make_user("department_head", name="Dana Head")


@pytest.fixture()
def admin(make_user):
    return make_user("admin", name="Alex Admin")


@pytest.fixture()
def ctx_for():
    from ideahub.services.tenant_context import TenantContext

    def _ctx(user):
        return TenantContext.for_user(user)

    return _ctx


@pytest.fixture()
def make_idea(ctx_for):
    """Factory: make_idea(user, title="...", submit=False, budget=None)."""
    from ideahub.services import workflow_service

    def _make(user, title="Recycle coffee grounds", *, submit=False, budget=None, description=""):
        ctx = ctx_for(user)
        idea = workflow_service.create_idea(ctx, title, description, budget=budget).idea
        if submit:
            idea = workflow_service.submit(ctx, idea.id).idea
        return idea

    return _make


@pytest.fixture()
def make_workflow(tenant):
    """Factory: make_workflow(levels, **columns) for ``tenant``."""
    from ideahub.models.approval import ApprovalWorkflow

    def _make(levels, *, name="Workflow", **kwargs):
        wf = ApprovalWorkflow(tenant_id=tenant.id, name=name, levels=levels, **kwargs)
        _db.session.add(wf)
        _db.session.commit()
        return wf

    return _make


@pytest.fixture()
def api_headers():
    def _headers(user):
        return {"X-User-Id": str(user.id)}

    return _headers


# ── Concurrency ──────────────────────────────────────────────────────────


class ParallelRunner:
    """Runs callables in parallel threads against ``threaded_app``.

    Every call gets its own thread, app context and DB session, and all calls
    are released together by a barrier. Callables should return plain values;
    ORM objects are detached once the worker's context closes.
    """

    def __init__(self, app):
        self.app = app

    def run(self, *calls):
        # release the caller's connection so workers are not blocked on its lock
        _db.session.close()
        barrier = threading.Barrier(len(calls))
        results = [None] * len(calls)
        errors = []

        def worker(index, fn):
            with self.app.app_context():
                barrier.wait()
                try:
                    results[index] = fn()
                except Exception as exc:  # surfaced to the test below
                    errors.append(exc)

        threads = [threading.Thread(target=worker, args=(i, fn)) for i, fn in enumerate(calls)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)
        assert not any(t.is_alive() for t in threads), "worker thread hung"
        return results, errors


@pytest.fixture(scope="session")
def threaded_app(app, tmp_path_factory):
    """App on a file-backed SQLite database, so threads get separate connections."""
    path = tmp_path_factory.mktemp("threaded") / "ideahub.db"
    return create_app("testing", {
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{path}",
        "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 30, "check_same_thread": False}},
    })


@pytest.fixture()
def threaded(threaded_app):
    """Push ``threaded_app`` on fresh tables; yields a ParallelRunner.

    Request this fixture before any factory fixture so rows land in the
    file-backed database.
    """
    with threaded_app.app_context():
        _db.drop_all()
        _db.create_all()
        yield ParallelRunner(threaded_app)
        _db.session.remove()
