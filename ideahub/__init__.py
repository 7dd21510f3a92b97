"""
IdeaHub
Flask Application Factory.

Usage:
    from ideahub import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from ideahub.config import config
from ideahub.models import db
from ideahub.middleware.logging_config import configure_logging
from ideahub.middleware.rate_limiter import init_rate_limits
from ideahub.middleware.tenant_context import init_tenant_context
from ideahub.middleware.timing import init_request_timing
from ideahub.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

# ── SQLite: FK enforcement + real SAVEPOINT support (global engine events) ──
from sqlalchemy import event as _sa_event, engine as _sa_engine


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _configure_sqlite(dbapi_conn, connection_record):
    """Enable foreign keys and hand transaction control to SQLAlchemy."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
        # pysqlite's own BEGIN handling breaks nested transactions
        dbapi_conn.isolation_level = None


@_sa_event.listens_for(_sa_engine.Engine, "begin")
def _sqlite_begin(conn):
    # FOR UPDATE is a no-op on SQLite; writers serialize on the BEGIN instead
    if conn.dialect.name == "sqlite":
        conn.exec_driver_sql("BEGIN IMMEDIATE")


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit - apply per-blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),  # Redis in production, memory for dev
)


def create_app(config_name=None, overrides=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.
        overrides: Optional mapping applied on top of the config class
                   (e.g. a file-backed SQLALCHEMY_DATABASE_URI in tests).

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())
    if overrides:
        app.config.update(overrides)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Tenant context middleware (sets g.tenant_ctx) ────────────────────
    init_tenant_context(app)

    app.config.setdefault("MAX_CONTENT_LENGTH", 1 * 1024 * 1024)  # 1 MB

    # ── Import all models so Alembic can detect them ─────────────────────
    from ideahub.models import auth as _auth_models                 # noqa: F401
    from ideahub.models import idea as _idea_models                 # noqa: F401
    from ideahub.models import approval as _approval_models         # noqa: F401
    from ideahub.models import gamification as _gamification_models  # noqa: F401
    from ideahub.models import notification as _notification_models  # noqa: F401
    from ideahub.models import events as _event_models              # noqa: F401
    from ideahub.models import integration as _integration_models   # noqa: F401
    from ideahub.models import email as _email_models               # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    if app.config.get("SQLALCHEMY_DATABASE_URI", "").startswith("sqlite:///") and \
            ":memory:" not in app.config["SQLALCHEMY_DATABASE_URI"]:
        os.makedirs(app.instance_path, exist_ok=True)
    with app.app_context():
        db.create_all()
        app.logger.info("db.create_all() completed successfully")

    # ── Blueprints ───────────────────────────────────────────────────────
    from ideahub.blueprints.idea_bp import idea_bp
    from ideahub.blueprints.social_bp import social_bp
    from ideahub.blueprints.notification_bp import notification_bp
    from ideahub.blueprints.gamification_bp import gamification_bp
    from ideahub.blueprints.integration_bp import integration_bp
    from ideahub.blueprints.health_bp import health_bp

    app.register_blueprint(idea_bp)
    app.register_blueprint(social_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(gamification_bp)
    app.register_blueprint(integration_bp)
    app.register_blueprint(health_bp)

    # ── Event bus: subscribers + after-commit dispatcher ─────────────────
    from ideahub.services.event_bus import bus, dispatcher, register_default_subscribers
    from ideahub.services.realtime import broadcaster

    bus.clear()
    register_default_subscribers(bus)
    dispatcher.init_app(app)
    broadcaster.init_app(app)

    # ── Error handlers ───────────────────────────────────────────────────
    register_error_handlers(app)

    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.BAD_REQUEST, "Method not allowed", status=405)

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error(E.BAD_REQUEST, "Too many requests", status=429,
                         details={"retry_after": e.description})

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-badges")
    @click.option("--tenant-id", type=int, default=None, help="Seed a tenant catalogue instead of the global one.")
    def seed_badges_cmd(tenant_id):
        """Seed the default badge catalogue."""
        from ideahub.services.reward_engine import seed_default_badges
        count = seed_default_badges(tenant_id)
        db.session.commit()
        click.echo(f"Seeded {count} new badges.")

    @app.cli.command("dispatch-events")
    @click.option("--limit", type=int, default=None, help="Maximum number of events to process.")
    def dispatch_events_cmd(limit):
        """Deliver pending outbox events."""
        processed = bus.dispatch_pending(limit=limit)
        click.echo(f"Dispatched {processed} events.")

    @app.cli.command("create-tenant")
    @click.argument("name")
    @click.argument("subdomain")
    @click.option("--domain", default=None, help="Custom domain, e.g. ideas.acme.com")
    def create_tenant_cmd(name, subdomain, domain):
        """Create a tenant."""
        from ideahub.models.auth import Tenant
        tenant = Tenant(name=name, subdomain=subdomain.lower(), domain=domain, is_active=True)
        db.session.add(tenant)
        db.session.commit()
        click.echo(f"Created tenant {tenant.id} ({tenant.subdomain}).")

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
