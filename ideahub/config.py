"""
IdeaHub configuration, selected by ``APP_ENV``.

    app.config.from_object(config[os.getenv("APP_ENV", "development")]())

Every tunable of the event bus, reward dispatch, integrations and mail can be
overridden from the environment.
"""

import os
import secrets

INSTANCE_DIR = os.path.join(os.path.abspath(os.path.dirname(os.path.dirname(__file__))), "instance")

POSTGRES_POOL = {
    "pool_pre_ping": True,
    "pool_size": 5,
    "max_overflow": 10,
    "pool_recycle": 300,
    "pool_timeout": 20,
}


def _env_int(name, default):
    return int(os.getenv(name, str(default)))


def _database_url():
    """DATABASE_URL normalised for SQLAlchemy 2 (``postgres://`` is rejected)."""
    url = os.getenv("DATABASE_URL", "")
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    return url or None


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Rate-limit storage; "memory://" keeps limits per process
    REDIS_URL = os.getenv("REDIS_URL", "memory://")
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Used to build links in mail and integration messages
    APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:5000")

    # Without MAIL_SERVER, mail is written to the email log only
    MAIL_SERVER = os.getenv("MAIL_SERVER")
    MAIL_PORT = _env_int("MAIL_PORT", 587)
    MAIL_USE_TLS = os.getenv("MAIL_USE_TLS", "true").lower() == "true"
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", "noreply@ideahub.local")

    # "async" hands committed events to a worker pool, "sync" dispatches inline
    EVENT_DISPATCH_MODE = os.getenv("EVENT_DISPATCH_MODE", "async")
    EVENT_WORKER_THREADS = _env_int("EVENT_WORKER_THREADS", 4)
    EVENT_MAX_ATTEMPTS = _env_int("EVENT_MAX_ATTEMPTS", 5)

    INTEGRATION_TIMEOUT_SECONDS = float(os.getenv("INTEGRATION_TIMEOUT_SECONDS", "10"))
    INTEGRATION_RETRY_MAX = _env_int("INTEGRATION_RETRY_MAX", 3)

    REALTIME_HISTORY_SIZE = _env_int("REALTIME_HISTORY_SIZE", 100)
    REALTIME_MAX_CHANNELS = _env_int("REALTIME_MAX_CHANNELS", 10000)


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url() or f"sqlite:///{os.path.join(INSTANCE_DIR, 'ideahub_dev.db')}"
    SQLALCHEMY_ENGINE_OPTIONS = POSTGRES_POOL if _database_url() else {}
    EVENT_DISPATCH_MODE = os.getenv("EVENT_DISPATCH_MODE", "sync")


class TestingConfig(Config):
    TESTING = True
    # In-memory SQLite uses a StaticPool, which takes no pool sizing options
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
    RATELIMIT_ENABLED = False
    EVENT_DISPATCH_MODE = "sync"
    EVENT_MAX_ATTEMPTS = 3
    INTEGRATION_RETRY_MAX = 1
    MAIL_SERVER = None
    LOG_LEVEL = "WARNING"


class ProductionConfig(Config):
    SQLALCHEMY_DATABASE_URI = _database_url()
    SQLALCHEMY_ENGINE_OPTIONS = {
        **POSTGRES_POOL,
        "connect_args": {"options": "-c statement_timeout=30000"},
    }
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
