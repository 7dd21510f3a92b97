"""
TenantModel - Abstract base class for tenant-scoped models.

All models that need tenant isolation inherit from TenantModel instead of
db.Model directly. This adds:
  - tenant_id FK column with index
  - tenant_composite_index() helper

Reads never go through ``Model.query`` directly; services build their
statements with ``TenantContext.select()`` / ``TenantContext.get()`` so the
tenant filter is applied in one audited place.
"""

from datetime import datetime, timezone

from ideahub.models import db


def utcnow():
    return datetime.now(timezone.utc)


class TenantModel(db.Model):
    """Abstract base for tenant-scoped tables."""
    __abstract__ = True

    tenant_id = db.Column(
        db.Integer,
        db.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    @classmethod
    def tenant_composite_index(cls, table_name, *extra_cols):
        """Build a (tenant_id, ...) composite index for ``__table_args__``."""
        name = f"ix_{table_name}_tenant_{'_'.join(extra_cols)}"
        cols = ("tenant_id",) + extra_cols
        return db.Index(name, *cols)


def iso(value):
    """Serialise an optional datetime for ``to_dict()`` payloads."""
    return value.isoformat() if value else None


def as_utc(value):
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
