"""
Tenant-scoped query helpers.

Every get-by-id in IdeaHub goes through these helpers (usually via
``TenantContext.get``) instead of ``db.session.get(Model, pk)``; a direct
get bypasses tenant isolation.

Usage:
    idea = get_scoped(Idea, idea_id, tenant_id=ctx.tenant_id)
    idea = get_scoped(Idea, idea_id, tenant_id=ctx.tenant_id, for_update=True)
    stmt = scoped_select(Notification, tenant_id=ctx.tenant_id)

A model without a ``tenant_id`` column is refused at call time so the bug
surfaces in tests instead of silently returning cross-tenant rows.
"""

import logging

from sqlalchemy import select

from ideahub.core.exceptions import NotFoundError
from ideahub.models import db

logger = logging.getLogger(__name__)


def _require_tenant_column(model):
    if not hasattr(model, "tenant_id"):
        raise ValueError(
            f"{model.__name__} has no tenant_id column. "
            "Refusing to perform an unscoped lookup."
        )


def scoped_select(model, *, tenant_id: int | None):
    """``select(model)`` pre-filtered by tenant.

    ``tenant_id=None`` is only passed by audited cross-tenant contexts.
    """
    _require_tenant_column(model)
    stmt = select(model)
    if tenant_id is not None:
        stmt = stmt.where(model.tenant_id == tenant_id)
    return stmt


def get_scoped(model, pk: int, *, tenant_id: int | None, for_update: bool = False):
    """Fetch a single entity by PK within a tenant.

    Cross-tenant access is indistinguishable from a missing record: both
    raise NotFoundError, so a 404 never confirms another tenant's row exists.

    Args:
        model: Tenant-owned model class.
        pk: Primary key value.
        tenant_id: Enforced scope; None only for audited unscoped contexts.
        for_update: Lock the row (``SELECT ... FOR UPDATE``) for the rest of
            the transaction.

    Raises:
        ValueError: model has no tenant_id column.
        NotFoundError: entity missing or owned by another tenant.
    """
    stmt = scoped_select(model, tenant_id=tenant_id).where(model.id == pk)
    if for_update:
        stmt = stmt.with_for_update()

    result = db.session.execute(stmt).scalar_one_or_none()

    if result is None:
        logger.debug(
            "get_scoped: %s id=%s not found in tenant %s",
            model.__name__, pk, tenant_id,
        )
        raise NotFoundError(resource=model.__name__, resource_id=pk, tenant_id=tenant_id)

    return result


def get_scoped_or_none(model, pk: int, *, tenant_id: int | None):
    """Same as get_scoped but returns None instead of raising NotFoundError."""
    try:
        return get_scoped(model, pk, tenant_id=tenant_id)
    except NotFoundError:
        return None
