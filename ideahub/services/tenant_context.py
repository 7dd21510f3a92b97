"""
TenantContext - explicit tenant scope passed into every service call.

Resolution (``resolve_tenant``):
  1. exact custom-domain match on an active tenant
  2. subdomain match (first label of a host with 3+ labels, not "www")
  3. the authenticated user's own tenant

A resolved tenant must be active and not past an unpaid trial; a user from a
different tenant is refused unless they are a platform administrator.

Services never read ``flask.g``: the middleware builds one context per
request and hands it to the service, and event subscribers build their own
with ``TenantContext.system(tenant_id)``.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from sqlalchemy import select

from ideahub.core.exceptions import (
    AccessDeniedError,
    NotFoundError,
    TenantExpiredError,
    TenantInactiveError,
    UnauthorizedError,
)
from ideahub.models import db
from ideahub.models.auth import Tenant, User
from ideahub.services.helpers.scoped_queries import (
    get_scoped,
    get_scoped_or_none,
    scoped_select,
)

logger = logging.getLogger(__name__)


def subdomain_from_host(host):
    """``acme.ideahub.io:8080`` -> ``acme``; None for apex, ``www`` or bare hosts."""
    if not host:
        return None
    hostname = host.split(":", 1)[0].strip().lower().rstrip(".")
    labels = hostname.split(".")
    if len(labels) < 3:
        return None
    if labels[0] == "www" or not labels[0]:
        return None
    return labels[0]


def _find_tenant(host, user):
    hostname = host.split(":", 1)[0].strip().lower().rstrip(".") if host else ""

    if hostname:
        tenant = db.session.execute(
            select(Tenant).where(Tenant.domain == hostname, Tenant.is_active.is_(True))
        ).scalar_one_or_none()
        if tenant is not None:
            return tenant

    sub = subdomain_from_host(host)
    if sub:
        tenant = db.session.execute(
            select(Tenant).where(Tenant.subdomain == sub, Tenant.is_active.is_(True))
        ).scalar_one_or_none()
        if tenant is not None:
            return tenant

    if user is not None:
        return db.session.get(Tenant, user.tenant_id)
    return None


def resolve_tenant(host, user=None, now=None):
    """Resolve the tenant a request addresses and validate the caller against it.

    Raises:
        NotFoundError: no tenant matches.
        TenantInactiveError / TenantExpiredError: tenant cannot be used.
        AccessDeniedError: user belongs to another tenant.
    """
    tenant = _find_tenant(host, user)
    if tenant is None:
        raise NotFoundError("Tenant")

    if not tenant.is_active:
        logger.warning("Tenant %s is deactivated", tenant.id, extra={"tenant_id": tenant.id})
        raise TenantInactiveError("Tenant account is deactivated")

    if tenant.has_expired(now or datetime.now(timezone.utc)):
        logger.info("Tenant %s trial expired", tenant.id, extra={"tenant_id": tenant.id})
        raise TenantExpiredError("Tenant trial has expired")

    if user is not None and user.tenant_id != tenant.id and not user.is_platform_admin:
        logger.warning(
            "User %s from tenant %s tried to access tenant %s",
            user.id, user.tenant_id, tenant.id,
            extra={"tenant_id": tenant.id, "user_id": user.id},
        )
        raise AccessDeniedError("You do not have access to this tenant")

    return tenant


@dataclass(frozen=True)
class TenantContext:
    """Scope for one unit of work.

    ``cross_tenant=True`` contexts skip the tenant filter; they only come from
    ``unscoped()`` and are always logged.
    """

    tenant_id: int
    tenant: Tenant | None = field(default=None, compare=False, repr=False)
    user: User | None = field(default=None, compare=False, repr=False)
    cross_tenant: bool = False

    # ── Constructors ──────────────────────────────────────────────────────

    @classmethod
    def for_user(cls, user, tenant=None):
        return cls(tenant_id=tenant.id if tenant else user.tenant_id, tenant=tenant, user=user)

    @classmethod
    def system(cls, tenant_id):
        """Context for background work (event subscribers, CLI); no acting user."""
        return cls(tenant_id=tenant_id)

    @classmethod
    def from_request(cls, host, user=None):
        tenant = resolve_tenant(host, user)
        return cls(tenant_id=tenant.id, tenant=tenant, user=user)

    # ── Actor ─────────────────────────────────────────────────────────────

    @property
    def user_id(self):
        return self.user.id if self.user is not None else None

    def require_user(self):
        if self.user is None:
            raise UnauthorizedError("Authentication required")
        return self.user

    # ── Scoped repository surface ─────────────────────────────────────────

    @property
    def _scope(self):
        return None if self.cross_tenant else self.tenant_id

    def select(self, model):
        return scoped_select(model, tenant_id=self._scope)

    def get(self, model, pk, *, for_update=False):
        return get_scoped(model, pk, tenant_id=self._scope, for_update=for_update)

    def get_or_none(self, model, pk):
        return get_scoped_or_none(model, pk, tenant_id=self._scope)

    def add(self, obj):
        """Add a tenant-owned row, stamping tenant_id when unset."""
        current = getattr(obj, "tenant_id", None)
        if current is None:
            obj.tenant_id = self.tenant_id
        elif current != self.tenant_id and not self.cross_tenant:
            raise AccessDeniedError("Cannot write a row owned by another tenant")
        db.session.add(obj)
        return obj

    def unscoped(self, reason):
        """Audited cross-tenant view, platform administrators only."""
        if self.user is None or not self.user.is_platform_admin:
            logger.warning(
                "Unscoped access refused: %s", reason,
                extra={"tenant_id": self.tenant_id, "user_id": self.user_id},
            )
            raise AccessDeniedError("Cross-tenant access requires platform administrator rights")
        logger.warning(
            "Unscoped access granted: %s", reason,
            extra={"tenant_id": self.tenant_id, "user_id": self.user_id},
        )
        return replace(self, cross_tenant=True)
