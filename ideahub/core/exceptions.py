"""
Platform-wide exception hierarchy.

Every service raises one of these. Each carries a stable machine-readable
``kind`` that the HTTP layer maps to a status code in one place
(``ideahub.utils.errors.register_error_handlers``).

Usage:
    from ideahub.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Idea", resource_id=42)
    raise ValidationError("decision must be approved or rejected")
"""


class DomainError(Exception):
    """Base class for every failure a core operation can report.

    Args:
        message: Human-readable explanation, safe to return to the client.
        details: Optional structured payload for API responses.
    """

    kind = "domain_error"

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class TenantInactiveError(DomainError):
    """The resolved tenant has been deactivated."""

    kind = "tenant_inactive"


class TenantExpiredError(DomainError):
    """The tenant's trial ended and it never subscribed."""

    kind = "tenant_expired"


class AccessDeniedError(DomainError):
    """The caller does not belong to the tenant they are addressing,
    or asked for unscoped access without platform-admin rights."""

    kind = "access_denied"


class UnauthorizedError(DomainError):
    """The caller lacks the authority for this action (wrong role/tier,
    not the author, not the owner)."""

    kind = "unauthorized"


class InvalidIdeaStateError(DomainError):
    """A decision was attempted on an idea that is not pending."""

    kind = "invalid_idea_state"


class InvalidTransitionError(DomainError):
    """The requested state-machine transition is not allowed."""

    kind = "invalid_transition"

    def __init__(self, current: str, target: str, message: str | None = None) -> None:
        self.current = current
        self.target = target
        super().__init__(
            message or f"Cannot move idea from '{current}' to '{target}'",
            details={"current": current, "target": target},
        )


class AlreadyDecidedError(DomainError):
    """The approver already recorded a final decision at this level."""

    kind = "already_decided"


class NotFoundError(DomainError):
    """Raised when a requested resource does not exist within the given scope.

    Used for BOTH genuinely missing records AND cross-tenant access attempts,
    so a caller cannot probe for the existence of another tenant's rows.

    Args:
        resource: Human-readable entity name (e.g. "Idea", "Notification").
        resource_id: The PK that was looked up.
        tenant_id: The scope that was enforced. Logged, never returned.
    """

    kind = "not_found"

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        tenant_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.tenant_id = tenant_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(DomainError):
    """Input was well-formed but violated a business rule.

    Args:
        message: What failed.
        details: Optional field-level breakdown; keys are field names.
    """

    kind = "validation_error"
