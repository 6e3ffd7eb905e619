"""Exception hierarchy for the tenant-context and authorization core.

Every error carries a machine-readable ``code`` and the HTTP status the API
layer maps it to. Only ``InternalResolutionError`` is an incident; the rest
are expected outcomes handed back to the caller.
"""

from __future__ import annotations

from typing import Any


class CaseflowError(Exception):
    """Base exception for all caseflow errors."""

    code = "caseflow_error"
    status_code = 400
    default_message = "Request could not be completed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class NotAuthenticatedError(CaseflowError):
    """Raised when no verified identity accompanies the request."""

    code = "not_authenticated"
    status_code = 401
    default_message = "Authentication required."


class NoOrganizationError(CaseflowError):
    """Raised when a user has no usable organization membership.

    Callers treat this as "onboarding incomplete", not as a failure.
    """

    code = "onboarding_incomplete"
    status_code = 409
    default_message = "You are not a member of any active organization yet."

    def __init__(self, user_id: str, message: str | None = None) -> None:
        self.user_id = user_id
        super().__init__(message)


class AccessDeniedError(CaseflowError):
    """Raised when a membership, role or permission check fails."""

    code = "access_denied"
    status_code = 403
    default_message = "You do not have permission to perform this action."

    def __init__(self, message: str | None = None, *, required: list[str] | None = None) -> None:
        self.required = list(required or [])
        super().__init__(message)


class OrganizationInactiveError(CaseflowError):
    """Raised when the target organization exists but has been deactivated."""

    code = "organization_inactive"
    status_code = 409
    default_message = "This organization is no longer active."

    def __init__(self, organization_id: str, message: str | None = None) -> None:
        self.organization_id = organization_id
        super().__init__(message)


class NotFoundError(CaseflowError):
    """Raised when a referenced user, organization, role or permission is missing."""

    code = "not_found"
    status_code = 404
    default_message = "Resource not found."

    def __init__(self, entity: str, entity_id: str, message: str | None = None) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(message or f"{entity} not found")


class ConflictError(CaseflowError):
    """Raised when a uniqueness rule would be violated (org code, membership, admin email)."""

    code = "conflict"
    status_code = 409
    default_message = "Resource already exists."


class OrganizationHierarchyError(CaseflowError):
    """Raised when a parent assignment would create a cycle in the organization forest."""

    code = "organization_hierarchy_invalid"
    status_code = 422
    default_message = "Invalid organization hierarchy."


class InternalResolutionError(CaseflowError):
    """Raised when the store is unavailable or referential integrity is broken.

    ``context`` is for logs only and never reaches the client.
    """

    code = "internal_error"
    status_code = 500
    default_message = "Something went wrong while checking your access."

    def __init__(self, message: str | None = None, **context: Any) -> None:
        self.context = context
        super().__init__(message)
