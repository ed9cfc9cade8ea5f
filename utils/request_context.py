"""Propagate the caller's organization and user through the call stack using contextvars."""

from contextlib import contextmanager
from contextvars import ContextVar
from uuid import UUID

_current_organization_id: ContextVar[UUID | None] = ContextVar("current_organization_id", default=None)
_current_user_id: ContextVar[UUID | None] = ContextVar("current_user_id", default=None)


def get_current_organization_id() -> UUID:
    """
    Get current organization ID from context.

    Raises RuntimeError if no organization context is set. Organization-scoped
    code running outside an authenticated request or a job loop is a bug.
    """
    organization_id = _current_organization_id.get()
    if organization_id is None:
        raise RuntimeError(
            "No organization context set. This usually means you're calling "
            "organization-scoped code outside of an authenticated request."
        )
    return organization_id


def get_current_user_id() -> UUID | None:
    """Current user ID, or None when running as a system job."""
    return _current_user_id.get()


def set_request_context(organization_id: UUID, user_id: UUID | None = None) -> None:
    """
    Set organization and user for the current request.

    Called by auth middleware after the identity has been verified.
    """
    _current_organization_id.set(organization_id)
    _current_user_id.set(user_id)


def clear_request_context() -> None:
    """
    Clear organization and user context.

    Must be called in a finally block to prevent context leakage.
    """
    _current_organization_id.set(None)
    _current_user_id.set(None)


@contextmanager
def organization_context(organization_id: UUID, user_id: UUID | None = None):
    """
    Temporarily act on behalf of an organization.

    Used by tests and by the recurrence scheduler, which walks parents that
    belong to many organizations.

    Example:
        with organization_context(invoice.organization_id):
            invoice_service.create(data)
    """
    previous_org = _current_organization_id.get()
    previous_user = _current_user_id.get()
    set_request_context(organization_id, user_id)
    try:
        yield
    finally:
        _current_organization_id.set(previous_org)
        _current_user_id.set(previous_user)
