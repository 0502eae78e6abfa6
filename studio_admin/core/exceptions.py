"""
Domain exceptions shared across modules.
Validation-type errors subclass ValueError so generic handlers treat them as 400.
"""


class StudioAdminError(Exception):
    """Base class for domain errors."""


class ConflictError(StudioAdminError):
    """A concurrent writer or an existing row prevents the operation (409)."""


class NotFoundError(StudioAdminError, LookupError):
    """Referenced entity does not exist (404)."""


class ScopeError(StudioAdminError, PermissionError):
    """Caller is outside the tenant/affiliate scope of the resource (403)."""


class InvalidTransitionError(StudioAdminError, ValueError):
    """Closure status transition outside the allow-list."""


class ClosureConflictError(ConflictError):
    """Closure status changed underneath a conditional transition."""


class FrozenPlatformError(StudioAdminError, ValueError):
    """Value input targets a platform frozen for the current period."""


class AssignmentConflictError(ConflictError):
    """Room and jornada already held by another model."""


class InsufficientStockError(StudioAdminError, ValueError):
    pass


class InsufficientFundsError(StudioAdminError, ValueError):
    pass


class ChatLimitError(StudioAdminError):
    """Session exceeded its message or inactivity limit (429)."""


class RateSourceError(StudioAdminError):
    """An external FX source failed or returned unusable data."""
