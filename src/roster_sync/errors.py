"""Error taxonomy shared by the storage, sync, audit and facade layers."""

from __future__ import annotations


class RosterSyncError(Exception):
    """Base class for all errors raised by this package."""


class DecryptionError(RosterSyncError):
    """A stored blob cannot be read with the supplied key.

    Callers treat the cache entry as unusable and fall back to a remote fetch.
    """


class TransientNetworkError(RosterSyncError):
    """Offline, timeout or connection refused. Always retried later."""


class PermanentWriteError(RosterSyncError):
    """The remote store rejected a write for semantic reasons (validation, conflict)."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class NotRevertibleError(RosterSyncError):
    """An audit log cannot be reverted (unsupported action, missing data, already reverted)."""


class PermissionDeniedError(RosterSyncError):
    """The acting user's role does not allow the requested privileged operation."""


class NotAuthenticatedError(RosterSyncError):
    """No authenticated session is available."""


class EntityValidationError(RosterSyncError, ValueError):
    """A record failed client-side validation before any write was attempted."""
