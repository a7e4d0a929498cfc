"""Classification of remote write failures.

The engine never inspects backend error codes itself; it asks an injectable
``ErrorClassifier``. The default one understands HTTP statuses and PostgreSQL
SQLSTATE codes as surfaced by PostgREST.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable

from roster_sync.errors import TransientNetworkError
from roster_sync.remote.base import RemoteStoreError


class FailureKind(str, Enum):
    TRANSIENT = "transient"
    DUPLICATE = "duplicate"
    PERMANENT = "permanent"


ErrorClassifier = Callable[[BaseException], FailureKind]

UNIQUE_VIOLATION = "23505"
_TRANSIENT_STATUSES = frozenset({408, 425, 429})
_DUPLICATE_STATUSES = frozenset({409})


def default_classifier(exc: BaseException) -> FailureKind:
    """Unknown failures, undecryptable payloads included, are permanent."""
    if isinstance(exc, TransientNetworkError):
        return FailureKind.TRANSIENT
    if isinstance(exc, RemoteStoreError):
        if exc.code == UNIQUE_VIOLATION:
            return FailureKind.DUPLICATE
        status = exc.status
        if status is None:
            return FailureKind.PERMANENT
        if status in _DUPLICATE_STATUSES:
            return FailureKind.DUPLICATE
        if status in _TRANSIENT_STATUSES or status >= 500:
            return FailureKind.TRANSIENT
        return FailureKind.PERMANENT
    return FailureKind.PERMANENT
