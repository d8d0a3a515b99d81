"""
Error taxonomy for the Search Console sync engine.

Every failure that can be recorded against a property or connection maps to
one ``SyncErrorKind`` so callers branch on the kind, never on message text.
"""

from enum import Enum
from typing import Optional


class SyncErrorKind(str, Enum):
    """Closed set of failure kinds recorded in sync results."""

    AUTH = "auth"
    TRANSIENT = "transient"
    AUTH_FAILURE = "auth_failure"
    NOT_FOUND = "not_found"
    INVALID_REQUEST = "invalid_request"
    PERSIST = "persist"
    INTERNAL = "internal"


class QueryErrorKind(str, Enum):
    """Classification of a failed search analytics request."""

    TRANSIENT = "transient"
    AUTH_FAILURE = "auth_failure"
    NOT_FOUND = "not_found"
    INVALID_REQUEST = "invalid_request"


class SyncError(Exception):
    """Base class for errors that are recorded in a sync result."""

    kind: SyncErrorKind = SyncErrorKind.INTERNAL


class GSCAuthError(SyncError):
    """Raised when a usable access token cannot be obtained."""

    kind = SyncErrorKind.AUTH


class GSCQueryError(SyncError):
    """Raised when a Search Console API request fails."""

    def __init__(
        self,
        message: str,
        kind: QueryErrorKind = QueryErrorKind.TRANSIENT,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.query_kind = kind
        self.status_code = status_code
        self.kind = SyncErrorKind(kind.value)

    @property
    def retryable(self) -> bool:
        """Only transient failures are worth retrying on a later run."""
        return self.query_kind == QueryErrorKind.TRANSIENT


class PersistError(SyncError):
    """Raised when aggregated results cannot be written."""

    kind = SyncErrorKind.PERSIST


class SyncHarnessError(Exception):
    """Raised when the batch itself cannot run (e.g. connections can't be loaded)."""


def error_kind_of(exc: BaseException) -> SyncErrorKind:
    """Map any exception to the kind recorded in a sync result."""
    if isinstance(exc, SyncError):
        return exc.kind
    return SyncErrorKind.INTERNAL
