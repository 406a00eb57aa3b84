"""
Error taxonomy for the work-unit history store.

Every failure the store surfaces derives from HistoryError so callers (CLI,
bootstrap code) can decide on messaging in one place. Errors carry a category
and metadata for structured logging. The store itself never retries.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class HistoryError(RuntimeError):
    """
    Base error for history store components. Carries metadata for structured logging.
    """

    category: str = "runtime"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        metadata: Optional[Dict[str, Any]] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        self.metadata = metadata or {}
        if retryable is not None:
            self.retryable = retryable


class HistoryOpenError(HistoryError):
    """Raised when a store cannot be opened (missing, locked, corrupt or unsupported shape)."""

    category = "io"


class HistoryMigrationError(HistoryError):
    """Raised when the schema upgrade fails; the store is left at its pre-upgrade state."""

    category = "migration"
    retryable = True


class QueryTranslationError(HistoryError, ValueError):
    """Raised when a query cannot be translated to SQL (unknown column, bad operator or value)."""

    category = "query"


class QueryLibraryError(HistoryError):
    """Raised when the saved-query file cannot be read or written."""

    category = "config"


class RepositoryStateError(HistoryError):
    """Raised when an operation is invalid for the repository's current state."""

    category = "state"


class RepositoryNotConnectedError(RepositoryStateError):
    """Raised when an operation is attempted before a successful initialize()."""


class RepositoryClosedError(RepositoryStateError):
    """Raised when an operation is attempted after close()."""


class UpgradeRequiredError(RepositoryStateError):
    """Raised when writing to a store that still has the legacy table shape."""


__all__ = [
    "HistoryError",
    "HistoryOpenError",
    "HistoryMigrationError",
    "QueryTranslationError",
    "QueryLibraryError",
    "RepositoryStateError",
    "RepositoryNotConnectedError",
    "RepositoryClosedError",
    "UpgradeRequiredError",
]
