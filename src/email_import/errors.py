"""
Custom exceptions and error handling for the email import pipeline.

Provides:
- Typed exception hierarchy for different failure modes
- Known source-error causes that map onto HTTP responses
- Transient error classification for in-place stage retries
- Partial success handling for per-header batches
"""

from dataclasses import dataclass, field
from typing import Any

import httpx
from sqlalchemy import exc as sa_exc


class EmailImportError(Exception):
    """Base exception for all email import errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            return f"{self.message} | context={self.context}"
        return self.message


# =============================================================================
# Import Source Errors
# =============================================================================


class ImportSourceError(EmailImportError):
    """
    Error locating or authorizing the message being imported.

    Every subclass carries a ``cause`` drawn from KNOWN_SOURCE_ERROR_CAUSES,
    which the API layer turns into a status code.
    """

    cause: str = 'unknown-error'


class ImportUnauthorizedError(ImportSourceError):
    """Caller is not allowed to import (or continue importing) this message."""

    cause = 'unauthorized'


class InvalidImportArgumentsError(ImportSourceError):
    """Provider name or provider message id missing or malformed."""

    cause = 'invalid-args'


class UnsupportedProviderError(InvalidImportArgumentsError):
    """No stage managers are registered for the requested provider."""

    pass


class ProviderError(ImportSourceError):
    """The mail provider returned an unexpected failure."""

    cause = 'gmail-failure'


class EmailNotFoundError(ImportSourceError):
    """The provider has no message with the requested id."""

    cause = 'email-not-found'


class SourceNotFoundError(ImportSourceError):
    """No staged copy and no provider copy of the message is available."""

    cause = 'source-not-found'


class EmailExistsError(ImportSourceError):
    """The message has already been imported."""

    cause = 'email-exists'


KNOWN_SOURCE_ERROR_CAUSES = (
    'unauthorized',
    'invalid-args',
    'gmail-failure',
    'email-not-found',
    'source-not-found',
    'email-exists',
    'unknown-error',
)


def is_known_source_error(exc: BaseException) -> bool:
    """True if exc is an ImportSourceError with a recognised cause."""
    return isinstance(exc, ImportSourceError) and exc.cause in KNOWN_SOURCE_ERROR_CAUSES


# =============================================================================
# Client Errors
# =============================================================================


class ClientError(EmailImportError):
    """Base class for client-related errors."""

    pass


class DatabaseError(ClientError):
    """Error from Postgres operations."""

    pass


class DatabaseConnectionError(DatabaseError):
    """Failed to connect to (or lost the connection to) Postgres."""

    pass


class DatabaseQueryError(DatabaseError):
    """Error executing a SQL statement."""

    pass


class DatabaseConstraintError(DatabaseError):
    """Constraint violation (e.g. duplicate unique key)."""

    pass


# =============================================================================
# Stage Errors
# =============================================================================


class ImportStageError(EmailImportError):
    """Base class for stage-manager errors."""

    pass


class StageTransactionError(ImportStageError):
    """begin/commit/rollback called out of order."""

    pass


class StageNotProgressingError(ImportStageError):
    """A stage was reported again more times than the retry limit allows."""

    pass


class DataIntegrityError(ImportStageError):
    """Persisted data did not match what the stage expected."""

    pass


class TransientImportError(ImportStageError):
    """A stage failure that may succeed if the stage is run again."""

    pass


class ImportRollbackError(ImportStageError):
    """Rolling back a failed stage failed as well; carries both errors."""

    def __init__(
        self,
        message: str,
        errors: list[BaseException],
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, context=context)
        self.errors = errors

    def __str__(self) -> str:
        inner = '; '.join(f"{type(e).__name__}: {e}" for e in self.errors)
        return f"{super().__str__()} [{inner}]"


# =============================================================================
# Partial Success Handling
# =============================================================================


@dataclass
class ItemResult:
    """Result for a single item in a batch operation."""

    item_id: str | None
    success: bool
    error: BaseException | None = None
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class PartialSuccessResult:
    """
    Result of a batch operation that may partially succeed.

    The header stage stores every header of a message before
    deciding whether the stage failed, so the log carries every failure
    instead of only the first.
    """

    succeeded: list[ItemResult] = field(default_factory=list)
    failed: list[ItemResult] = field(default_factory=list)
    skipped: list[ItemResult] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def failure_count(self) -> int:
        return len(self.failed)

    @property
    def total_count(self) -> int:
        return self.success_count + self.failure_count + len(self.skipped)

    @property
    def all_succeeded(self) -> bool:
        return self.failure_count == 0

    def add_success(
        self,
        item_id: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        """Record a successful item."""
        self.succeeded.append(
            ItemResult(item_id=item_id, success=True, data=data or {})
        )

    def add_failure(
        self,
        error: BaseException,
        item_id: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        """Record a failed item."""
        self.failed.append(
            ItemResult(item_id=item_id, success=False, error=error, data=data or {})
        )

    def add_skipped(self, item_id: str | None = None) -> None:
        """Record an item that was deliberately not processed."""
        self.skipped.append(ItemResult(item_id=item_id, success=True))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'success_count': self.success_count,
            'failure_count': self.failure_count,
            'skipped_count': len(self.skipped),
            'total_count': self.total_count,
            'all_succeeded': self.all_succeeded,
            'failed_ids': [r.item_id for r in self.failed if r.item_id],
            'errors': [
                {'item_id': r.item_id, 'error': str(r.error)}
                for r in self.failed
                if r.error
            ],
        }


# =============================================================================
# Error Handling Utilities
# =============================================================================


def wrap_database_error(exc: Exception, context: dict[str, Any] | None = None) -> DatabaseError:
    """
    Wrap a SQLAlchemy / driver exception in our typed error hierarchy.

    Args:
        exc: The original exception
        context: Additional context for debugging

    Returns:
        Typed DatabaseError subclass
    """
    error_str = str(exc).lower()
    ctx = context or {}
    ctx['original_error'] = str(exc)
    ctx['error_type'] = type(exc).__name__

    if isinstance(exc, sa_exc.OperationalError) or 'connection' in error_str:
        return DatabaseConnectionError(
            f"Postgres connection failed: {exc}",
            context=ctx,
        )
    elif isinstance(exc, sa_exc.IntegrityError) or 'unique' in error_str or 'duplicate' in error_str:
        return DatabaseConstraintError(
            f"Postgres constraint violation: {exc}",
            context=ctx,
        )
    else:
        return DatabaseQueryError(
            f"Postgres query error: {exc}",
            context=ctx,
        )


def is_transient_error(exc: BaseException) -> bool:
    """
    True if a stage that raised exc may be rolled back and run again.

    Connection-level failures (database or provider transport) are transient;
    data, authorization and constraint failures are not.
    """
    if isinstance(exc, (TransientImportError, DatabaseConnectionError)):
        return True
    if isinstance(exc, ImportRollbackError):
        return False
    if isinstance(exc, sa_exc.OperationalError):
        return True
    if isinstance(exc, sa_exc.DBAPIError) and exc.connection_invalidated:
        return True
    if isinstance(exc, httpx.TransportError):
        return True
    return False
