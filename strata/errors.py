"""Error kinds raised by strata.

Every error derives from :class:`StrataError`. Engine failures are wrapped in
:class:`EngineError` with the original exception chained as ``__cause__``.
"""

from __future__ import annotations

from typing import Any, Optional


class StrataError(RuntimeError):
    """Base class for all strata errors."""


class NotFoundError(StrataError):
    """Raised when a lookup that must succeed matches no row."""

    def __init__(self, model: str, detail: str = "") -> None:
        message = f"{model} not found"
        if detail:
            message += f" ({detail})"
        super().__init__(message)
        self.model = model
        self.detail = detail


class ConfigurationError(StrataError):
    """Raised for invalid declarations or misuse of the API."""


class RelationNotDeclaredError(ConfigurationError):
    """Raised when a relation name is not declared on a model."""

    def __init__(self, model: str, relation: str) -> None:
        super().__init__(f"relation '{relation}' is not declared on {model}")
        self.model = model
        self.relation = relation


class RelationNotLoadedError(ConfigurationError, AttributeError):
    """Raised when reading a declared relation that was not eager-loaded."""

    def __init__(self, model: str, relation: str) -> None:
        super().__init__(
            f"relation '{relation}' on {model} was not loaded; use with_('{relation}')"
        )
        self.model = model
        self.relation = relation


class MissingIdentityError(ConfigurationError):
    """Raised when an operation needs a primary key the model does not carry."""


class UnregisteredAdapterError(ConfigurationError):
    """Raised when no adapter is registered under the requested name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"no adapter registered under '{name}'")
        self.name = name


class EngineError(StrataError):
    """Opaque failure reported by the backing engine.

    ``operation``, ``model`` and ``sql`` are diagnostic context; they may be
    filled in as the error travels up through the builder.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: Optional[str] = None,
        model: Optional[str] = None,
        sql: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.model = model
        self.sql = sql

    def annotate(self, *, operation: Optional[str] = None, model: Optional[str] = None) -> None:
        """Fill in missing context without overwriting what is already set."""
        if self.operation is None:
            self.operation = operation
        if self.model is None:
            self.model = model

    def __str__(self) -> str:
        context = []
        if self.operation:
            context.append(f"operation={self.operation}")
        if self.model:
            context.append(f"model={self.model}")
        if self.sql:
            summary = " ".join(self.sql.split())
            if len(summary) > 120:
                summary = summary[:117] + "..."
            context.append(f"sql={summary}")
        if not context:
            return self.message
        return f"{self.message} [{', '.join(context)}]"


class ConstraintError(EngineError):
    """Raised when the engine rejects a write for an integrity violation."""


class PartialBatchError(EngineError):
    """Raised when one chunk of a batched insert fails.

    ``committed`` counts the records persisted by earlier chunks and
    ``failed_batch`` is the zero-based index of the chunk that failed.
    """

    def __init__(
        self,
        message: str,
        *,
        committed: int,
        failed_batch: int,
        model: Optional[str] = None,
    ) -> None:
        super().__init__(message, operation="create_in_batches", model=model)
        self.committed = committed
        self.failed_batch = failed_batch


class QueryCancelledError(StrataError):
    """Raised when the execution context is cancelled during an operation."""


class DeadlineExceededError(QueryCancelledError):
    """Raised when the execution context deadline passes during an operation."""


class ConnectionClosedError(StrataError):
    """Raised when a closed or out-of-scope connection is used."""


class RollbackError(StrataError):
    """Raised when rolling back after a failure fails too.

    Both the error that triggered the rollback and the rollback failure are
    kept.
    """

    def __init__(self, original: BaseException, rollback_error: BaseException) -> None:
        super().__init__(
            f"rollback failed ({rollback_error}) after error: {original}"
        )
        self.original = original
        self.rollback_error = rollback_error


class MigrationError(StrataError):
    """Raised when a migration cannot be loaded or applied."""


class IrreversibleMigrationError(MigrationError):
    """Raised when reverting a migration that has no down script."""

    def __init__(self, version: str) -> None:
        super().__init__(f"migration {version} has no down script")
        self.version = version


class MigrationStateError(MigrationError):
    """Raised when recorded migration state violates the ordering rules."""


class HarnessError(StrataError):
    """Raised when the test harness cannot provision or release a database."""

    def __init__(self, message: str, *, errors: tuple[Any, ...] = ()) -> None:
        super().__init__(message)
        self.errors = errors
