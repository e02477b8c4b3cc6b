"""Engine-neutral connection and adapter interfaces.

Adapters open :class:`Connection` objects from a
:class:`~strata.config.settings.DatabaseConfig`. Everything above this layer
(builders, repositories, the migrator) talks to the engine through these
methods only.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional, Sequence, TypeVar

from ..domain.model import Model
from ..query.builder import QueryBuilder
from ..query.grammar import Grammar
from ..repositories.query_repository import QueryRepository

if TYPE_CHECKING:
    from ..config.settings import DatabaseConfig
    from ..domain.context import Context
    from ..infrastructure.ttl_cache import Cache

M = TypeVar("M", bound=Model)
T = TypeVar("T")


@dataclass(frozen=True)
class Result:
    """Outcome of a write statement."""

    rows_affected: int
    last_insert_id: Optional[int] = None


class Adapter(ABC):
    """Factory for connections to one storage engine."""

    @abstractmethod
    def name(self) -> str:
        """Registry name of the engine, e.g. ``"sqlite"``."""

    @abstractmethod
    def connect(self, config: DatabaseConfig) -> Connection:
        """Open a connection; ``config`` is never modified."""


class Connection(ABC):
    """Handle on a backing engine.

    Connections handed out by :meth:`transaction_scope` share the engine
    handle of their parent and are only valid inside the scope.
    """

    grammar: Grammar = Grammar()
    # Default entry lifetime for repository caches, in seconds
    cache_ttl: Optional[float] = None

    @abstractmethod
    def get_connection(self) -> Any:
        """Return the underlying engine handle."""

    @abstractmethod
    def ping(self, ctx: Context) -> None:
        """Raise when the engine is not reachable."""

    @abstractmethod
    def close(self) -> None:
        pass

    @abstractmethod
    def transaction_scope(self, ctx: Context) -> AbstractContextManager[Connection]:
        """Context manager yielding a transaction-scoped connection.

        A clean exit commits. Any exception rolls back and propagates
        unchanged; a failing rollback raises :class:`~strata.errors.RollbackError`.
        Scopes opened on a scoped connection nest through savepoints.
        """

    @abstractmethod
    def select(self, ctx: Context, sql: str, *args: Any) -> list[dict[str, Any]]:
        pass

    @abstractmethod
    def statement(self, ctx: Context, sql: str, *args: Any) -> Result:
        pass

    @abstractmethod
    def execute_script(self, ctx: Context, script: str) -> None:
        """Run a multi-statement script inside the current transaction, if any."""

    @abstractmethod
    def table_names(self, ctx: Context) -> list[str]:
        pass

    @abstractmethod
    def truncate(self, ctx: Context, *tables: str) -> None:
        """Remove every row from ``tables`` (all tables when none given)."""

    @abstractmethod
    def drop_all(self, ctx: Context) -> None:
        """Drop every schema object the engine lets us drop."""

    @property
    def in_transaction(self) -> bool:
        return False

    def transaction(self, ctx: Context, fn: Callable[[Connection], T]) -> T:
        """Run ``fn`` with a transaction-scoped connection and return its value."""
        with self.transaction_scope(ctx) as scoped:
            return fn(scoped)

    def insert(
        self,
        ctx: Context,
        table: str,
        rows: Sequence[Mapping[str, Any]],
        primary_key: str,
    ) -> list[Any]:
        """Insert ``rows`` and return their primary keys in order.

        Rows without a key get generated ones; those are assumed contiguous
        up to the engine's last insert id. Batches mixing rows with and without
        keys are inserted one row at a time inside a transaction.
        """
        if not rows:
            return []
        keyed = [_has_key(row, primary_key) for row in rows]
        if any(keyed) and not all(keyed):
            with self.transaction_scope(ctx) as scoped:
                return [scoped.insert(ctx, table, [row], primary_key)[0] for row in rows]

        generated = not keyed[0]
        columns = [c for c in rows[0] if not (generated and c == primary_key)]
        sql, args = self.grammar.compile_insert(
            table, columns, [[row.get(c) for c in columns] for row in rows]
        )
        result = self.statement(ctx, sql, *args)
        if not generated:
            return [row[primary_key] for row in rows]
        last = result.last_insert_id
        if last is None:
            return [None] * len(rows)
        first = last - len(rows) + 1
        return list(range(first, last + 1))

    def query(self, model: type[M]) -> QueryBuilder[M]:
        return QueryBuilder(model, self)

    def new_repository(
        self, model: type[M], cache: Optional[Cache] = None
    ) -> QueryRepository[M]:
        """Return the default repository for ``model`` bound to this connection."""
        return QueryRepository(model, self, cache=cache, cache_ttl=self.cache_ttl)

    def __enter__(self) -> Connection:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def _has_key(row: Mapping[str, Any], primary_key: str) -> bool:
    value = row.get(primary_key)
    return value is not None and value != "" and value != 0
