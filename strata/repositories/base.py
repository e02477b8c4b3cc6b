"""Abstract repository interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Generic, Iterable, Mapping, Optional, TypeVar, Union

from ..domain.model import Model

if TYPE_CHECKING:
    from ..domain.context import Context
    from ..query.builder import QueryBuilder

M = TypeVar("M", bound=Model)


class Repository(ABC, Generic[M]):
    """Per-model facade over a connection.

    Clause methods return the repository itself so calls can be chained; every
    other method resets the accumulated clauses when it returns or fails.
    """

    # -- clauses -------------------------------------------------------------

    @abstractmethod
    def with_(self, *relations: str) -> Repository[M]:
        """Eager-load ``relations`` on the next read."""

    @abstractmethod
    def where(self, condition: Any, *args: Any) -> Repository[M]:
        """AND a condition into the next query."""

    @abstractmethod
    def or_where(self, condition: Any, *args: Any) -> Repository[M]:
        """OR a condition group into the next query."""

    @abstractmethod
    def unscoped(self) -> Repository[M]:
        """Include soft-deleted rows in the next query."""

    @abstractmethod
    def limit(self, count: int) -> Repository[M]:
        pass

    @abstractmethod
    def offset(self, count: int) -> Repository[M]:
        pass

    @abstractmethod
    def order_by(self, column: str, direction: str = "ASC") -> Repository[M]:
        pass

    # -- reads -----------------------------------------------------------------

    @abstractmethod
    def find(self, ctx: Context, identity: Any) -> Optional[M]:
        """Return the model with primary key ``identity`` if present."""

    @abstractmethod
    def find_or_fail(self, ctx: Context, identity: Any) -> M:
        """Like :meth:`find` but raise :class:`~strata.errors.NotFoundError` on a miss."""

    @abstractmethod
    def first(self, ctx: Context) -> Optional[M]:
        """Return the first model matching the accumulated clauses."""

    @abstractmethod
    def first_or_fail(self, ctx: Context) -> M:
        pass

    @abstractmethod
    def get(self, ctx: Context) -> list[M]:
        """Return every model matching the accumulated clauses."""

    @abstractmethod
    def count(self, ctx: Context) -> int:
        pass

    @abstractmethod
    def exists(self, ctx: Context) -> bool:
        pass

    @abstractmethod
    def pluck(self, ctx: Context, column: str) -> list[Any]:
        """Return the values of ``column`` for every matching row."""

    # -- writes ----------------------------------------------------------------

    @abstractmethod
    def create(self, ctx: Context, *models: M) -> list[M]:
        """Persist new models and assign their generated identity."""

    @abstractmethod
    def create_in_batches(self, ctx: Context, models: Iterable[M], batch_size: int) -> list[M]:
        """Persist ``models`` with one insert per chunk of ``batch_size``."""

    @abstractmethod
    def update(self, ctx: Context, *models: M) -> None:
        """Write every column of models that carry a primary key."""

    @abstractmethod
    def delete(self, ctx: Context, *models: M) -> None:
        """Soft delete when the model supports it, remove the rows otherwise."""

    @abstractmethod
    def force_delete(self, ctx: Context, *models: M) -> None:
        """Remove the rows regardless of soft-delete support."""

    @abstractmethod
    def first_or_create(
        self, ctx: Context, condition: M, *create: Union[M, Mapping[str, Any]]
    ) -> M:
        """Return the first match of ``condition`` or persist a new record."""

    @abstractmethod
    def update_or_create(
        self, ctx: Context, condition: M, values: Union[M, Mapping[str, Any]]
    ) -> M:
        """Apply ``values`` to the first match of ``condition`` or to a new record."""

    @abstractmethod
    def query_builder(self) -> QueryBuilder[M]:
        """Return a fresh builder bound to the same connection."""
