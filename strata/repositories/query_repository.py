"""Default repository implementation on top of :class:`QueryBuilder`."""

from __future__ import annotations

import copy
import dataclasses
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Optional, TypeVar, Union

from ..domain.model import Model
from ..errors import (
    ConfigurationError,
    EngineError,
    MissingIdentityError,
    NotFoundError,
    PartialBatchError,
)
from ..logging_config import CacheStats
from ..query.builder import QueryBuilder
from ..query.resolver import RelationshipResolver
from .base import Repository

if TYPE_CHECKING:
    from ..connection.base import Connection
    from ..domain.context import Context
    from ..infrastructure.ttl_cache import Cache

M = TypeVar("M", bound=Model)

logger = logging.getLogger(__name__)

# Cache lookups between two hit-rate log lines
CACHE_LOG_EVERY = 100


class QueryRepository(Repository[M]):
    """Repository backed by a :class:`QueryBuilder`.

    With a ``cache`` the repository serves primary-key ``find`` calls on a
    clause-free builder from the cache and invalidates entries it writes.

    Example:
        >>> users = connection.new_repository(User)          # doctest: +SKIP
        >>> ann = users.create(ctx, User(name="ann"))[0]     # doctest: +SKIP
        >>> users.where({"name": "ann"}).first(ctx).id == ann.id  # doctest: +SKIP
        True
    """

    def __init__(
        self,
        model: type[M],
        connection: Connection,
        *,
        cache: Optional[Cache] = None,
        cache_ttl: Optional[float] = None,
        resolver: Optional[RelationshipResolver] = None,
    ) -> None:
        self._model = model
        self._connection = connection
        self._resolver = resolver
        self._builder: QueryBuilder[M] = self.query_builder()
        self._cache = cache
        self._cache_ttl = cache_ttl
        self._stats = CacheStats(model.table_name()) if cache is not None else None
        self._lookups = 0

    @property
    def model(self) -> type[M]:
        return self._model

    @property
    def cache_stats(self) -> Optional[CacheStats]:
        return self._stats

    # -- clauses -------------------------------------------------------------

    def with_(self, *relations: str) -> QueryRepository[M]:
        self._builder.with_(*relations)
        return self

    def where(self, condition: Any, *args: Any) -> QueryRepository[M]:
        self._builder.where(condition, *args)
        return self

    def or_where(self, condition: Any, *args: Any) -> QueryRepository[M]:
        self._builder.or_where(condition, *args)
        return self

    def unscoped(self) -> QueryRepository[M]:
        self._builder.unscoped()
        return self

    def limit(self, count: int) -> QueryRepository[M]:
        self._builder.limit(count)
        return self

    def offset(self, count: int) -> QueryRepository[M]:
        self._builder.offset(count)
        return self

    def order_by(self, column: str, direction: str = "ASC") -> QueryRepository[M]:
        self._builder.order_by(column, direction)
        return self

    # -- reads -----------------------------------------------------------------

    def find(self, ctx: Context, identity: Any) -> Optional[M]:
        if self._cache is None or not self._builder.is_empty():
            found = self._builder.find(ctx, identity)
            return found[0] if found else None

        key = self._cache_key(identity)
        value, hit = self._cache.get(key)
        self._record_lookup(hit)
        if hit:
            return copy.deepcopy(value)
        found = self._builder.find(ctx, identity)
        if not found:
            return None
        self._cache.set(key, copy.deepcopy(found[0]), self._cache_ttl)
        return found[0]

    def find_or_fail(self, ctx: Context, identity: Any) -> M:
        model = self.find(ctx, identity)
        if model is None:
            raise NotFoundError(self._model.__name__, f"{self._model.primary_key()}={identity!r}")
        return model

    def first(self, ctx: Context) -> Optional[M]:
        return self._builder.first(ctx)

    def first_or_fail(self, ctx: Context) -> M:
        detail = self._builder.summary()
        model = self._builder.first(ctx)
        if model is None:
            raise NotFoundError(self._model.__name__, detail)
        return model

    def get(self, ctx: Context) -> list[M]:
        return self._builder.get(ctx)

    def count(self, ctx: Context) -> int:
        return self._builder.count(ctx)

    def exists(self, ctx: Context) -> bool:
        return self._builder.exists(ctx)

    def pluck(self, ctx: Context, column: str) -> list[Any]:
        return self._builder.pluck(ctx, column)

    # -- writes ----------------------------------------------------------------

    def create(self, ctx: Context, *models: M) -> list[M]:
        """Insert ``models`` in a single statement, so all or none persist."""
        return self._builder.create(ctx, *models)

    def create_in_batches(self, ctx: Context, models: Iterable[M], batch_size: int) -> list[M]:
        """Insert ``models`` one chunk of ``batch_size`` at a time.

        Each chunk is atomic. When chunk K fails the earlier chunks stay
        committed (unless the caller runs this inside a transaction) and
        :class:`PartialBatchError` reports how many records were persisted.
        """
        self._builder.reset()
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        records = list(models)
        committed = 0
        for index, start in enumerate(range(0, len(records), batch_size)):
            chunk = records[start : start + batch_size]
            try:
                self.query_builder().create(ctx, *chunk)
            except EngineError as exc:
                logger.warning(
                    "Batch insert failed",
                    extra={
                        "model": self._model.__name__,
                        "batch": index,
                        "committed": committed,
                    },
                )
                raise PartialBatchError(
                    f"batch {index} of {self._model.__name__} failed: {exc.message}",
                    committed=committed,
                    failed_batch=index,
                    model=self._model.__name__,
                ) from exc
            committed += len(chunk)
        return records

    def update(self, ctx: Context, *models: M) -> None:
        self._builder.reset()
        if not models:
            return
        self._require_identity(models, "update")
        if len(models) == 1:
            self._update_one(ctx, self._connection, models[0])
            return

        def run(scoped: Connection) -> None:
            for model in models:
                self._update_one(ctx, scoped, model)

        self._connection.transaction(ctx, run)

    def delete(self, ctx: Context, *models: M) -> None:
        self._builder.reset()
        if not models:
            return
        self._require_identity(models, "delete")
        pk = self._model.primary_key()
        soft = self._model.soft_delete_column()
        builder = self.query_builder().where_in(pk, [m.primary_key_value() for m in models])
        if soft:
            now = datetime.now(timezone.utc)
            builder.delete(ctx, deleted_at=now)
            for model in models:
                if getattr(model, soft) is None:
                    setattr(model, soft, now)
        else:
            builder.delete(ctx)
        self._invalidate(models)

    def force_delete(self, ctx: Context, *models: M) -> None:
        self._builder.reset()
        if not models:
            return
        self._require_identity(models, "force_delete")
        pk = self._model.primary_key()
        self.query_builder().where_in(pk, [m.primary_key_value() for m in models]).force_delete(ctx)
        self._invalidate(models)

    def first_or_create(
        self, ctx: Context, condition: M, *create: Union[M, Mapping[str, Any]]
    ) -> M:
        """Return the first row matching ``condition``'s non-zero fields.

        When none matches, a copy of ``condition`` merged with ``create`` is
        persisted. Lookup and insert share one transaction.
        """
        self._builder.reset()
        _require_condition(condition)

        def run(scoped: Connection) -> M:
            builder = self.query_builder(scoped)
            existing = builder.where(condition).first(ctx)
            if existing is not None:
                return existing
            record = dataclasses.replace(condition)
            for overrides in create:
                self._apply(record, overrides)
            builder.create(ctx, record)
            return record

        return self._connection.transaction(ctx, run)

    def update_or_create(
        self, ctx: Context, condition: M, values: Union[M, Mapping[str, Any]]
    ) -> M:
        """Apply ``values`` to the first match of ``condition`` and persist it.

        When nothing matches, a copy of ``condition`` with ``values`` applied
        is created instead.
        """
        self._builder.reset()
        _require_condition(condition)

        def run(scoped: Connection) -> M:
            builder = self.query_builder(scoped)
            existing = builder.where(condition).first(ctx)
            if existing is None:
                record = dataclasses.replace(condition)
                self._apply(record, values)
                builder.create(ctx, record)
                return record
            self._apply(existing, values)
            self._update_one(ctx, scoped, existing)
            return existing

        return self._connection.transaction(ctx, run)

    def query_builder(self, connection: Optional[Connection] = None) -> QueryBuilder[M]:
        return QueryBuilder(self._model, connection or self._connection, self._resolver)

    # -- internals -------------------------------------------------------------

    def _update_one(self, ctx: Context, connection: Connection, model: M) -> None:
        pk = self._model.primary_key()
        identity = model.primary_key_value()
        values = model.to_row()
        del values[pk]
        if "updated_at" in self._model.timestamp_columns():
            model.updated_at = datetime.now(timezone.utc)  # type: ignore[attr-defined]
            values["updated_at"] = model.updated_at  # type: ignore[attr-defined]
        affected = (
            self.query_builder(connection).unscoped().where({pk: identity}).update(ctx, values)
        )
        if affected == 0:
            raise NotFoundError(self._model.__name__, f"{pk}={identity!r}")
        self._invalidate([model])

    def _apply(self, record: M, values: Union[M, Mapping[str, Any]]) -> None:
        if isinstance(values, Model):
            values = values.non_zero_fields()
        columns = self._model.columns()
        for column, value in values.items():
            if column not in columns:
                raise ConfigurationError(f"{self._model.__name__} has no column '{column}'")
            setattr(record, column, value)

    def _require_identity(self, models: Iterable[M], operation: str) -> None:
        for model in models:
            if not model.has_identity():
                raise MissingIdentityError(
                    f"cannot {operation} {self._model.__name__} without a primary key"
                )

    def _cache_key(self, identity: Any) -> str:
        return f"{self._model.table_name()}:{identity}"

    def _invalidate(self, models: Iterable[M]) -> None:
        if self._cache is None:
            return
        for model in models:
            self._cache.delete(self._cache_key(model.primary_key_value()))

    def _record_lookup(self, hit: bool) -> None:
        if self._stats is None:
            return
        if hit:
            self._stats.record_hit()
        else:
            self._stats.record_miss()
        self._lookups += 1
        if self._lookups % CACHE_LOG_EVERY == 0:
            self._stats.log_hit_rate()


def _require_condition(condition: Model) -> None:
    if not condition.non_zero_fields():
        raise ValueError(f"{type(condition).__name__} condition has no non-zero fields")
