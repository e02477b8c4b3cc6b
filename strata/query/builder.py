"""Fluent query builder.

A builder accumulates clauses for one model and compiles them into a single
engine call when a terminal operation runs. Clause methods mutate the builder
in place and return it; terminal operations reset it, also when the engine
call fails. Builders are not safe for concurrent use, :meth:`clone` one to
share it.

Example:
    >>> users = connection.query(User)                   # doctest: +SKIP
    >>> users.where("age > ?", 30).or_where({"name": "ann"}).to_sql()  # doctest: +SKIP
    ('SELECT "users".* FROM "users" WHERE "users"."deleted_at" IS NULL AND ((age > ?) OR ("users"."name" = ?))', (30, 'ann'))
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Generic, Iterable, Iterator, Mapping, Optional, TypeVar

from ..domain.model import Model
from ..errors import EngineError
from .clauses import Join, Order, Predicate, QueryState
from .grammar import quote_identifier
from .resolver import RelationshipResolver, default_resolver

if TYPE_CHECKING:
    from ..connection.base import Connection, Result
    from ..domain.context import Context

M = TypeVar("M", bound=Model)

_DIRECTIONS = ("ASC", "DESC")


class QueryBuilder(Generic[M]):
    """Clause accumulator bound to one model type and one connection."""

    def __init__(
        self,
        model: type[M],
        connection: Connection,
        resolver: Optional[RelationshipResolver] = None,
    ) -> None:
        self._model = model
        self._connection = connection
        self._resolver = resolver or default_resolver
        self._state = QueryState()

    @property
    def model(self) -> type[M]:
        return self._model

    @property
    def connection(self) -> Connection:
        return self._connection

    # -- clauses -------------------------------------------------------------

    def select(self, *columns: str) -> QueryBuilder[M]:
        for column in columns:
            quote_identifier(column)
        self._state.columns.extend(columns)
        return self

    def where(self, condition: Any, *args: Any) -> QueryBuilder[M]:
        """AND a condition into the current group.

        ``condition`` is a SQL fragment with ``?`` placeholders, a mapping of
        column to value (``None`` compares with ``IS NULL``) or a model
        instance whose non-zero fields are matched.
        """
        self._current_group().extend(self._predicates(condition, args))
        return self

    def or_where(self, condition: Any, *args: Any) -> QueryBuilder[M]:
        """Open a new OR group; later ``where`` calls extend it."""
        self._state.where_groups.append(self._predicates(condition, args))
        return self

    def where_in(self, column: str, values: Iterable[Any]) -> QueryBuilder[M]:
        values = list(values)
        if not values:
            # IN () matches nothing
            return self._add(Predicate("1 = 0"))
        column = self._qualify(column)
        return self._add(
            Predicate(self._connection.grammar.compile_in(column, len(values)), tuple(values))
        )

    def where_not_in(self, column: str, values: Iterable[Any]) -> QueryBuilder[M]:
        values = list(values)
        if not values:
            return self
        column = self._qualify(column)
        sql = self._connection.grammar.compile_in(column, len(values)).replace(" IN ", " NOT IN ", 1)
        return self._add(Predicate(sql, tuple(values)))

    def where_null(self, column: str) -> QueryBuilder[M]:
        return self._add(Predicate(f"{quote_identifier(self._qualify(column))} IS NULL"))

    def where_not_null(self, column: str) -> QueryBuilder[M]:
        return self._add(Predicate(f"{quote_identifier(self._qualify(column))} IS NOT NULL"))

    def where_between(self, column: str, low: Any, high: Any) -> QueryBuilder[M]:
        sql = f"{quote_identifier(self._qualify(column))} BETWEEN ? AND ?"
        return self._add(Predicate(sql, (low, high)))

    def join(self, table: str, condition: str, kind: str = "JOIN") -> QueryBuilder[M]:
        quote_identifier(table)
        self._state.joins.append(Join(kind, table, condition))
        return self

    def inner_join(self, table: str, condition: str) -> QueryBuilder[M]:
        return self.join(table, condition, "INNER JOIN")

    def left_join(self, table: str, condition: str) -> QueryBuilder[M]:
        return self.join(table, condition, "LEFT JOIN")

    def right_join(self, table: str, condition: str) -> QueryBuilder[M]:
        return self.join(table, condition, "RIGHT JOIN")

    def order_by(self, column: str, direction: str = "ASC") -> QueryBuilder[M]:
        direction = direction.upper()
        if direction not in _DIRECTIONS:
            raise ValueError(f"order direction must be ASC or DESC, got {direction!r}")
        quote_identifier(column)
        self._state.orders.append(Order(column, direction))
        return self

    def group_by(self, *columns: str) -> QueryBuilder[M]:
        for column in columns:
            quote_identifier(column)
        self._state.group_by.extend(columns)
        return self

    def having(self, condition: str, *args: Any) -> QueryBuilder[M]:
        self._state.having.append(Predicate(condition, args))
        return self

    def limit(self, count: int) -> QueryBuilder[M]:
        self._state.limit = _non_negative("limit", count)
        return self

    def offset(self, count: int) -> QueryBuilder[M]:
        self._state.offset = _non_negative("offset", count)
        return self

    def with_(self, *relations: str) -> QueryBuilder[M]:
        """Eager-load ``relations`` after the primary query."""
        for name in relations:
            self._resolver.resolve(self._model, name)
            if name not in self._state.with_relations:
                self._state.with_relations.append(name)
        return self

    def with_count(self, *relations: str) -> QueryBuilder[M]:
        for name in relations:
            self._resolver.resolve(self._model, name)
            if name not in self._state.with_counts:
                self._state.with_counts.append(name)
        return self

    def scoped(self) -> QueryBuilder[M]:
        self._state.scoped = True
        return self

    def unscoped(self) -> QueryBuilder[M]:
        """Include soft-deleted rows until the builder is reset."""
        self._state.scoped = False
        return self

    def raw(self, sql: str, *args: Any) -> QueryBuilder[M]:
        """Replace the compiled read with ``sql``; other clauses are ignored.

        ``update`` and ``delete`` target the rows whose primary key ``sql``
        selects.
        """
        self._state.raw = Predicate(sql, args)
        return self

    # -- terminal operations -----------------------------------------------

    def find(self, ctx: Context, *ids: Any) -> list[M]:
        """Rows whose primary key is among ``ids``, or every row when none given."""
        state = self._consume()
        if ids:
            column = self._qualify(self._model.primary_key())
            _and_all(
                state,
                Predicate(self._connection.grammar.compile_in(column, len(ids)), tuple(ids)),
            )
        return self._fetch(ctx, state, "find")

    def first(self, ctx: Context) -> Optional[M]:
        state = self._consume()
        state.limit = 1
        rows = self._fetch(ctx, state, "first")
        return rows[0] if rows else None

    def get(self, ctx: Context) -> list[M]:
        return self._fetch(ctx, self._consume(), "get")

    def count(self, ctx: Context) -> int:
        state = self._consume()
        sql, args = self._connection.grammar.compile_count(state, *self._target())
        with self._engine_context("count"):
            rows = self._connection.select(ctx, sql, *args)
        return int(rows[0]["aggregate"]) if rows else 0

    def exists(self, ctx: Context) -> bool:
        state = self._consume()
        sql, args = self._connection.grammar.compile_exists(state, *self._target())
        with self._engine_context("exists"):
            rows = self._connection.select(ctx, sql, *args)
        return bool(rows and rows[0]["present"])

    def pluck(self, ctx: Context, column: str) -> list[Any]:
        """Values of a single ``column`` for every matching row."""
        state = self._consume()
        quote_identifier(column)
        state.columns = [column]
        sql, args = self._connection.grammar.compile_select(state, *self._target())
        with self._engine_context("pluck"):
            rows = self._connection.select(ctx, sql, *args)
        return [next(iter(row.values())) for row in rows]

    def create(self, ctx: Context, *models: M) -> list[M]:
        """Insert ``models`` in one statement and assign their generated keys."""
        self._consume()
        if not models:
            return []
        for model in models:
            if not isinstance(model, self._model):
                raise TypeError(
                    f"expected {self._model.__name__} instance, got {type(model).__name__}"
                )

        now = datetime.now(timezone.utc)
        soft = self._model.soft_delete_column()
        for model in models:
            for column in self._model.timestamp_columns():
                if column == "updated_at" or getattr(model, column) is None:
                    setattr(model, column, now)
            if soft:
                setattr(model, soft, None)

        pk = self._model.primary_key()
        with self._engine_context("create"):
            ids = self._connection.insert(
                ctx, self._model.table_name(), [m.to_row() for m in models], pk
            )
        for model, identity in zip(models, ids):
            setattr(model, pk, identity)
        return list(models)

    def update(self, ctx: Context, values: Mapping[str, Any]) -> int:
        """Mass update of the matching rows; returns the number of rows affected."""
        state = self._consume()
        if not values:
            raise ValueError("update needs at least one column")
        values = dict(values)
        if "updated_at" in self._model.timestamp_columns() and "updated_at" not in values:
            values["updated_at"] = datetime.now(timezone.utc)
        table, soft = self._target()
        sql, args = self._connection.grammar.compile_update(
            state, table, soft, self._model.primary_key(), values
        )
        with self._engine_context("update"):
            return self._connection.statement(ctx, sql, *args).rows_affected

    def delete(self, ctx: Context, *, deleted_at: Optional[datetime] = None) -> int:
        """Soft delete when the model has a marker and the builder is scoped.

        Otherwise the rows are removed. Returns the number of rows affected.
        """
        state = self._consume()
        table, soft = self._target()
        pk = self._model.primary_key()
        grammar = self._connection.grammar
        if soft and state.scoped:
            marker = deleted_at or datetime.now(timezone.utc)
            sql, args = grammar.compile_update(state, table, soft, pk, {soft: marker})
        else:
            sql, args = grammar.compile_delete(state, table, soft, pk)
        with self._engine_context("delete"):
            return self._connection.statement(ctx, sql, *args).rows_affected

    def force_delete(self, ctx: Context) -> int:
        """Physically remove matching rows, soft-deleted ones included."""
        state = self._consume()
        sql, args = self._connection.grammar.compile_delete(
            state, self._model.table_name(), None, self._model.primary_key()
        )
        with self._engine_context("force_delete"):
            return self._connection.statement(ctx, sql, *args).rows_affected

    def exec(self, ctx: Context, sql: str, *args: Any) -> Result:
        self._consume()
        with self._engine_context("exec"):
            return self._connection.statement(ctx, sql, *args)

    # -- utilities -------------------------------------------------------------

    def to_sql(self) -> tuple[str, tuple[Any, ...]]:
        """The read query the current state compiles to; nothing is executed."""
        return self._connection.grammar.compile_select(self._state, *self._target())

    def clone(self) -> QueryBuilder[M]:
        twin: QueryBuilder[M] = QueryBuilder(self._model, self._connection, self._resolver)
        twin._state = self._state.copy()
        return twin

    def reset(self) -> QueryBuilder[M]:
        self._state = QueryState()
        return self

    def is_empty(self) -> bool:
        return self._state.is_empty()

    def summary(self) -> str:
        """Short description of the accumulated clauses."""
        return self._state.summary()

    def __repr__(self) -> str:
        return f"<QueryBuilder {self._model.__name__}: {self.summary()}>"

    # -- internals -------------------------------------------------------------

    def _consume(self) -> QueryState:
        state, self._state = self._state, QueryState()
        return state

    def _target(self) -> tuple[str, Optional[str]]:
        return self._model.table_name(), self._model.soft_delete_column()

    def _fetch(self, ctx: Context, state: QueryState, operation: str) -> list[M]:
        sql, args = self._connection.grammar.compile_select(state, *self._target())
        with self._engine_context(operation):
            rows = self._connection.select(ctx, sql, *args)
            models = [self._model.from_row(row) for row in rows]
            if state.with_relations:
                self._resolver.eager_load(ctx, self._connection, models, state.with_relations)
            if state.with_counts:
                self._resolver.load_counts(ctx, self._connection, models, state.with_counts)
        return models

    @contextmanager
    def _engine_context(self, operation: str) -> Iterator[None]:
        try:
            yield
        except EngineError as exc:
            exc.annotate(operation=operation, model=self._model.__name__)
            raise

    def _current_group(self) -> list[Predicate]:
        if not self._state.where_groups:
            self._state.where_groups.append([])
        return self._state.where_groups[-1]

    def _add(self, predicate: Predicate) -> QueryBuilder[M]:
        self._current_group().append(predicate)
        return self

    def _qualify(self, column: str) -> str:
        if "." in column:
            return column
        return f"{self._model.table_name()}.{column}"

    def _predicates(self, condition: Any, args: tuple[Any, ...]) -> list[Predicate]:
        if isinstance(condition, str):
            return [Predicate(condition, tuple(args))]
        if args:
            raise TypeError("positional arguments are only accepted with a SQL condition")
        if isinstance(condition, Model):
            condition = condition.non_zero_fields()
        if not isinstance(condition, Mapping):
            raise TypeError(f"unsupported where condition: {type(condition).__name__}")

        predicates = []
        for column, value in condition.items():
            quoted = quote_identifier(self._qualify(column))
            if value is None:
                predicates.append(Predicate(f"{quoted} IS NULL"))
            else:
                predicates.append(Predicate(f"{quoted} = ?", (value,)))
        return predicates


def _and_all(state: QueryState, predicate: Predicate) -> None:
    """AND ``predicate`` with the whole where disjunction."""
    if not state.where_groups:
        state.where_groups.append([predicate])
        return
    for group in state.where_groups:
        group.append(predicate)


def _non_negative(name: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an integer")
    if value < 0:
        raise ValueError(f"{name} must be non-negative, got {value}")
    return value
