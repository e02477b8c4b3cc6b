"""Relationship resolution and eager loading.

Declared relations are completed with conventional keys the first time they
are used and cached process-wide. Eager loading issues one batched ``IN``
query per relation (two for many-to-many: pivot, then targets) no matter how
many parent models were fetched.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from collections import defaultdict
from typing import TYPE_CHECKING, Any, Hashable, Iterable, Sequence

from ..domain.model import Model, get_model
from ..domain.relations import RelationKind, Relationship, snake_case
from ..errors import ConfigurationError, RelationNotDeclaredError
from .grammar import quote_identifier

if TYPE_CHECKING:
    from ..connection.base import Connection
    from ..domain.context import Context

logger = logging.getLogger(__name__)


class RelationshipResolver:
    """Resolves relation names to complete descriptors and loads them."""

    def __init__(self) -> None:
        self._resolved: dict[tuple[type[Model], str], Relationship] = {}
        self._lock = threading.Lock()

    def resolve(self, model: type[Model], name: str) -> Relationship:
        """Return the descriptor of ``model.name`` with every key filled in.

        Raises :class:`RelationNotDeclaredError` for unknown names.
        """
        key = (model, name)
        with self._lock:
            cached = self._resolved.get(key)
        if cached is not None:
            return cached

        declared = model.relations().get(name)
        if declared is None:
            raise RelationNotDeclaredError(model.__name__, name)
        resolved = _complete(model, name, declared)
        with self._lock:
            return self._resolved.setdefault(key, resolved)

    def clear(self) -> None:
        with self._lock:
            self._resolved.clear()

    # -- eager loading ---------------------------------------------------------

    def eager_load(
        self,
        ctx: Context,
        connection: Connection,
        models: Sequence[Model],
        names: Iterable[str],
    ) -> None:
        """Attach the relations ``names`` to every model in ``models``.

        Queries run one relation at a time; a failure leaves the relations
        loaded so far attached.
        """
        if not models:
            return
        owner = type(models[0])
        for name in dict.fromkeys(names):
            relation = self.resolve(owner, name)
            if relation.kind is RelationKind.BELONGS_TO_MANY:
                _load_through_pivot(ctx, connection, models, name, relation)
            else:
                _load_direct(ctx, connection, models, name, relation)

    def load_counts(
        self,
        ctx: Context,
        connection: Connection,
        models: Sequence[Model],
        names: Iterable[str],
    ) -> None:
        """Store ``<name>_count`` on every model, one grouped query per relation."""
        if not models:
            return
        owner = type(models[0])
        for name in dict.fromkeys(names):
            relation = self.resolve(owner, name)
            keys = _distinct(getattr(m, relation.local_key) for m in models)
            counts = _grouped_counts(ctx, connection, relation, keys) if keys else {}
            for model in models:
                model.set_relation_count(name, counts.get(getattr(model, relation.local_key), 0))


default_resolver = RelationshipResolver()


def _complete(model: type[Model], name: str, declared: Relationship) -> Relationship:
    target = declared.target
    if isinstance(target, str):
        target = get_model(target)
    owner_fk = f"{snake_case(model.__name__)}_id"
    target_fk = f"{snake_case(target.__name__)}_id"

    if declared.kind in (RelationKind.HAS_ONE, RelationKind.HAS_MANY):
        resolved = dataclasses.replace(
            declared,
            target=target,
            local_key=declared.local_key or model.primary_key(),
            foreign_key=declared.foreign_key or owner_fk,
        )
    elif declared.kind is RelationKind.BELONGS_TO:
        resolved = dataclasses.replace(
            declared,
            target=target,
            local_key=declared.local_key or target_fk,
            foreign_key=declared.foreign_key or target.primary_key(),
        )
    else:
        join_table = declared.join_table or "_".join(
            sorted((snake_case(model.__name__), snake_case(target.__name__)))
        )
        resolved = dataclasses.replace(
            declared,
            target=target,
            local_key=declared.local_key or model.primary_key(),
            foreign_key=declared.foreign_key or target.primary_key(),
            join_table=join_table,
            pivot_local_key=declared.pivot_local_key or owner_fk,
            pivot_foreign_key=declared.pivot_foreign_key or target_fk,
        )

    if resolved.local_key not in model.columns():
        raise ConfigurationError(
            f"{model.__name__}.{name}: local key '{resolved.local_key}' is not a column"
        )
    if resolved.foreign_key not in target.columns():
        raise ConfigurationError(
            f"{model.__name__}.{name}: foreign key '{resolved.foreign_key}' is not a column"
            f" of {target.__name__}"
        )
    return resolved


def _distinct(values: Iterable[Any]) -> list[Hashable]:
    return list(dict.fromkeys(v for v in values if v is not None))


def _load_direct(
    ctx: Context,
    connection: Connection,
    models: Sequence[Model],
    name: str,
    relation: Relationship,
) -> None:
    target: type[Model] = relation.target  # type: ignore[assignment]
    keys = _distinct(getattr(m, relation.local_key) for m in models)
    related: list[Model] = []
    if keys:
        related = (
            connection.query(target)
            .where_in(f"{target.table_name()}.{relation.foreign_key}", keys)
            .get(ctx)
        )

    grouped: dict[Any, list[Model]] = defaultdict(list)
    for item in related:
        grouped[getattr(item, relation.foreign_key)].append(item)

    for model in models:
        matches = grouped.get(getattr(model, relation.local_key), [])
        if relation.kind.is_collection:
            model.set_related(name, list(matches))
        else:
            model.set_related(name, matches[0] if matches else None)
    logger.debug("Eager-loaded relation", extra={"relation": name, "rows": len(related)})


def _load_through_pivot(
    ctx: Context,
    connection: Connection,
    models: Sequence[Model],
    name: str,
    relation: Relationship,
) -> None:
    target: type[Model] = relation.target  # type: ignore[assignment]
    keys = _distinct(getattr(m, relation.local_key) for m in models)
    pairs: list[dict[str, Any]] = []
    if keys:
        grammar = connection.grammar
        sql = (
            f"SELECT {quote_identifier(relation.pivot_local_key)} AS owner_key,"
            f" {quote_identifier(relation.pivot_foreign_key)} AS target_key"
            f" FROM {quote_identifier(relation.join_table)}"
            f" WHERE {grammar.compile_in(relation.pivot_local_key, len(keys))}"
        )
        pairs = connection.select(ctx, sql, *keys)

    target_keys = _distinct(row["target_key"] for row in pairs)
    targets: list[Model] = []
    if target_keys:
        targets = (
            connection.query(target)
            .where_in(f"{target.table_name()}.{relation.foreign_key}", target_keys)
            .get(ctx)
        )
    by_key = {getattr(t, relation.foreign_key): t for t in targets}

    linked: dict[Any, list[Model]] = defaultdict(list)
    for row in pairs:
        item = by_key.get(row["target_key"])
        if item is not None:
            linked[row["owner_key"]].append(item)

    for model in models:
        model.set_related(name, list(linked.get(getattr(model, relation.local_key), [])))


def _grouped_counts(
    ctx: Context,
    connection: Connection,
    relation: Relationship,
    keys: list[Hashable],
) -> dict[Any, int]:
    target: type[Model] = relation.target  # type: ignore[assignment]
    grammar = connection.grammar
    table = quote_identifier(target.table_name())
    soft = target.soft_delete_column()

    if relation.kind is RelationKind.BELONGS_TO_MANY:
        pivot_key = f"{relation.join_table}.{relation.pivot_local_key}"
        sql = (
            f"SELECT {quote_identifier(pivot_key)} AS group_key, COUNT(*) AS aggregate"
            f" FROM {quote_identifier(relation.join_table)}"
            f" JOIN {table} ON {table}.{quote_identifier(relation.foreign_key)}"
            f" = {quote_identifier(relation.join_table)}.{quote_identifier(relation.pivot_foreign_key)}"
            f" WHERE {grammar.compile_in(pivot_key, len(keys))}"
        )
        group_column = pivot_key
    else:
        group_column = f"{target.table_name()}.{relation.foreign_key}"
        sql = (
            f"SELECT {quote_identifier(group_column)} AS group_key, COUNT(*) AS aggregate"
            f" FROM {table} WHERE {grammar.compile_in(group_column, len(keys))}"
        )
    if soft:
        sql += f" AND {table}.{quote_identifier(soft)} IS NULL"
    sql += f" GROUP BY {quote_identifier(group_column)}"

    rows = connection.select(ctx, sql, *keys)
    return {row["group_key"]: int(row["aggregate"]) for row in rows}
