"""Clause values accumulated by :class:`~strata.query.builder.QueryBuilder`."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class Predicate:
    """A SQL condition fragment with ``?`` placeholders and its arguments."""

    sql: str
    args: tuple[Any, ...] = ()


@dataclass(frozen=True)
class Join:
    kind: str  # 'JOIN', 'INNER JOIN', 'LEFT JOIN', 'RIGHT JOIN'
    table: str
    condition: str


@dataclass(frozen=True)
class Order:
    column: str
    direction: str  # 'ASC' or 'DESC'


@dataclass
class QueryState:
    """Mutable clause state of one builder.

    ``where_groups`` is a disjunction of conjunctions: ``where`` appends to
    the last group and ``or_where`` opens a new one.
    """

    columns: list[str] = field(default_factory=list)
    where_groups: list[list[Predicate]] = field(default_factory=list)
    joins: list[Join] = field(default_factory=list)
    orders: list[Order] = field(default_factory=list)
    group_by: list[str] = field(default_factory=list)
    having: list[Predicate] = field(default_factory=list)
    limit: Optional[int] = None
    offset: Optional[int] = None
    with_relations: list[str] = field(default_factory=list)
    with_counts: list[str] = field(default_factory=list)
    scoped: bool = True
    raw: Optional[Predicate] = None

    def copy(self) -> QueryState:
        """Independent copy; clause values are immutable so lists are enough."""
        return QueryState(
            columns=list(self.columns),
            where_groups=[list(group) for group in self.where_groups],
            joins=list(self.joins),
            orders=list(self.orders),
            group_by=list(self.group_by),
            having=list(self.having),
            limit=self.limit,
            offset=self.offset,
            with_relations=list(self.with_relations),
            with_counts=list(self.with_counts),
            scoped=self.scoped,
            raw=self.raw,
        )

    def is_empty(self) -> bool:
        return self == QueryState()

    def summary(self) -> str:
        """Short description used in error messages and logs."""
        parts = []
        predicates = sum(len(g) for g in self.where_groups)
        if predicates:
            parts.append(f"where={predicates} in {len(self.where_groups)} group(s)")
        if self.joins:
            parts.append(f"joins={len(self.joins)}")
        if self.orders:
            parts.append("order=" + ",".join(f"{o.column} {o.direction}" for o in self.orders))
        if self.limit is not None:
            parts.append(f"limit={self.limit}")
        if self.offset is not None:
            parts.append(f"offset={self.offset}")
        if not self.scoped:
            parts.append("unscoped")
        if self.raw is not None:
            parts.append("raw")
        return " ".join(parts) or "no clauses"
