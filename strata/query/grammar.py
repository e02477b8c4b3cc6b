"""Compile builder state to parameterised SQL.

:class:`Grammar` emits portable SQL with ``?`` placeholders; adapters
subclass it where their engine differs (see
:class:`strata.adapters.sqlite.SqliteGrammar`).
"""

from __future__ import annotations

import re
from typing import Any, Iterable, Mapping, Optional, Sequence

from .clauses import Predicate, QueryState

_SAFE_IDENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def quote_identifier(identifier: str) -> str:
    """Validate and quote a table or column name, ``table.column`` allowed.

    >>> quote_identifier("users.name")
    '"users"."name"'
    >>> quote_identifier("users.*")
    '"users".*'
    """
    if not isinstance(identifier, str) or not identifier:
        raise ValueError(f"Unsafe SQL identifier: {identifier!r}")
    parts = identifier.split(".")
    quoted = []
    for index, part in enumerate(parts):
        if part == "*" and index == len(parts) - 1:
            quoted.append("*")
        elif _SAFE_IDENT.match(part):
            quoted.append(f'"{part}"')
        else:
            raise ValueError(f"Unsafe SQL identifier: {identifier!r}")
    return ".".join(quoted)


class Grammar:
    """Turns a :class:`QueryState` into ``(sql, args)`` pairs."""

    placeholder = "?"

    # -- reads -------------------------------------------------------------

    def compile_select(
        self, state: QueryState, table: str, soft_delete: Optional[str]
    ) -> tuple[str, tuple[Any, ...]]:
        if state.raw is not None:
            return state.raw.sql, state.raw.args

        args: list[Any] = []
        if state.columns:
            columns = ", ".join(quote_identifier(c) for c in state.columns)
        else:
            columns = f"{quote_identifier(table)}.*"
        sql = [f"SELECT {columns} FROM {quote_identifier(table)}"]
        sql.extend(self._compile_joins(state))

        where = self.compile_where(state, table, soft_delete, args)
        if where:
            sql.append(f"WHERE {where}")
        if state.group_by:
            sql.append("GROUP BY " + ", ".join(quote_identifier(c) for c in state.group_by))
        if state.having:
            sql.append("HAVING " + self._conjunction(state.having, args))
        if state.orders:
            sql.append(
                "ORDER BY "
                + ", ".join(f"{quote_identifier(o.column)} {o.direction}" for o in state.orders)
            )
        limit = self.compile_limit(state.limit, state.offset, args)
        if limit:
            sql.append(limit)
        return " ".join(sql), tuple(args)

    def compile_count(
        self, state: QueryState, table: str, soft_delete: Optional[str]
    ) -> tuple[str, tuple[Any, ...]]:
        needs_subquery = (
            state.raw is not None
            or state.group_by
            or state.having
            or state.limit is not None
            or state.offset is not None
        )
        if needs_subquery:
            inner = state.copy()
            inner.orders = []
            sql, args = self.compile_select(inner, table, soft_delete)
            return f"SELECT COUNT(*) AS aggregate FROM ({sql}) AS sub", args

        collected: list[Any] = []
        sql = [f"SELECT COUNT(*) AS aggregate FROM {quote_identifier(table)}"]
        sql.extend(self._compile_joins(state))
        where = self.compile_where(state, table, soft_delete, collected)
        if where:
            sql.append(f"WHERE {where}")
        return " ".join(sql), tuple(collected)

    def compile_exists(
        self, state: QueryState, table: str, soft_delete: Optional[str]
    ) -> tuple[str, tuple[Any, ...]]:
        sql, args = self.compile_select(state, table, soft_delete)
        return f"SELECT EXISTS ({sql}) AS present", args

    def compile_where(
        self,
        state: QueryState,
        table: str,
        soft_delete: Optional[str],
        args: list[Any],
    ) -> str:
        """Render the WHERE body, appending bound arguments to ``args``.

        Groups are OR-ed, predicates inside a group AND-ed, and the soft-delete
        predicate is AND-ed around the whole disjunction.
        """
        parts = []
        if soft_delete and state.scoped:
            parts.append(f"{quote_identifier(table)}.{quote_identifier(soft_delete)} IS NULL")

        groups = [group for group in state.where_groups if group]
        rendered = [self._conjunction(group, args) for group in groups]
        if len(rendered) == 1:
            parts.append(rendered[0])
        elif rendered:
            alternatives = [r if len(g) == 1 else f"({r})" for g, r in zip(groups, rendered)]
            parts.append("(" + " OR ".join(alternatives) + ")")
        return " AND ".join(parts)

    def compile_limit(self, limit: Optional[int], offset: Optional[int], args: list[Any]) -> str:
        parts = []
        if limit is not None:
            parts.append(f"LIMIT {self.placeholder}")
            args.append(limit)
        if offset is not None:
            parts.append(f"OFFSET {self.placeholder}")
            args.append(offset)
        return " ".join(parts)

    # -- writes ------------------------------------------------------------

    def compile_insert(
        self, table: str, columns: Sequence[str], rows: Iterable[Sequence[Any]]
    ) -> tuple[str, tuple[Any, ...]]:
        args: list[Any] = []
        values = []
        row_placeholders = "(" + ", ".join(self.placeholder for _ in columns) + ")"
        for row in rows:
            if len(row) != len(columns):
                raise ValueError("row width does not match the column list")
            values.append(row_placeholders)
            args.extend(row)
        if not values:
            raise ValueError("insert needs at least one row")
        column_list = ", ".join(quote_identifier(c) for c in columns)
        sql = f"INSERT INTO {quote_identifier(table)} ({column_list}) VALUES {', '.join(values)}"
        return sql, tuple(args)

    def compile_update(
        self,
        state: QueryState,
        table: str,
        soft_delete: Optional[str],
        primary_key: str,
        values: Mapping[str, Any],
    ) -> tuple[str, tuple[Any, ...]]:
        if not values:
            raise ValueError("update needs at least one column")
        args: list[Any] = list(values.values())
        assignments = ", ".join(f"{quote_identifier(c)} = {self.placeholder}" for c in values)
        sql = f"UPDATE {quote_identifier(table)} SET {assignments}"
        where = self._mutation_where(state, table, soft_delete, primary_key, args)
        if where:
            sql += f" WHERE {where}"
        return sql, tuple(args)

    def compile_delete(
        self,
        state: QueryState,
        table: str,
        soft_delete: Optional[str],
        primary_key: str,
    ) -> tuple[str, tuple[Any, ...]]:
        args: list[Any] = []
        sql = f"DELETE FROM {quote_identifier(table)}"
        where = self._mutation_where(state, table, soft_delete, primary_key, args)
        if where:
            sql += f" WHERE {where}"
        return sql, tuple(args)

    def compile_in(self, column: str, count: int) -> str:
        placeholders = ", ".join(self.placeholder for _ in range(count))
        return f"{quote_identifier(column)} IN ({placeholders})"

    # -- helpers -------------------------------------------------------------

    def _mutation_where(
        self,
        state: QueryState,
        table: str,
        soft_delete: Optional[str],
        primary_key: str,
        args: list[Any],
    ) -> str:
        pk = f"{quote_identifier(table)}.{quote_identifier(primary_key)}"
        if state.raw is not None:
            args.extend(state.raw.args)
            where = (
                f"{pk} IN (SELECT {quote_identifier(primary_key)}"
                f" FROM ({state.raw.sql}) AS raw_rows)"
            )
            if soft_delete and state.scoped:
                marker = f"{quote_identifier(table)}.{quote_identifier(soft_delete)}"
                where = f"{marker} IS NULL AND {where}"
            return where
        # UPDATE/DELETE cannot join or paginate portably; narrow through the key
        if state.joins or state.limit is not None or state.offset is not None or state.group_by:
            inner = state.copy()
            inner.columns = [f"{table}.{primary_key}"]
            inner_sql, inner_args = self.compile_select(inner, table, soft_delete)
            args.extend(inner_args)
            return f"{pk} IN ({inner_sql})"
        return self.compile_where(state, table, soft_delete, args)

    def _compile_joins(self, state: QueryState) -> list[str]:
        return [f"{j.kind} {quote_identifier(j.table)} ON {j.condition}" for j in state.joins]

    @staticmethod
    def _conjunction(predicates: Sequence[Predicate], args: list[Any]) -> str:
        rendered = []
        for predicate in predicates:
            rendered.append(f"({predicate.sql})")
            args.extend(predicate.args)
        return " AND ".join(rendered)
