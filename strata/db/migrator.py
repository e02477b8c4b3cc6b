"""Ordered, reversible schema migrations.

Applied versions are recorded in a bookkeeping table. They must always form a
prefix of the source order; every operation validates that before touching
the schema.
"""

from __future__ import annotations

import dataclasses
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from ..errors import (
    EngineError,
    IrreversibleMigrationError,
    MigrationError,
    MigrationStateError,
)
from ..query.grammar import quote_identifier
from .sources import Migration, MigrationSource, version_key

if TYPE_CHECKING:
    from ..connection.base import Connection
    from ..domain.context import Context

logger = logging.getLogger(__name__)

DEFAULT_TABLE = "schema_migrations"


class Migrator(ABC):
    @abstractmethod
    def up(self, ctx: Context) -> list[str]:
        """Apply every pending migration; return the applied versions."""

    @abstractmethod
    def down(self, ctx: Context, steps: int = 1) -> list[str]:
        """Revert the ``steps`` latest migrations; return the reverted versions."""

    @abstractmethod
    def fresh(self, ctx: Context) -> list[str]:
        """Drop the schema and apply every migration from scratch."""

    @abstractmethod
    def status(self, ctx: Context) -> list[Migration]:
        pass

    @abstractmethod
    def close(self) -> tuple[Optional[BaseException], Optional[BaseException]]:
        """Close the source and the connection; return both errors."""


class SqlMigrator(Migrator):
    """Runs migration scripts through a :class:`Connection`.

    Example:
        >>> migrator = SqlMigrator(connection, DirectoryMigrationSource("migrations"))  # doctest: +SKIP
        >>> migrator.up(background())                                                   # doctest: +SKIP
        ['1', '2']
    """

    def __init__(
        self,
        connection: Connection,
        source: MigrationSource,
        *,
        table: str = DEFAULT_TABLE,
    ) -> None:
        quote_identifier(table)
        self._connection = connection
        self._source = source
        self._table = table

    @property
    def table(self) -> str:
        return self._table

    def up(self, ctx: Context) -> list[str]:
        migrations, applied = self._load(ctx)
        pending = [m for m in migrations if m.version not in applied]
        done = []
        for migration in pending:
            self._apply(ctx, migration)
            done.append(migration.version)
        if not pending:
            logger.info("No pending migrations")
        return done

    def down(self, ctx: Context, steps: int = 1) -> list[str]:
        if steps < 1:
            raise ValueError("steps must be at least 1")
        migrations, applied = self._load(ctx)
        applied_in_order = [m for m in migrations if m.version in applied]
        if steps > len(applied_in_order):
            raise MigrationStateError(
                f"cannot revert {steps} migration(s); only {len(applied_in_order)} applied"
            )
        targets = list(reversed(applied_in_order))[:steps]
        for migration in targets:
            if not migration.reversible:
                raise IrreversibleMigrationError(migration.version)

        reverted = []
        for migration in targets:
            self._revert(ctx, migration)
            reverted.append(migration.version)
        return reverted

    def fresh(self, ctx: Context) -> list[str]:
        migrations = self._source.load()
        current: Optional[Migration] = None
        try:
            with self._connection.transaction_scope(ctx) as scoped:
                scoped.drop_all(ctx)
                self._ensure_table(ctx, scoped)
                for migration in migrations:
                    current = migration
                    self._run(ctx, scoped, migration.up)
                    self._record(ctx, scoped, migration)
        except EngineError as exc:
            version = current.version if current else "-"
            raise MigrationError(f"fresh failed at version {version}: {exc}") from exc
        logger.info("Schema recreated", extra={"migrations": len(migrations)})
        return [m.version for m in migrations]

    def status(self, ctx: Context) -> list[Migration]:
        migrations, applied = self._load(ctx)
        return [dataclasses.replace(m, applied_at=applied.get(m.version)) for m in migrations]

    def close(self) -> tuple[Optional[BaseException], Optional[BaseException]]:
        source_error: Optional[BaseException] = None
        connection_error: Optional[BaseException] = None
        try:
            self._source.close()
        except Exception as exc:
            source_error = exc
        try:
            self._connection.close()
        except Exception as exc:
            connection_error = exc
        return source_error, connection_error

    # -- internals -------------------------------------------------------------

    def _load(self, ctx: Context) -> tuple[list[Migration], dict[str, Optional[datetime]]]:
        migrations = self._source.load()
        self._ensure_table(ctx, self._connection)
        rows = self._connection.select(
            ctx, f"SELECT version, applied_at FROM {quote_identifier(self._table)}"
        )
        applied = {str(row["version"]): _parse_time(row["applied_at"]) for row in rows}

        known = {m.version for m in migrations}
        unknown = sorted(set(applied) - known, key=version_key)
        if unknown:
            raise MigrationStateError(f"applied version {unknown[0]} is unknown to the source")
        seen_pending = None
        for migration in migrations:
            if migration.version not in applied:
                seen_pending = seen_pending or migration.version
            elif seen_pending is not None:
                raise MigrationStateError(
                    f"version {migration.version} is applied but earlier version"
                    f" {seen_pending} is pending"
                )
        return migrations, applied

    def _ensure_table(self, ctx: Context, connection: Connection) -> None:
        connection.statement(
            ctx,
            f"CREATE TABLE IF NOT EXISTS {quote_identifier(self._table)}"
            " (version TEXT PRIMARY KEY, name TEXT NOT NULL, applied_at TEXT NOT NULL)",
        )

    def _apply(self, ctx: Context, migration: Migration) -> None:
        try:
            with self._connection.transaction_scope(ctx) as scoped:
                self._run(ctx, scoped, migration.up)
                self._record(ctx, scoped, migration)
        except EngineError as exc:
            raise MigrationError(f"migration {migration.version} failed: {exc}") from exc
        logger.info(
            "Applied migration", extra={"version": migration.version, "migration": migration.name}
        )

    def _revert(self, ctx: Context, migration: Migration) -> None:
        try:
            with self._connection.transaction_scope(ctx) as scoped:
                self._run(ctx, scoped, migration.down or "")
                scoped.statement(
                    ctx,
                    f"DELETE FROM {quote_identifier(self._table)} WHERE version = ?",
                    migration.version,
                )
        except EngineError as exc:
            raise MigrationError(f"revert of {migration.version} failed: {exc}") from exc
        logger.info(
            "Reverted migration", extra={"version": migration.version, "migration": migration.name}
        )

    def _run(self, ctx: Context, connection: Connection, script: str) -> None:
        connection.execute_script(ctx, script)

    def _record(self, ctx: Context, connection: Connection, migration: Migration) -> None:
        connection.statement(
            ctx,
            f"INSERT INTO {quote_identifier(self._table)} (version, name, applied_at)"
            " VALUES (?, ?, ?)",
            migration.version,
            migration.name,
            datetime.now(timezone.utc).isoformat(),
        )


def _parse_time(value: object) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None
