from __future__ import annotations

from collections.abc import Generator

import pytest

from strata.adapters.sqlite import SqliteConnection
from strata.config.settings import DatabaseConfig
from strata.connection.base import Connection
from strata.connection.registry import connect
from strata.db.migrator import SqlMigrator
from strata.db.sources import MemoryMigrationSource, Migration
from strata.domain.context import Context
from strata.errors import (
    IrreversibleMigrationError,
    MigrationError,
    MigrationStateError,
)
from tests.sample_models import SCHEMA, User


@pytest.fixture
def raw_conn() -> Generator[Connection, None, None]:
    connection = connect(DatabaseConfig())
    yield connection
    connection.close()


def _source(*migrations: Migration) -> MemoryMigrationSource:
    return MemoryMigrationSource(migrations)


def test_up_applies_pending_in_order(ctx: Context, raw_conn: Connection) -> None:
    migrator = SqlMigrator(raw_conn, SCHEMA)
    assert migrator.up(ctx) == ["1", "2", "3", "4"]
    assert migrator.up(ctx) == []
    assert "users" in raw_conn.table_names(ctx)
    rows = raw_conn.select(ctx, "SELECT version, name FROM schema_migrations ORDER BY version")
    assert [(r["version"], r["name"]) for r in rows][0] == ("1", "create_users")


def test_status_reports_applied_and_pending(ctx: Context, raw_conn: Connection) -> None:
    irreversible = Migration("5", "seed_roles", "INSERT INTO roles (name) VALUES ('admin');")
    source = _source(*SCHEMA.load(), irreversible)
    SqlMigrator(raw_conn, SCHEMA).up(ctx)

    status = SqlMigrator(raw_conn, source).status(ctx)
    assert [m.version for m in status] == ["1", "2", "3", "4", "5"]
    assert all(m.applied for m in status[:4])
    assert status[0].applied_at is not None
    assert not status[4].applied
    assert not status[4].reversible


def test_down_reverts_latest(ctx: Context, raw_conn: Connection) -> None:
    migrator = SqlMigrator(raw_conn, SCHEMA)
    migrator.up(ctx)
    assert migrator.down(ctx) == ["4"]
    assert "settings" not in raw_conn.table_names(ctx)
    assert migrator.down(ctx, 2) == ["3", "2"]
    assert raw_conn.table_names(ctx) == ["schema_migrations", "users"]
    assert migrator.up(ctx) == ["2", "3", "4"]


def test_down_validates_before_reverting(ctx: Context, raw_conn: Connection) -> None:
    source = _source(
        Migration("1", "create_t", "CREATE TABLE t (x INTEGER);", "DROP TABLE t;"),
        Migration("2", "fill_t", "INSERT INTO t VALUES (1);"),
        Migration("3", "create_u", "CREATE TABLE u (x INTEGER);", "DROP TABLE u;"),
    )
    migrator = SqlMigrator(raw_conn, source)
    migrator.up(ctx)

    with pytest.raises(ValueError):
        migrator.down(ctx, 0)
    with pytest.raises(MigrationStateError):
        migrator.down(ctx, 4)
    with pytest.raises(IrreversibleMigrationError) as info:
        migrator.down(ctx, 2)
    assert info.value.version == "2"
    assert "u" in raw_conn.table_names(ctx)
    assert [m.applied for m in migrator.status(ctx)] == [True, True, True]


def test_failed_migration_leaves_no_trace(ctx: Context, raw_conn: Connection) -> None:
    source = _source(
        Migration("1", "create_t", "CREATE TABLE t (x INTEGER);"),
        Migration("2", "broken", "CREATE TABLE u (x INTEGER); INSERT INTO missing VALUES (1);"),
    )
    migrator = SqlMigrator(raw_conn, source)
    with pytest.raises(MigrationError) as info:
        migrator.up(ctx)
    assert "migration 2 failed" in str(info.value)
    assert raw_conn.table_names(ctx) == ["schema_migrations", "t"]
    assert [m.applied for m in migrator.status(ctx)] == [True, False]


def test_applied_versions_must_be_a_prefix(ctx: Context, raw_conn: Connection) -> None:
    SqlMigrator(raw_conn, SCHEMA).up(ctx)
    raw_conn.statement(ctx, "DELETE FROM schema_migrations WHERE version = '2'")
    with pytest.raises(MigrationStateError):
        SqlMigrator(raw_conn, SCHEMA).up(ctx)


def test_unknown_applied_version_is_rejected(ctx: Context, raw_conn: Connection) -> None:
    SqlMigrator(raw_conn, SCHEMA).up(ctx)
    shorter = _source(*SCHEMA.load()[:2])
    with pytest.raises(MigrationStateError):
        SqlMigrator(raw_conn, shorter).status(ctx)


def test_fresh_rebuilds_everything(ctx: Context, raw_conn: Connection) -> None:
    migrator = SqlMigrator(raw_conn, SCHEMA)
    migrator.up(ctx)
    raw_conn.query(User).create(ctx, User(name="ann"))
    raw_conn.statement(ctx, "CREATE TABLE stray (x INTEGER)")

    assert migrator.fresh(ctx) == ["1", "2", "3", "4"]
    assert "stray" not in raw_conn.table_names(ctx)
    assert raw_conn.query(User).count(ctx) == 0
    assert all(m.applied for m in migrator.status(ctx))


def test_fresh_failure_names_the_version(ctx: Context, raw_conn: Connection) -> None:
    source = _source(
        Migration("1", "create_t", "CREATE TABLE t (x INTEGER);"),
        Migration("2", "broken", "SELECT * FROM nowhere;"),
    )
    SqlMigrator(raw_conn, _source(source.load()[0])).up(ctx)
    with pytest.raises(MigrationError, match="version 2"):
        SqlMigrator(raw_conn, source).fresh(ctx)
    assert raw_conn.table_names(ctx) == ["schema_migrations", "t"]


def test_custom_bookkeeping_table(ctx: Context, raw_conn: Connection) -> None:
    migrator = SqlMigrator(raw_conn, SCHEMA, table="versions")
    migrator.up(ctx)
    assert migrator.table == "versions"
    assert "versions" in raw_conn.table_names(ctx)
    with pytest.raises(ValueError):
        SqlMigrator(raw_conn, SCHEMA, table="bad name")


def test_close_reports_errors_separately(raw_conn: Connection) -> None:
    migrator = SqlMigrator(raw_conn, SCHEMA)
    assert migrator.close() == (None, None)
    assert migrator.close() == (None, None)


class _BrokenCloseSource(MemoryMigrationSource):
    def close(self) -> None:
        raise ValueError("source broke")


def test_close_still_closes_connection_when_source_fails(raw_conn: Connection) -> None:
    migrator = SqlMigrator(raw_conn, _BrokenCloseSource(SCHEMA.load()))
    source_error, connection_error = migrator.close()
    assert isinstance(source_error, ValueError)
    assert connection_error is None
    assert isinstance(raw_conn, SqliteConnection)
    assert raw_conn.closed
