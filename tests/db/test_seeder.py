from __future__ import annotations

import logging

import pytest

from strata.connection.base import Connection
from strata.db.seeder import RecordSeeder, Seeder, run_seeders
from strata.domain.context import Context
from strata.errors import PartialBatchError
from tests.sample_models import Role, User


class _FailingSeeder(Seeder):
    def run(self, ctx: Context, connection: Connection) -> int:
        raise RuntimeError("seed source unavailable")


def test_record_seeder_accepts_instances_and_mappings(ctx: Context, conn: Connection) -> None:
    seeder = RecordSeeder(Role, [{"name": "admin"}, Role(name="editor")], batch_size=1)
    assert seeder.name == "RecordSeeder(Role)"
    assert seeder.run(ctx, conn) == 2
    assert conn.query(Role).order_by("id").pluck(ctx, "name") == ["admin", "editor"]


def test_run_seeders_in_order_and_logs(
    ctx: Context, conn: Connection, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.INFO, logger="strata.db.seeder")
    written = run_seeders(
        ctx,
        conn,
        [
            RecordSeeder(User, [{"name": "ann"}, {"name": "bob"}]),
            RecordSeeder(Role, [{"name": "admin"}]),
        ],
    )
    assert written == 3
    seeded = [r for r in caplog.records if r.getMessage() == "Seeded"]
    assert [r.seeder for r in seeded] == ["RecordSeeder(User)", "RecordSeeder(Role)"]
    assert [r.records for r in seeded] == [2, 1]


def test_run_seeders_is_all_or_nothing(ctx: Context, conn: Connection) -> None:
    with pytest.raises(RuntimeError):
        run_seeders(ctx, conn, [RecordSeeder(Role, [{"name": "admin"}]), _FailingSeeder()])
    assert conn.query(Role).count(ctx) == 0

    with pytest.raises(PartialBatchError):
        run_seeders(ctx, conn, [RecordSeeder(Role, [{"name": "a"}, {"name": "a"}], batch_size=1)])
    assert conn.query(Role).count(ctx) == 0
