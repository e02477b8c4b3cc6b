"""Test harness: provision a database, migrate it and clean up between tests.

Example (pytest)::

    @pytest.fixture
    def db():
        harness = DatabaseHarness(DatabaseConfig(), migrations=SCHEMA)
        harness.setup(background())
        yield harness
        harness.teardown()

    def test_something(db):
        ctx = background()
        with db.session(ctx) as conn:
            conn.new_repository(User).create(ctx, User(name="ann"))
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterable, Iterator, Mapping, Optional, Union

from .connection.registry import connect
from .db.migrator import SqlMigrator
from .db.seeder import RecordSeeder, run_seeders
from .errors import HarnessError, QueryCancelledError, StrataError

if TYPE_CHECKING:
    from .config.settings import DatabaseConfig
    from .connection.base import Connection
    from .db.sources import MigrationSource
    from .domain.context import Context
    from .domain.model import Model

logger = logging.getLogger(__name__)


class CleanupStrategy(str, Enum):
    """What :meth:`DatabaseHarness.session` does after each test."""

    TRUNCATE = "truncate"
    ROLLBACK = "rollback"
    RECREATE = "recreate"
    NONE = "none"


class _RollbackSignal(Exception):
    pass


class DatabaseHarness:
    def __init__(
        self,
        config: DatabaseConfig,
        migrations: Optional[MigrationSource] = None,
        cleanup: CleanupStrategy = CleanupStrategy.TRUNCATE,
        ready_timeout: float = 5.0,
        poll_interval: float = 0.05,
    ) -> None:
        self._config = config
        self._migrations = migrations
        self._cleanup = CleanupStrategy(cleanup)
        self._ready_timeout = ready_timeout
        self._poll_interval = poll_interval
        self._connection: Optional[Connection] = None
        self._migrator: Optional[SqlMigrator] = None

    @property
    def connection(self) -> Connection:
        if self._connection is None:
            raise HarnessError("harness is not set up")
        return self._connection

    @property
    def cleanup(self) -> CleanupStrategy:
        return self._cleanup

    def setup(self, ctx: Context) -> Connection:
        """Connect, wait until the database answers, then apply migrations."""
        try:
            connection = connect(self._config)
        except StrataError as exc:
            raise HarnessError(f"cannot connect to {self._config.dsn}", errors=(exc,)) from exc
        self._connection = connection
        self._wait_ready(ctx, connection)

        if self._migrations is not None:
            self._migrator = SqlMigrator(connection, self._migrations)
            try:
                self._migrator.up(ctx)
            except StrataError as exc:
                raise HarnessError("migrations failed during setup", errors=(exc,)) from exc
        logger.info("Test database ready", extra={"dsn": self._config.dsn})
        return connection

    @contextmanager
    def session(self, ctx: Context) -> Iterator[Connection]:
        """Yield a connection for one test and apply the cleanup strategy after it."""
        connection = self.connection
        if self._cleanup is CleanupStrategy.ROLLBACK:
            try:
                with connection.transaction_scope(ctx) as scoped:
                    yield scoped
                    raise _RollbackSignal()
            except _RollbackSignal:
                pass
            return

        try:
            yield connection
        finally:
            self._clean(ctx, connection)

    def seed(
        self,
        ctx: Context,
        model: type[Model],
        records: Iterable[Union[Model, Mapping[str, Any]]],
        *,
        connection: Optional[Connection] = None,
    ) -> int:
        """Insert ``records`` of ``model``; return how many were written."""
        return run_seeders(ctx, connection or self.connection, [RecordSeeder(model, records)])

    def teardown(self) -> None:
        if self._connection is None:
            return
        errors: tuple[BaseException, ...]
        if self._migrator is not None:
            errors = tuple(e for e in self._migrator.close() if e is not None)
        else:
            try:
                self._connection.close()
                errors = ()
            except StrataError as exc:
                errors = (exc,)
        self._connection = None
        self._migrator = None
        if errors:
            raise HarnessError("teardown failed", errors=errors)

    # -- internals -------------------------------------------------------------

    def _wait_ready(self, ctx: Context, connection: Connection) -> None:
        deadline = time.monotonic() + self._ready_timeout
        failures: list[StrataError] = []
        while True:
            try:
                connection.ping(ctx)
                return
            except QueryCancelledError:
                raise
            except StrataError as exc:
                failures.append(exc)
            if time.monotonic() >= deadline:
                raise HarnessError(
                    f"database not ready after {self._ready_timeout}s", errors=tuple(failures)
                )
            time.sleep(self._poll_interval)

    def _clean(self, ctx: Context, connection: Connection) -> None:
        if self._cleanup is CleanupStrategy.TRUNCATE:
            bookkeeping = self._migrator.table if self._migrator else None
            tables = [t for t in connection.table_names(ctx) if t != bookkeeping]
            if tables:
                connection.truncate(ctx, *tables)
        elif self._cleanup is CleanupStrategy.RECREATE:
            if self._migrator is not None:
                self._migrator.fresh(ctx)
            else:
                connection.drop_all(ctx)
