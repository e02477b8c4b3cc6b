"""SQLite adapter built on the standard ``sqlite3`` driver.

The connection runs in autocommit mode and brackets transactions itself with
``BEGIN``/``COMMIT``; nested scopes use savepoints. Statements are interrupted
through a progress handler once the caller's context is done.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime
from typing import TYPE_CHECKING, Any, Iterator, Optional

from ..connection.base import Adapter, Connection, Result
from ..connection.registry import register_adapter
from ..errors import (
    ConnectionClosedError,
    ConstraintError,
    EngineError,
    RollbackError,
)
from ..query.grammar import Grammar, quote_identifier

if TYPE_CHECKING:
    from ..config.settings import DatabaseConfig
    from ..domain.context import Context

logger = logging.getLogger(__name__)

# Virtual machine steps between two cancellation checks
PROGRESS_STEPS = 1000

sqlite3.register_adapter(datetime, lambda value: value.isoformat())
sqlite3.register_adapter(date, lambda value: value.isoformat())


def _dict_factory(cursor: sqlite3.Cursor, row: tuple[Any, ...]) -> dict[str, Any]:
    return {column[0]: value for column, value in zip(cursor.description, row)}


def split_statements(script: str) -> list[str]:
    """Split a SQL script into complete statements.

    >>> split_statements("CREATE TABLE a (x); INSERT INTO a VALUES (';');")
    ['CREATE TABLE a (x);', "INSERT INTO a VALUES (';');"]
    """
    statements = []
    start = 0
    for index, char in enumerate(script):
        if char == ";" and sqlite3.complete_statement(script[start : index + 1]):
            statement = script[start : index + 1].strip()
            if statement != ";":
                statements.append(statement)
            start = index + 1
    tail = script[start:].strip()
    if tail and any(
        line.strip() and not line.strip().startswith("--") for line in tail.splitlines()
    ):
        statements.append(tail)
    return statements


def _referencing_first(connection: Connection, ctx: Context, tables: list[str]) -> list[str]:
    """Order ``tables`` so that tables holding foreign keys come before their targets."""
    references = {
        table: {
            row["table"]
            for row in connection.select(ctx, f"PRAGMA foreign_key_list({quote_identifier(table)})")
        }
        - {table}
        for table in tables
    }
    ordered: list[str] = []
    remaining = set(tables)
    while remaining:
        ready = sorted(
            t for t in remaining if not any(t in references[o] for o in remaining if o != t)
        )
        if not ready:
            # reference cycle; deferred foreign keys cover it
            ready = sorted(remaining)
        ordered.extend(ready)
        remaining.difference_update(ready)
    return ordered


class SqliteGrammar(Grammar):
    def compile_limit(self, limit: Optional[int], offset: Optional[int], args: list[Any]) -> str:
        if limit is None and offset is not None:
            # SQLite only accepts OFFSET after a LIMIT
            args.append(offset)
            return f"LIMIT -1 OFFSET {self.placeholder}"
        return super().compile_limit(limit, offset, args)


class SqliteConnection(Connection):
    """Connection over one ``sqlite3`` handle.

    All statements run under a re-entrant lock, held for the whole duration of
    a transaction scope, so one handle can be shared between threads.
    """

    grammar = SqliteGrammar()

    def __init__(
        self,
        raw: sqlite3.Connection,
        *,
        log_queries: bool = False,
        lock: Optional[threading.RLock] = None,
        depth: int = 0,
        cache_ttl: Optional[float] = None,
    ) -> None:
        self._raw = raw
        self.cache_ttl = cache_ttl
        self._log_queries = log_queries
        self._lock = lock or threading.RLock()
        self._depth = depth
        self._closed = False

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @property
    def closed(self) -> bool:
        return self._closed

    def get_connection(self) -> sqlite3.Connection:
        self._ensure_open()
        return self._raw

    def ping(self, ctx: Context) -> None:
        self._execute(ctx, "SELECT 1", (), fetch=True, operation="ping")

    def close(self) -> None:
        if self._depth:
            # Scoped connections end with their transaction
            return
        with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                self._raw.close()
            except sqlite3.Error as exc:
                raise EngineError(str(exc), operation="close") from exc

    def select(self, ctx: Context, sql: str, *args: Any) -> list[dict[str, Any]]:
        return self._execute(ctx, sql, args, fetch=True)

    def statement(self, ctx: Context, sql: str, *args: Any) -> Result:
        return self._execute(ctx, sql, args, fetch=False)  # type: ignore[return-value]

    def execute_script(self, ctx: Context, script: str) -> None:
        for sql in split_statements(script):
            self._execute(ctx, sql, (), fetch=False)

    def table_names(self, ctx: Context) -> list[str]:
        rows = self.select(
            ctx,
            "SELECT name FROM sqlite_master WHERE type = 'table'"
            " AND name NOT LIKE 'sqlite\\_%' ESCAPE '\\' ORDER BY name",
        )
        return [row["name"] for row in rows]

    def truncate(self, ctx: Context, *tables: str) -> None:
        targets = list(tables) or self.table_names(ctx)
        if not targets:
            return
        with self.transaction_scope(ctx) as scoped:
            scoped.statement(ctx, "PRAGMA defer_foreign_keys = ON")
            for table in targets:
                scoped.statement(ctx, f"DELETE FROM {quote_identifier(table)}")
            if scoped.select(
                ctx, "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'sqlite_sequence'"
            ):
                placeholders = ", ".join("?" for _ in targets)
                scoped.statement(
                    ctx, f"DELETE FROM sqlite_sequence WHERE name IN ({placeholders})", *targets
                )

    def drop_all(self, ctx: Context) -> None:
        objects = self.select(
            ctx,
            "SELECT type, name FROM sqlite_master WHERE type IN ('view', 'table')"
            " AND name NOT LIKE 'sqlite\\_%' ESCAPE '\\'",
        )
        if not objects:
            return
        views = [o["name"] for o in objects if o["type"] == "view"]
        tables = [o["name"] for o in objects if o["type"] == "table"]
        with self.transaction_scope(ctx) as scoped:
            scoped.statement(ctx, "PRAGMA defer_foreign_keys = ON")
            for view in views:
                scoped.statement(ctx, f"DROP VIEW IF EXISTS {quote_identifier(view)}")
            for table in _referencing_first(scoped, ctx, tables):
                scoped.statement(ctx, f"DROP TABLE IF EXISTS {quote_identifier(table)}")
        logger.info("Dropped schema objects", extra={"count": len(objects)})

    @contextmanager
    def transaction_scope(self, ctx: Context) -> Iterator[SqliteConnection]:
        self._ensure_open()
        ctx.check()
        with self._lock:
            depth = self._depth + 1
            savepoint = f"strata_sp_{depth}" if self._depth else None
            self._control("SAVEPOINT " + savepoint if savepoint else "BEGIN")
            scoped = SqliteConnection(
                self._raw,
                log_queries=self._log_queries,
                lock=self._lock,
                depth=depth,
                cache_ttl=self.cache_ttl,
            )
            try:
                yield scoped
            except BaseException as exc:
                self._rollback(savepoint, exc)
                raise
            else:
                self._commit(savepoint)
            finally:
                scoped._closed = True

    # -- internals -------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            if self._depth:
                raise ConnectionClosedError("transaction-scoped connection used after its scope")
            raise ConnectionClosedError("connection is closed")

    def _control(self, sql: str) -> None:
        if self._log_queries:
            logger.debug("SQL", extra={"sql": sql})
        try:
            self._raw.execute(sql)
        except sqlite3.IntegrityError as exc:
            raise ConstraintError(str(exc), operation="transaction", sql=sql) from exc
        except sqlite3.Error as exc:
            raise EngineError(str(exc), operation="transaction", sql=sql) from exc

    def _commit(self, savepoint: Optional[str]) -> None:
        sql = f"RELEASE SAVEPOINT {savepoint}" if savepoint else "COMMIT"
        try:
            self._control(sql)
        except EngineError as exc:
            self._rollback(savepoint, exc)
            raise

    def _rollback(self, savepoint: Optional[str], original: BaseException) -> None:
        if not self._raw.in_transaction:
            return
        try:
            if savepoint:
                self._raw.execute(f"ROLLBACK TO SAVEPOINT {savepoint}")
                self._raw.execute(f"RELEASE SAVEPOINT {savepoint}")
            else:
                self._raw.execute("ROLLBACK")
        except sqlite3.Error as exc:
            raise RollbackError(original, exc) from original
        logger.info(
            "Transaction rolled back",
            extra={"savepoint": savepoint, "error": type(original).__name__},
        )

    def _execute(
        self,
        ctx: Context,
        sql: str,
        args: tuple[Any, ...],
        *,
        fetch: bool,
        operation: Optional[str] = None,
    ) -> Any:
        self._ensure_open()
        ctx.check()
        if self._log_queries:
            logger.debug("SQL", extra={"sql": sql, "args": list(args)})
        with self._lock:
            self._raw.set_progress_handler(lambda: 1 if ctx.done() else 0, PROGRESS_STEPS)
            try:
                cursor = self._raw.execute(sql, args)
                if fetch:
                    return cursor.fetchall()
                return Result(max(cursor.rowcount, 0), cursor.lastrowid)
            except sqlite3.IntegrityError as exc:
                raise ConstraintError(str(exc), operation=operation, sql=sql) from exc
            except sqlite3.OperationalError as exc:
                cancelled = ctx.err()
                if cancelled is not None:
                    logger.warning("Statement interrupted", extra={"reason": str(cancelled)})
                    raise cancelled from exc
                raise EngineError(str(exc), operation=operation, sql=sql) from exc
            except sqlite3.Error as exc:
                raise EngineError(str(exc), operation=operation, sql=sql) from exc
            finally:
                self._raw.set_progress_handler(None, 0)


class SqliteAdapter(Adapter):
    def name(self) -> str:
        return "sqlite"

    def connect(self, config: DatabaseConfig) -> SqliteConnection:
        try:
            raw = sqlite3.connect(
                config.dsn,
                timeout=config.busy_timeout,
                isolation_level=None,
                check_same_thread=False,
                uri=config.dsn.startswith("file:"),
            )
            raw.row_factory = _dict_factory
            raw.execute("PRAGMA foreign_keys = ON")
        except sqlite3.Error as exc:
            raise EngineError(str(exc), operation="connect") from exc
        logger.debug("Opened SQLite database", extra={"dsn": config.dsn})
        return SqliteConnection(raw, log_queries=config.log_queries, cache_ttl=config.cache_ttl)


register_adapter("sqlite", SqliteAdapter)
