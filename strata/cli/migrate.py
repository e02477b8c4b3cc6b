from __future__ import annotations

import argparse
import sys
from typing import Iterable, List, Sequence

from strata.config.settings import load_config
from strata.connection.registry import connect
from strata.db.migrator import SqlMigrator
from strata.db.sources import DirectoryMigrationSource, Migration
from strata.domain.context import background
from strata.errors import StrataError
from strata.logging_config import get_logger


def _format_status(migrations: Iterable[Migration]) -> str:
    out_lines: List[str] = []
    for m in migrations:
        state = m.applied_at.isoformat(timespec="seconds") if m.applied_at else "pending"
        flag = "" if m.reversible else " (irreversible)"
        out_lines.append(f"V{m.version} {m.name}: {state}{flag}")
    return "\n".join(out_lines)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Apply or revert schema migrations")
    p.add_argument("--dsn", help="Database DSN (defaults to STRATA_DSN)")
    p.add_argument("--driver", help="Driver as engine[:dialect] (defaults to STRATA_DRIVER)")
    p.add_argument(
        "--path", help="Migration directory (defaults to STRATA_MIGRATIONS_PATH)"
    )
    sub = p.add_subparsers(dest="command", required=True)
    sub.add_parser("up", help="Apply every pending migration")
    down = sub.add_parser("down", help="Revert the latest migrations")
    down.add_argument("--steps", type=int, default=1, metavar="N", help="How many to revert")
    sub.add_parser("fresh", help="Drop everything and migrate from scratch")
    sub.add_parser("status", help="List migrations and their state")
    return p


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = get_logger()

    try:
        config = load_config(dsn=args.dsn, driver=args.driver, migrations_path=args.path)
    except ValueError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 1
    if not config.migrations_path:
        print("No migration directory given (--path or STRATA_MIGRATIONS_PATH)", file=sys.stderr)
        return 1

    ctx = background()
    try:
        connection = connect(config)
    except StrataError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    migrator = SqlMigrator(connection, DirectoryMigrationSource(config.migrations_path))
    try:
        if args.command == "up":
            applied = migrator.up(ctx)
            print(f"Applied {len(applied)} migration(s)" + (f": {', '.join(applied)}" if applied else ""))
        elif args.command == "down":
            reverted = migrator.down(ctx, args.steps)
            print(f"Reverted {len(reverted)} migration(s): {', '.join(reverted)}")
        elif args.command == "fresh":
            applied = migrator.fresh(ctx)
            print(f"Recreated schema with {len(applied)} migration(s)")
        else:
            rows = migrator.status(ctx)
            print(_format_status(rows) if rows else "No migrations found.")
    except (StrataError, ValueError) as exc:
        logger.error("Migration command failed", extra={"command": args.command, "error": str(exc)})
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        for error in migrator.close():
            if error is not None:
                logger.warning("Close failed", extra={"error": str(error)})
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
