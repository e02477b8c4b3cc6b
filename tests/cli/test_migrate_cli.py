from __future__ import annotations

import logging
from collections.abc import Generator
from pathlib import Path

import pytest

from strata.cli import migrate
from strata.config import settings as settings_module
from strata.logging_config import LOG_NAME


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setattr(settings_module, "load_dotenv", lambda *a, **k: False)
    for name in ("STRATA_DSN", "STRATA_DRIVER", "STRATA_MIGRATIONS_PATH", "STRATA_LOG_FILE"):
        monkeypatch.delenv(name, raising=False)
    yield
    logger = logging.getLogger(LOG_NAME)
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True


@pytest.fixture
def migrations(tmp_path: Path) -> Path:
    directory = tmp_path / "migrations"
    directory.mkdir()
    (directory / "V1__create_users.up.sql").write_text(
        "CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT);", encoding="utf-8"
    )
    (directory / "V1__create_users.down.sql").write_text("DROP TABLE users;", encoding="utf-8")
    (directory / "V2__seed_users.sql").write_text(
        "INSERT INTO users (name) VALUES ('admin');", encoding="utf-8"
    )
    return directory


def _run(dsn: Path, path: Path, *command: str) -> int:
    return migrate.main(["--dsn", str(dsn), "--path", str(path), *command])


def test_up_status_down(
    tmp_path: Path, migrations: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    db = tmp_path / "app.db"

    assert _run(db, migrations, "status") == 0
    out = capsys.readouterr().out
    assert "V1 create_users: pending" in out
    assert "V2 seed_users: pending (irreversible)" in out

    assert _run(db, migrations, "up") == 0
    assert capsys.readouterr().out.strip() == "Applied 2 migration(s): 1, 2"

    assert _run(db, migrations, "up") == 0
    assert capsys.readouterr().out.strip() == "Applied 0 migration(s)"

    assert _run(db, migrations, "status") == 0
    assert "pending" not in capsys.readouterr().out

    assert _run(db, migrations, "down") == 1
    assert "no down script" in capsys.readouterr().err


def test_fresh_and_down(
    tmp_path: Path, migrations: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    db = tmp_path / "app.db"
    (migrations / "V2__seed_users.sql").unlink()

    assert _run(db, migrations, "fresh") == 0
    assert capsys.readouterr().out.strip() == "Recreated schema with 1 migration(s)"

    assert _run(db, migrations, "down", "--steps", "1") == 0
    assert capsys.readouterr().out.strip() == "Reverted 1 migration(s): 1"


def test_configuration_from_environment(
    tmp_path: Path,
    migrations: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.setenv("STRATA_DSN", str(tmp_path / "env.db"))
    monkeypatch.setenv("STRATA_MIGRATIONS_PATH", str(migrations))
    assert migrate.main(["up"]) == 0
    assert "Applied 2" in capsys.readouterr().out
    assert (tmp_path / "env.db").exists()


def test_empty_directory_status(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    empty = tmp_path / "empty"
    empty.mkdir()
    assert _run(tmp_path / "app.db", empty, "status") == 0
    assert capsys.readouterr().out.strip() == "No migrations found."


def test_usage_errors(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert migrate.main(["--dsn", str(tmp_path / "app.db"), "up"]) == 1
    assert "No migration directory" in capsys.readouterr().err

    assert migrate.main(["--driver", "Not Valid", "--path", str(tmp_path), "up"]) == 1
    assert "Invalid configuration" in capsys.readouterr().err

    assert _run(tmp_path / "app.db", tmp_path / "missing", "up") == 1
    assert "not found" in capsys.readouterr().err

    with pytest.raises(SystemExit):
        migrate.main([])
