import json
import logging
from collections.abc import Generator
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest
from _pytest.logging import LogCaptureFixture

from strata.logging_config import LOG_NAME, CacheStats, JsonFormatter, get_logger


@pytest.fixture(autouse=True)
def reset_logger_handlers() -> Generator[None, None, None]:
    """Ensure tests run with a clean logger state."""
    logger = logging.getLogger(LOG_NAME)
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    yield
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True


def test_json_formatter_returns_json_with_extras() -> None:
    formatter = JsonFormatter()
    record = logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="hello",
        args=(),
        exc_info=None,
    )
    record.request_id = "abc"
    record.user = "alice"
    formatted = formatter.format(record)
    data = json.loads(formatted)
    assert data["level"] == "INFO"
    assert data["logger"] == "test"
    assert data["message"] == "hello"
    assert data["request_id"] == "abc"
    assert data["extra"]["user"] == "alice"
    assert "taskName" not in data.get("extra", {})


def test_get_logger_without_log_file_has_stream_handler_only(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.delenv("STRATA_LOG_FILE", raising=False)
    logger = get_logger()
    assert logger.name == "strata"
    assert len(logger.handlers) == 1
    assert not any(isinstance(h, RotatingFileHandler) for h in logger.handlers)


def test_get_logger_with_log_file_adds_rotating_handler(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    log_file = tmp_path / "logs" / "strata.log"
    monkeypatch.setenv("STRATA_LOG_FILE", str(log_file))
    logger = get_logger()
    assert len(logger.handlers) == 2
    assert any(isinstance(h, logging.StreamHandler) for h in logger.handlers)
    assert any(isinstance(h, RotatingFileHandler) for h in logger.handlers)
    assert log_file.parent.is_dir()
    # Configured once
    assert get_logger() is logger
    assert len(logger.handlers) == 2


def test_cache_stats_hit_miss_logic() -> None:
    stats = CacheStats()
    assert stats.hit_rate == 0.0
    stats.record_hit()
    assert stats.hit_rate == 100.0
    stats.record_miss()
    assert stats.hit_rate == 50.0
    assert (stats.hits, stats.misses) == (1, 1)


def test_cache_stats_logging(caplog: LogCaptureFixture) -> None:
    stats = CacheStats("users")
    stats.record_hit()
    stats.record_miss()
    expected_rate = round(stats.hit_rate, 2)
    caplog.set_level(logging.INFO, logger=f"{LOG_NAME}.cache")
    stats.log_hit_rate()
    records = [r for r in caplog.records if r.name == f"{LOG_NAME}.cache"]
    assert len(records) == 1
    record = records[0]
    assert record.levelno == logging.INFO
    assert record.getMessage() == "Cache hit-rate"
    data = json.loads(JsonFormatter().format(record))
    assert data["extra"]["hit_rate"] == expected_rate
    assert data["extra"]["cache"] == "users"
