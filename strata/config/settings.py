"""Database connection settings.

Environment variables are loaded from a ``.env`` file using ``python-dotenv``
and exposed through an immutable Pydantic settings object. Nothing is read at
import time; call :func:`load_config` where a configuration is needed.
"""

from __future__ import annotations

import os
import re
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
DEFAULT_DRIVER = "sqlite:sqlite3"
DEFAULT_DSN = ":memory:"
BUSY_TIMEOUT = 5.0  # seconds
CACHE_TTL = 60.0  # seconds

_DRIVER_PATTERN = re.compile(r"^[a-z0-9_]+(:[a-z0-9_]+)?$")
_TRUTHY = {"1", "true", "yes", "on"}


class DatabaseConfig(BaseModel):
    """Immutable connection settings.

    ``driver`` reads ``engine[:dialect]``; the engine part names the adapter.
    """

    driver: str = DEFAULT_DRIVER
    dsn: str = DEFAULT_DSN
    busy_timeout: float = BUSY_TIMEOUT
    log_queries: bool = False
    migrations_path: Optional[str] = None
    cache_ttl: float = CACHE_TTL

    model_config = ConfigDict(frozen=True)

    @field_validator("driver")
    @classmethod
    def _check_driver(cls, value: str) -> str:
        if not _DRIVER_PATTERN.match(value):
            raise ValueError(f"driver must look like 'engine[:dialect]', got {value!r}")
        return value

    @field_validator("busy_timeout", "cache_ttl")
    @classmethod
    def _check_non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must be non-negative")
        return value

    @property
    def engine(self) -> str:
        return self.driver.split(":", 1)[0]

    @property
    def dialect(self) -> str:
        engine, _, dialect = self.driver.partition(":")
        return dialect or engine


def load_config(**overrides: Any) -> DatabaseConfig:
    """Build a :class:`DatabaseConfig` from ``STRATA_*`` environment variables.

    Keyword arguments that are not ``None`` take precedence over the
    environment.
    """
    load_dotenv()

    values: dict[str, Any] = {}
    env = {
        "driver": os.getenv("STRATA_DRIVER"),
        "dsn": os.getenv("STRATA_DSN"),
        "busy_timeout": os.getenv("STRATA_BUSY_TIMEOUT"),
        "migrations_path": os.getenv("STRATA_MIGRATIONS_PATH"),
        "cache_ttl": os.getenv("STRATA_CACHE_TTL"),
    }
    for key, value in env.items():
        if value:
            values[key] = value
    log_queries = os.getenv("STRATA_LOG_QUERIES")
    if log_queries is not None:
        values["log_queries"] = log_queries.strip().lower() in _TRUTHY

    values.update({k: v for k, v in overrides.items() if v is not None})
    return DatabaseConfig(**values)
