"""strata: repositories, query building, relationships and migrations over
interchangeable storage engines.

Importing the package registers the bundled adapters (``sqlite``).
"""

from . import adapters  # noqa: F401  (registers the bundled adapters)
from .config.settings import DatabaseConfig, load_config
from .connection import Adapter, Connection, Result, connect, register_adapter
from .db import (
    DirectoryMigrationSource,
    MemoryMigrationSource,
    Migration,
    RecordSeeder,
    Seeder,
    SqlMigrator,
    run_seeders,
)
from .domain.context import Context, background, with_timeout
from .domain.model import Model
from .domain.relations import belongs_to, belongs_to_many, has_many, has_one
from .errors import NotFoundError, StrataError
from .infrastructure.ttl_cache import Cache, TTLCache
from .query import QueryBuilder, RelationshipResolver
from .repositories import QueryRepository, Repository

__version__ = "0.1.0"

__all__ = [
    "Adapter",
    "Cache",
    "Connection",
    "Context",
    "DatabaseConfig",
    "DirectoryMigrationSource",
    "MemoryMigrationSource",
    "Migration",
    "Model",
    "NotFoundError",
    "QueryBuilder",
    "QueryRepository",
    "RecordSeeder",
    "RelationshipResolver",
    "Repository",
    "Result",
    "Seeder",
    "SqlMigrator",
    "StrataError",
    "TTLCache",
    "background",
    "belongs_to",
    "belongs_to_many",
    "connect",
    "has_many",
    "has_one",
    "load_config",
    "register_adapter",
    "run_seeders",
    "with_timeout",
]
