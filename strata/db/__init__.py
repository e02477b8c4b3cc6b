"""Schema migrations and data seeding."""

from .migrator import Migrator, SqlMigrator
from .seeder import RecordSeeder, Seeder, run_seeders
from .sources import (
    DirectoryMigrationSource,
    MemoryMigrationSource,
    Migration,
    MigrationSource,
)

__all__ = [
    "DirectoryMigrationSource",
    "MemoryMigrationSource",
    "Migration",
    "MigrationSource",
    "Migrator",
    "RecordSeeder",
    "Seeder",
    "SqlMigrator",
    "run_seeders",
]
