"""Migration records and the sources they are loaded from."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional, Union

from ..errors import MigrationError

FILE_PATTERN = re.compile(r"^V(\d+)__(.+?)(?:\.(up|down))?\.sql$")


@dataclass(frozen=True)
class Migration:
    """One schema step.

    ``down`` is ``None`` for irreversible migrations and ``applied_at`` is
    ``None`` while the migration is pending.
    """

    version: str
    name: str
    up: str
    down: Optional[str] = None
    applied_at: Optional[datetime] = None

    @property
    def sort_key(self) -> tuple[int, int, str]:
        return version_key(self.version)

    @property
    def reversible(self) -> bool:
        return self.down is not None

    @property
    def applied(self) -> bool:
        return self.applied_at is not None


def version_key(version: str) -> tuple[int, int, str]:
    """Order numeric versions by value and the rest lexicographically after them.

    >>> sorted(["10", "9", "a"], key=version_key)
    ['9', '10', 'a']
    """
    if version.isdigit():
        return (0, int(version), version)
    return (1, 0, version)


def _sorted_unique(migrations: Iterable[Migration]) -> list[Migration]:
    seen: dict[str, Migration] = {}
    for migration in migrations:
        if migration.version in seen:
            raise MigrationError(f"duplicate migration version {migration.version}")
        seen[migration.version] = migration
    return sorted(seen.values(), key=lambda m: m.sort_key)


class MigrationSource(ABC):
    """Provides the ordered list of known migrations."""

    @abstractmethod
    def load(self) -> list[Migration]:
        """Return every migration, ascending by version."""

    def close(self) -> None:
        """Release the source; the default source holds nothing open."""


class MemoryMigrationSource(MigrationSource):
    """Migrations declared in code.

    Example:
        >>> source = MemoryMigrationSource([Migration("1", "init", "CREATE TABLE t (x)")])
        >>> [m.version for m in source.load()]
        ['1']
    """

    def __init__(self, migrations: Iterable[Migration]) -> None:
        self._migrations = _sorted_unique(migrations)

    def load(self) -> list[Migration]:
        return list(self._migrations)


class DirectoryMigrationSource(MigrationSource):
    """Loads ``V<version>__<name>[.up|.down].sql`` files from a directory.

    A plain ``V<version>__<name>.sql`` file is an up script without a down
    script.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self._path = Path(path)
        self._closed = False

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> list[Migration]:
        if self._closed:
            raise MigrationError("migration source is closed")
        if not self._path.is_dir():
            raise MigrationError(f"migration directory not found: {self._path}")

        ups: dict[str, tuple[str, str]] = {}
        downs: dict[str, tuple[str, str]] = {}
        for file in sorted(self._path.glob("V*__*.sql")):
            match = FILE_PATTERN.match(file.name)
            if not match:
                continue
            version, name, direction = match.groups()
            target = downs if direction == "down" else ups
            if version in target:
                raise MigrationError(
                    f"duplicate {direction or 'up'} script for version {version}: {file.name}"
                )
            target[version] = (name, file.read_text(encoding="utf-8"))

        orphans = sorted(set(downs) - set(ups), key=version_key)
        if orphans:
            raise MigrationError(f"down script without up script for version {orphans[0]}")

        migrations = []
        for version, (name, up) in ups.items():
            down = downs.get(version)
            if down is not None and down[0] != name:
                raise MigrationError(
                    f"version {version} has up script '{name}' but down script '{down[0]}'"
                )
            migrations.append(Migration(version, name, up, down[1] if down else None))
        return _sorted_unique(migrations)

    def close(self) -> None:
        self._closed = True
