"""Baseline data seeding through repositories."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Generic, Iterable, Mapping, Sequence, TypeVar, Union

from ..domain.model import Model

if TYPE_CHECKING:
    from ..connection.base import Connection
    from ..domain.context import Context

M = TypeVar("M", bound=Model)

logger = logging.getLogger(__name__)


class Seeder(ABC):
    """Inserts a fixed data set."""

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    def run(self, ctx: Context, connection: Connection) -> int:
        """Seed through ``connection``; return the number of records written."""


class RecordSeeder(Seeder, Generic[M]):
    """Seeds ``records`` of one model, given as instances or column mappings.

    Example:
        >>> seeder = RecordSeeder(Role, [{"name": "admin"}, Role(name="editor")])  # doctest: +SKIP
        >>> seeder.run(background(), connection)                                    # doctest: +SKIP
        2
    """

    def __init__(
        self,
        model: type[M],
        records: Iterable[Union[M, Mapping[str, Any]]],
        *,
        batch_size: int = 100,
    ) -> None:
        self._model = model
        self._records = list(records)
        self._batch_size = batch_size

    @property
    def name(self) -> str:
        return f"{type(self).__name__}({self._model.__name__})"

    def run(self, ctx: Context, connection: Connection) -> int:
        instances = [
            r if isinstance(r, self._model) else self._model(**r)  # type: ignore[arg-type]
            for r in self._records
        ]
        connection.new_repository(self._model).create_in_batches(ctx, instances, self._batch_size)
        return len(instances)


def run_seeders(ctx: Context, connection: Connection, seeders: Sequence[Seeder]) -> int:
    """Run ``seeders`` in order inside one transaction; return the records written."""

    def run(scoped: Connection) -> int:
        total = 0
        for seeder in seeders:
            written = seeder.run(ctx, scoped)
            logger.info("Seeded", extra={"seeder": seeder.name, "records": written})
            total += written
        return total

    return connection.transaction(ctx, run)
