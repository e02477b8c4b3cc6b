from __future__ import annotations

from collections.abc import Generator

import pytest

from strata.connection.base import Connection
from strata.domain.context import Context, background
from tests.sample_models import open_db


@pytest.fixture
def ctx() -> Context:
    return background()


@pytest.fixture
def conn(ctx: Context) -> Generator[Connection, None, None]:
    connection = open_db(ctx)
    yield connection
    connection.close()
