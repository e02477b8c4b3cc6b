"""Process-wide adapter registry.

Adapters register a zero-argument factory under their engine name; the
engine part of ``DatabaseConfig.driver`` selects one at connect time.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Callable

from ..errors import UnregisteredAdapterError
from .base import Adapter, Connection

if TYPE_CHECKING:
    from ..config.settings import DatabaseConfig

AdapterFactory = Callable[[], Adapter]

_adapters: dict[str, AdapterFactory] = {}
_lock = threading.Lock()


def register_adapter(name: str, factory: AdapterFactory) -> None:
    """Register ``factory`` under ``name``; a later registration replaces it."""
    if not name:
        raise ValueError("adapter name must not be empty")
    with _lock:
        _adapters[name] = factory


def unregister_adapter(name: str) -> None:
    with _lock:
        _adapters.pop(name, None)


def get_adapter(name: str) -> Adapter:
    with _lock:
        factory = _adapters.get(name)
    if factory is None:
        raise UnregisteredAdapterError(name)
    return factory()


def registered_adapters() -> list[str]:
    with _lock:
        return sorted(_adapters)


def connect(config: DatabaseConfig) -> Connection:
    """Open a connection with the adapter named by ``config.engine``."""
    return get_adapter(config.engine).connect(config)
