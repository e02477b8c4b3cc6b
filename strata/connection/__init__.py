"""Connections, adapters and the adapter registry."""

from .base import Adapter, Connection, Result
from .registry import connect, get_adapter, register_adapter, registered_adapters

__all__ = [
    "Adapter",
    "Connection",
    "Result",
    "connect",
    "get_adapter",
    "register_adapter",
    "registered_adapters",
]
