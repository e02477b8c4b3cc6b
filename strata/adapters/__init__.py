"""Bundled engine adapters; importing this package registers them."""

from .sqlite import SqliteAdapter, SqliteConnection, SqliteGrammar

__all__ = ["SqliteAdapter", "SqliteConnection", "SqliteGrammar"]
