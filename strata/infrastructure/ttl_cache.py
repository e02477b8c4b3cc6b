from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Generic, Optional, Tuple, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class Cache(ABC):
    """Key/value side-channel used by repositories; never authoritative."""

    @abstractmethod
    def get(self, key: str) -> Tuple[Any, bool]:
        """Return ``(value, True)`` on a hit and ``(None, False)`` otherwise."""

    @abstractmethod
    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abstractmethod
    def flush(self) -> None:
        pass


class TTLCache(Cache, Generic[K, V]):
    """Simple in-memory TTL cache.

    - Stores values with an absolute expiry computed from ``ttl_seconds``
      (or the per-entry ``ttl`` given to :meth:`set`).
    - Uses ``time.monotonic()`` for steady time measurement.
    - Safe to share between threads.
    """

    def __init__(self, ttl_seconds: float) -> None:
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be non-negative")
        self._ttl = float(ttl_seconds)
        self._store: Dict[K, Tuple[float, V]] = {}
        self._lock = threading.Lock()

    def get(self, key: K) -> Tuple[Optional[V], bool]:  # type: ignore[override]
        now = time.monotonic()
        with self._lock:
            item = self._store.get(key)
            if item is None:
                return None, False
            expiry, value = item
            if now >= expiry:
                # Expired
                self._store.pop(key, None)
                return None, False
            return value, True

    def set(self, key: K, value: V, ttl: Optional[float] = None) -> None:  # type: ignore[override]
        if ttl is not None and ttl < 0:
            raise ValueError("ttl must be non-negative")
        expiry = time.monotonic() + (self._ttl if ttl is None else float(ttl))
        with self._lock:
            self._store[key] = (expiry, value)

    def delete(self, key: K) -> None:  # type: ignore[override]
        with self._lock:
            self._store.pop(key, None)

    def flush(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        now = time.monotonic()
        with self._lock:
            return sum(1 for expiry, _ in self._store.values() if expiry > now)
