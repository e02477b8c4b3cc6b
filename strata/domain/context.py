"""Cancellable, deadline-bound execution context.

Every public operation takes a :class:`Context` as its first argument. A
context is done once it, or any of its parents, is cancelled or past its
deadline.

>>> ctx = background()
>>> ctx.done()
False
>>> child = ctx.with_cancel()
>>> child.cancel()
>>> child.done(), ctx.done()
(True, False)
"""

from __future__ import annotations

import threading
import time
from typing import Optional

from ..errors import DeadlineExceededError, QueryCancelledError


class Context:
    """Execution context carrying a cancel flag and an optional deadline.

    Deadlines are absolute values of :func:`time.monotonic`.
    """

    def __init__(
        self, *, deadline: Optional[float] = None, parent: Optional[Context] = None
    ) -> None:
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self._deadline = deadline
        self._parent = parent
        self._cancelled = threading.Event()

    @property
    def deadline(self) -> Optional[float]:
        return self._deadline

    def with_timeout(self, seconds: float) -> Context:
        """Return a child context that expires ``seconds`` from now."""
        if seconds < 0:
            raise ValueError("timeout must be non-negative")
        return Context(deadline=time.monotonic() + seconds, parent=self)

    def with_cancel(self) -> Context:
        """Return a child context that can be cancelled on its own."""
        return Context(parent=self)

    def cancel(self) -> None:
        self._cancelled.set()

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, ``None`` when there is none."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def done(self) -> bool:
        return self.err() is not None

    def err(self) -> Optional[QueryCancelledError]:
        """Return the error describing why the context is done, if it is."""
        if self._cancelled.is_set():
            return QueryCancelledError("context cancelled")
        if self._deadline is not None and time.monotonic() >= self._deadline:
            return DeadlineExceededError("context deadline exceeded")
        if self._parent is not None:
            return self._parent.err()
        return None

    def check(self) -> None:
        """Raise the cancellation error when the context is done."""
        error = self.err()
        if error is not None:
            raise error


def background() -> Context:
    """Return a fresh context that is never cancelled and has no deadline."""
    return Context()


def with_timeout(seconds: float) -> Context:
    return background().with_timeout(seconds)
