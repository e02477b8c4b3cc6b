from __future__ import annotations

import time

import pytest

from strata.domain.context import Context, background, with_timeout
from strata.errors import DeadlineExceededError, QueryCancelledError


def test_background_is_never_done() -> None:
    ctx = background()
    assert not ctx.done()
    assert ctx.err() is None
    assert ctx.remaining() is None
    ctx.check()


def test_cancel_propagates_to_children_only() -> None:
    parent = background()
    child = parent.with_cancel()
    grandchild = child.with_timeout(60)
    child.cancel()
    assert child.done()
    assert grandchild.done()
    assert not parent.done()
    assert isinstance(grandchild.err(), QueryCancelledError)
    with pytest.raises(QueryCancelledError):
        grandchild.check()


def test_deadline_exceeded(monkeypatch: pytest.MonkeyPatch) -> None:
    ctx = with_timeout(0.5)
    assert not ctx.done()
    real_mono = time.monotonic
    monkeypatch.setattr("time.monotonic", lambda: real_mono() + 1.0)
    assert ctx.done()
    assert isinstance(ctx.err(), DeadlineExceededError)
    assert ctx.remaining() == 0.0


def test_child_deadline_never_outlives_parent() -> None:
    parent = background().with_timeout(1)
    child = parent.with_timeout(100)
    assert child.deadline == parent.deadline
    assert Context(parent=parent).deadline == parent.deadline


def test_negative_timeout_rejected() -> None:
    with pytest.raises(ValueError):
        background().with_timeout(-1)
