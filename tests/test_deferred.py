from __future__ import annotations

import pytest

from pak_engine.chat.deferred import AwaitingRatio, DeferredGenerations, Idle, Resolved
from pak_engine.turns import GenerationResult


def test_unknown_message_is_idle() -> None:
    deferred = DeferredGenerations()
    assert isinstance(deferred.state("missing"), Idle)
    assert deferred.pending("missing") is None


def test_defer_then_resolve() -> None:
    deferred = DeferredGenerations()
    deferred.defer("m1", "a lion in the desert")

    assert deferred.pending("m1") == AwaitingRatio(prompt="a lion in the desert")
    assert deferred.awaiting() == {"m1": "a lion in the desert"}

    result = GenerationResult(text="done", image="data:image/png;base64,AAAA")
    resolved = deferred.resolve("m1", result)

    assert deferred.state("m1") == Resolved()
    assert resolved.succeeded
    assert deferred.awaiting() == {}


def test_failed_attempt_also_resolves() -> None:
    deferred = DeferredGenerations()
    deferred.defer("m1", "a lion")

    resolved = deferred.resolve("m1", GenerationResult(text="Failed", error="generation_failed"))

    assert resolved == Resolved(error="generation_failed")
    assert not resolved.succeeded
    assert deferred.pending("m1") is None
    assert deferred.latest_pending() is None


def test_resolve_without_pending_raises() -> None:
    deferred = DeferredGenerations()
    with pytest.raises(KeyError):
        deferred.resolve("m1", GenerationResult(text="x"))


def test_resolve_twice_raises() -> None:
    deferred = DeferredGenerations()
    deferred.defer("m1", "boat")
    deferred.resolve("m1", GenerationResult(text="ok"))
    with pytest.raises(KeyError):
        deferred.resolve("m1", GenerationResult(text="again"))


def test_abandon_returns_to_idle() -> None:
    deferred = DeferredGenerations()
    deferred.defer("m1", "boat")

    assert deferred.abandon("m1") is True
    assert isinstance(deferred.state("m1"), Idle)
    assert deferred.abandon("m1") is False


def test_latest_pending_is_most_recent() -> None:
    deferred = DeferredGenerations()
    deferred.defer("m1", "first")
    deferred.defer("m2", "second")

    assert deferred.latest_pending() == ("m2", "second")


def test_defer_requires_prompt() -> None:
    with pytest.raises(ValueError):
        DeferredGenerations().defer("m1", "")
