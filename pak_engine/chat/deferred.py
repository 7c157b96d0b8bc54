"""Deferred generation: image requests waiting for an aspect ratio."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Union

from ..turns import GenerationResult


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class AwaitingRatio:
    prompt: str


@dataclass(frozen=True)
class Resolved:
    """Terminal outcome of a resume attempt; the image itself is not retained."""

    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


DeferredState = Union[Idle, AwaitingRatio, Resolved]

IDLE = Idle()


class DeferredGenerations:
    """Per-message state keyed by message id: Idle -> AwaitingRatio -> Resolved.

    Pending entries never expire; they stay until resolved or abandoned. Any
    completed resume attempt resolves the entry, whether it succeeded or failed.
    """

    def __init__(self) -> None:
        self._states: dict[str, DeferredState] = {}
        self._lock = threading.Lock()

    def defer(self, message_id: str, prompt: str) -> AwaitingRatio:
        if not prompt:
            raise ValueError("A deferred generation needs a prompt.")
        state = AwaitingRatio(prompt=prompt)
        with self._lock:
            self._states[message_id] = state
        return state

    def state(self, message_id: str) -> DeferredState:
        with self._lock:
            return self._states.get(message_id, IDLE)

    def pending(self, message_id: str) -> AwaitingRatio | None:
        state = self.state(message_id)
        return state if isinstance(state, AwaitingRatio) else None

    def awaiting(self) -> dict[str, str]:
        with self._lock:
            return {key: state.prompt for key, state in self._states.items() if isinstance(state, AwaitingRatio)}

    def latest_pending(self) -> tuple[str, str] | None:
        awaiting = self.awaiting()
        if not awaiting:
            return None
        message_id = list(awaiting)[-1]
        return message_id, awaiting[message_id]

    def resolve(self, message_id: str, result: GenerationResult) -> Resolved:
        with self._lock:
            current = self._states.get(message_id, IDLE)
            if not isinstance(current, AwaitingRatio):
                raise KeyError(f"No pending generation for message {message_id!r}.")
            resolved = Resolved(error=result.error)
            self._states[message_id] = resolved
        return resolved

    def abandon(self, message_id: str) -> bool:
        with self._lock:
            current = self._states.get(message_id)
            if not isinstance(current, AwaitingRatio):
                return False
            del self._states[message_id]
        return True
