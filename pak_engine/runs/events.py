"""Append-only events stream for a conversation session."""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path
from typing import Any

from ..utils import now_utc_iso, sanitize_payload


@dataclass
class EventWriter:
    """Writes one JSON line per event to ``path``; mirrors events in memory only with ``keep_in_memory``."""

    path: Path | None
    session_id: str
    keep_in_memory: bool = False
    events: list[dict[str, Any]] = field(default_factory=list, repr=False, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, init=False)

    def emit(self, event_type: str, **payload: Any) -> dict[str, Any]:
        event = {
            "type": event_type,
            "session_id": self.session_id,
            "ts": now_utc_iso(),
        }
        event.update(sanitize_payload(payload))
        with self._lock:
            if self.keep_in_memory:
                self.events.append(event)
            if self.path is not None:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as handle:
                    handle.write(f"{json.dumps(event)}\n")
        return event

    def types(self) -> list[str]:
        with self._lock:
            return [str(event["type"]) for event in self.events]
