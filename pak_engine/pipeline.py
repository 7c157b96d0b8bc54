"""Two-stage image generation: primary backend, then the fallback."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Sequence

from .errors import GenerationFailed, QuotaExceeded, TurnCancelled, classify, is_quota_error
from .prompts.synthesis import build_generation_prompt
from .providers.base import ImageBackend, ProviderRegistry
from .runs.events import EventWriter
from .turns import ImageBlob
from .utils import monotonic_ms


@dataclass
class BackendAttempt:
    backend: str
    error: BaseException
    latency_ms: int


@dataclass
class PipelineOutcome:
    image: ImageBlob
    backend: str
    prompt: str
    failures: list[BackendAttempt] = field(default_factory=list)


class ImagePipeline:
    """Runs backends in order with one synthesized prompt.

    The prompt is built once and reused unchanged for every attempt. A later
    backend only runs after the previous one has failed, and never once
    ``cancel_event`` is set.
    """

    def __init__(
        self,
        backends: ProviderRegistry | Sequence[ImageBackend],
        events: EventWriter | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        if isinstance(backends, ProviderRegistry):
            backends = backends.providers()
        self.backends = list(backends)
        if not self.backends:
            raise ValueError("ImagePipeline needs at least one image backend.")
        self.events = events
        self.cancel_event = cancel_event or threading.Event()

    def generate(self, prompt: str, aspect_ratio: str) -> PipelineOutcome:
        synthesized = build_generation_prompt(prompt, aspect_ratio)
        failures: list[BackendAttempt] = []
        for backend in self.backends:
            if self.cancel_event.is_set():
                raise TurnCancelled("Image generation was cancelled.")
            started = monotonic_ms()
            try:
                image = backend.generate(synthesized, aspect_ratio)
            except Exception as exc:
                attempt = BackendAttempt(backend=backend.name, error=exc, latency_ms=monotonic_ms() - started)
                failures.append(attempt)
                self._emit(
                    "image_backend_failed",
                    backend=backend.name,
                    kind=classify(exc).value,
                    error=str(exc),
                    latency_ms=attempt.latency_ms,
                )
                continue
            self._emit(
                "image_generated",
                backend=backend.name,
                aspect_ratio=aspect_ratio,
                latency_ms=monotonic_ms() - started,
                fallback=bool(failures),
            )
            return PipelineOutcome(image=image, backend=backend.name, prompt=synthesized, failures=failures)

        last = failures[-1].error
        if any(is_quota_error(attempt.error) for attempt in failures):
            raise QuotaExceeded("Image generation quota exceeded. Please try again later.") from last
        raise GenerationFailed("Failed to generate image with all available backends.") from last

    def _emit(self, event_type: str, **payload: object) -> None:
        if self.events is not None:
            self.events.emit(event_type, **payload)
