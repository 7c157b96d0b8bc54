"""Conversation session orchestration."""

from __future__ import annotations

import threading
import uuid
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence

from .chat.deferred import DeferredGenerations
from .chat.dispatcher import ToolDispatcher
from .errors import FailureKind, PakError, classify, user_message
from .memory.consistency import ConsistencyMemory, MemorySnapshot
from .pipeline import ImagePipeline
from .prompts.synthesis import ConsistencySettings
from .providers import default_gateway
from .providers.base import ModelGateway, ProviderRegistry
from .runs.events import EventWriter
from .studio.consistency import ConsistencyStudio, ControlledGeneration
from .studio.smart_resize import SmartResizer, SmartResizeRequest, SmartResizeResult
from .turns import ConversationTurn, GenerationResult, ImageBlob
from .utils import clean_text_for_speech, getenv_flag, getenv_float

NO_PENDING_TEXT = "There is no pending image generation for that message."

ImageInput = ImageBlob | bytes | str


class PakEngine:
    """One conversation session.

    Holds the history, the consistency memory and the deferred generations of
    a single user. Turns on the same engine are serialized by a session lock;
    separate engines share no mutable state.
    """

    def __init__(
        self,
        gateway: ModelGateway | None = None,
        backends: ProviderRegistry | None = None,
        *,
        events_path: Path | None = None,
        session_id: str | None = None,
        dry_run: bool | None = None,
        timeout_s: float | None = None,
        reroute_with_images: bool = True,
    ) -> None:
        if gateway is None or backends is None:
            if dry_run is None:
                dry_run = getenv_flag("PAK_DRYRUN", False)
            if timeout_s is None:
                timeout_s = getenv_float("PAK_CALL_TIMEOUT_S")
            default, default_backends = default_gateway(dry_run=dry_run, timeout_s=timeout_s)
            gateway = gateway or default
            backends = backends or default_backends
        self.session_id = session_id or str(uuid.uuid4())
        self.gateway = gateway
        self.events = EventWriter(events_path, self.session_id)
        self.history: list[ConversationTurn] = []
        self.memory = ConsistencyMemory()
        self.deferred = DeferredGenerations()
        self._cancel = threading.Event()
        self.pipeline = ImagePipeline(backends, events=self.events, cancel_event=self._cancel)
        self._lock = threading.RLock()
        self.dispatcher = ToolDispatcher(
            gateway,
            self.memory,
            self.pipeline,
            events=self.events,
            reroute_with_images=reroute_with_images,
            cancel_event=self._cancel,
        )
        self.studio = ConsistencyStudio(gateway, self.memory, events=self.events)
        self.resizer = SmartResizer(gateway)
        self.events.emit(
            "session_started",
            gateway=gateway.name,
            backends=[backend.name for backend in self.pipeline.backends],
        )

    def send_turn(
        self,
        text: str,
        images: Iterable[ImageInput] = (),
        history: Sequence[ConversationTurn] | None = None,
    ) -> tuple[str, GenerationResult]:
        """Process one user turn; returns the id of the response message and its result.

        With ``history=None`` the session history is used and updated: the user
        turn is always recorded, the model turn only when it did not fail.
        """
        message_id = uuid.uuid4().hex
        try:
            blobs = [_coerce_image(image) for image in images]
        except (TypeError, ValueError) as exc:
            return message_id, self._rejected_image(message_id, exc)
        turn = ConversationTurn.user(text, blobs)
        with self._lock:
            self._cancel.clear()
            use_session = history is None
            context = list(self.history) if use_session else list(history or ())
            self.events.emit("turn_started", message_id=message_id, text=text, images=len(blobs))
            result = self.dispatcher.dispatch(turn, context)
            if result.needs_aspect_ratio and result.pending_prompt:
                self.deferred.defer(message_id, result.pending_prompt)
                self.events.emit("turn_deferred", message_id=message_id, prompt=result.pending_prompt)
            if use_session:
                if not turn.is_empty():
                    self.history.append(turn)
                if not result.is_error:
                    self._record_model_turn(result)
            self._finish(message_id, result)
        return message_id, result

    def resume_deferred(self, message_id: str, prompt: str | None, aspect_ratio: str) -> GenerationResult:
        """Complete a generation that was waiting for an aspect ratio.

        Any completed attempt, successful or not, resolves the pending entry.
        """
        with self._lock:
            self._cancel.clear()
            pending = self.deferred.pending(message_id)
            if pending is None:
                result = GenerationResult(text=NO_PENDING_TEXT, error=FailureKind.GENERATION_FAILED.value)
                self._finish(message_id, result)
                return result
            result = self.dispatcher.resume(prompt or pending.prompt, aspect_ratio)
            self.deferred.resolve(message_id, result)
            if not result.is_error:
                self._record_model_turn(result)
            self._finish(message_id, result)
            return result

    def resize(
        self,
        image: ImageInput,
        aspect_ratio: str,
        original_prompt: str | None = None,
        mime_type: str | None = None,
    ) -> GenerationResult:
        message_id = uuid.uuid4().hex
        try:
            blob = _coerce_image(image, mime_type)
        except (TypeError, ValueError) as exc:
            return self._rejected_image(message_id, exc)
        with self._lock:
            self._cancel.clear()
            self.events.emit("turn_started", message_id=message_id, action="resize", aspect_ratio=aspect_ratio)
            result = self.dispatcher.resize(blob, aspect_ratio, original_prompt)
            self._finish(message_id, result)
            return result

    def set_reference(self, attribute: str, image: ImageInput | None, mime_type: str | None = None) -> None:
        with self._lock:
            self.memory.set(attribute, image, mime_type)
            if self.memory.get(attribute) is None:
                self.events.emit("memory_cleared", attribute=attribute)
            else:
                self.events.emit("memory_updated", attribute=attribute, source="upload")

    def clear_reference(self, attribute: str | None = None) -> None:
        with self._lock:
            if attribute is None:
                self.memory.clear_all()
            else:
                self.memory.clear(attribute)
            self.events.emit("memory_cleared", attribute=attribute or "all")

    def memory_snapshot(self) -> MemorySnapshot:
        return self.memory.snapshot()

    def extract_reference(self, image: ImageInput, attribute: str) -> GenerationResult:
        """Isolate ``attribute`` from ``image`` and store it; memory is untouched on failure."""
        try:
            blob = _coerce_image(image)
        except (TypeError, ValueError) as exc:
            return self._rejected_image(uuid.uuid4().hex, exc)
        with self._lock:
            try:
                extracted = self.studio.extract_element(blob, attribute)
            except PakError as exc:
                self.events.emit("turn_failed", kind=classify(exc).value, error=str(exc))
                return GenerationResult(text=user_message(exc, f"extract the {attribute}"), error=classify(exc).value)
        return GenerationResult(text=f"Saved the {attribute} reference.", image=extracted.to_data_uri())

    def generate_with_control(
        self,
        prompt: str,
        settings: ConsistencySettings | Mapping[str, str] | None = None,
        aspect_ratio: str = "1:1",
    ) -> ControlledGeneration:
        with self._lock:
            return self.studio.generate_with_control(prompt, settings, aspect_ratio)

    def smart_resize(self, request: SmartResizeRequest) -> SmartResizeResult:
        with self._lock:
            return self.resizer.smart_resize(request)

    def speak(self, text: str) -> bytes:
        """Raw 24 kHz 16-bit mono PCM for ``text``; raises ``NoAudioProduced`` when empty."""
        return self.gateway.synthesize_speech(clean_text_for_speech(text))

    def cancel(self) -> None:
        """Abort the in-flight turn at its next gateway boundary."""
        self._cancel.set()

    def pending_generations(self) -> dict[str, str]:
        return self.deferred.awaiting()

    def _record_model_turn(self, result: GenerationResult) -> None:
        image = result.image_blob()
        reply = ConversationTurn.model(result.text, [image] if image else [])
        if not reply.is_empty():
            self.history.append(reply)

    def _rejected_image(self, message_id: str, error: Exception) -> GenerationResult:
        result = GenerationResult(
            text=user_message(error, "read the attached image"),
            error=FailureKind.GENERATION_FAILED.value,
        )
        self.events.emit("turn_failed", message_id=message_id, kind=result.error, error=str(error))
        self._finish(message_id, result)
        return result

    def _finish(self, message_id: str, result: GenerationResult) -> None:
        payload: dict[str, Any] = {
            "message_id": message_id,
            "has_image": bool(result.image),
            "needs_aspect_ratio": result.needs_aspect_ratio,
            "reset_memory": result.reset_memory,
        }
        if result.error == FailureKind.CANCELLED.value:
            self.events.emit("turn_cancelled", message_id=message_id)
            return
        if result.error:
            payload["error"] = result.error
        self.events.emit("turn_completed", **payload)


def _coerce_image(image: ImageInput, mime_type: str | None = None) -> ImageBlob:
    if isinstance(image, ImageBlob):
        return image
    if isinstance(image, (bytes, bytearray)):
        return ImageBlob(data=bytes(image), mime_type=mime_type or "image/png")
    if isinstance(image, str):
        return ImageBlob.from_base64(image, mime_type)
    raise TypeError(f"Unsupported image type: {type(image).__name__}")
