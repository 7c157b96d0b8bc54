"""Routes a chat turn to the capability the model selected."""

from __future__ import annotations

import threading
from typing import Any, Callable, Mapping, Sequence

from ..aspect_ratios import measure_ratio
from ..errors import NoImageAvailable, TurnCancelled, classify, user_message
from ..memory.consistency import ConsistencyMemory
from ..pipeline import ImagePipeline
from ..prompts.synthesis import build_edit_prompt, build_reference_prompt, build_resize_prompt
from ..providers.base import ModelGateway
from ..runs.events import EventWriter
from ..turns import ConversationTurn, GenerationResult, ImageBlob, ToolCall
from . import tools
from .tools import SYSTEM_INSTRUCTION, TOOL_DECLARATIONS, ToolSelector, select_tool_call

RESET_TEXT = "Face memory has been reset. Please upload new face photos for the next generation."
UNKNOWN_TOOL_TEXT = "I'm not sure how to handle that tool call."


class ToolDispatcher:
    """One turn in, one :class:`GenerationResult` out.

    Every exception raised below ``dispatch``/``resume``/``resize`` is caught,
    classified and turned into result text; callers never see raw backend
    errors. ``reroute_with_images`` controls whether ``generateImage`` on a turn
    with attached images goes through reference generation instead of asking
    for an aspect ratio.
    """

    def __init__(
        self,
        gateway: ModelGateway,
        memory: ConsistencyMemory,
        pipeline: ImagePipeline,
        *,
        events: EventWriter | None = None,
        select_tool: ToolSelector = select_tool_call,
        reroute_with_images: bool = True,
        tool_declarations: Sequence[Mapping[str, Any]] = TOOL_DECLARATIONS,
        system_instruction: str = SYSTEM_INSTRUCTION,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.gateway = gateway
        self.memory = memory
        self.pipeline = pipeline
        self.events = events
        self.select_tool = select_tool
        self.reroute_with_images = reroute_with_images
        self.tool_declarations = list(tool_declarations)
        self.system_instruction = system_instruction
        self.cancel_event = cancel_event or threading.Event()
        self._handlers: dict[str, Callable[[ToolCall, ConversationTurn, Sequence[ConversationTurn]], GenerationResult]] = {
            tools.RESET_FACE_MEMORY: self._reset_face_memory,
            tools.SEARCH_THE_WEB: self._search,
            tools.COMPLEX_QUERY: self._complex_query,
            tools.GENERATE_IMAGE: self._generate_image,
            tools.EDIT_IMAGE: self._edit_image,
            tools.RESIZE_IMAGE: self._resize_image,
            tools.GENERATE_FROM_REFERENCE: self._generate_from_reference,
        }

    def dispatch(self, turn: ConversationTurn, history: Sequence[ConversationTurn] = ()) -> GenerationResult:
        try:
            self._checkpoint()
            completion = self.gateway.complete_with_tools(
                history,
                turn,
                self.system_instruction,
                self.tool_declarations,
            )
            self._checkpoint()
            call = self.select_tool(completion.tool_calls) if completion.tool_calls else None
            if call is None:
                return GenerationResult(text=completion.text)
            self._emit("tool_selected", tool=call.name, arguments=dict(call.arguments or {}))
            handler = self._handlers.get(call.name)
            if handler is None:
                return GenerationResult(text=UNKNOWN_TOOL_TEXT)
            return handler(call, turn, history)
        except Exception as exc:
            return self._failure(exc)

    def resume(self, prompt: str, aspect_ratio: str) -> GenerationResult:
        """Run a deferred generation once the aspect ratio is known."""
        try:
            self._checkpoint()
            outcome = self.pipeline.generate(prompt, aspect_ratio)
            self._checkpoint()
        except Exception as exc:
            return self._failure(exc, "generate the image")
        return GenerationResult(
            text="Here is the image I generated for you with your selected aspect ratio.",
            image=outcome.image.to_data_uri(),
            prompt=prompt,
        )

    def resize(self, image: ImageBlob, aspect_ratio: str, original_prompt: str | None = None) -> GenerationResult:
        try:
            return self._outpaint(image, aspect_ratio, original_prompt)
        except Exception as exc:
            return self._failure(exc, "resize the image")

    def _reset_face_memory(
        self, call: ToolCall, turn: ConversationTurn, history: Sequence[ConversationTurn]
    ) -> GenerationResult:
        self.memory.clear_all()
        self._emit("memory_cleared", attribute="all")
        return GenerationResult(text=RESET_TEXT, reset_memory=True)

    def _search(self, call: ToolCall, turn: ConversationTurn, history: Sequence[ConversationTurn]) -> GenerationResult:
        answer = self.gateway.search(call.argument("query", turn.text))
        return GenerationResult(text=answer.text, sources=answer.sources or None)

    def _complex_query(
        self, call: ToolCall, turn: ConversationTurn, history: Sequence[ConversationTurn]
    ) -> GenerationResult:
        return GenerationResult(text=self.gateway.complex_reasoning(call.argument("query", turn.text)))

    def _generate_image(
        self, call: ToolCall, turn: ConversationTurn, history: Sequence[ConversationTurn]
    ) -> GenerationResult:
        prompt = call.argument("prompt", turn.text)
        if turn.images and self.reroute_with_images:
            return self._reference_generation(prompt, list(turn.images))
        return GenerationResult(
            text=f'I can generate an image of "{prompt}". Please select an aspect ratio.',
            needs_aspect_ratio=True,
            pending_prompt=prompt,
        )

    def _edit_image(self, call: ToolCall, turn: ConversationTurn, history: Sequence[ConversationTurn]) -> GenerationResult:
        target = find_last_image(history, turn)
        if target is None:
            raise NoImageAvailable("No image found in the turn or the conversation.")
        prompt = call.argument("prompt", turn.text)
        self._checkpoint()
        edited = self.gateway.generate_image_from_references(build_edit_prompt(prompt), [target])
        self._checkpoint()
        return GenerationResult(text="Here is your edited image.", image=edited.to_data_uri(), prompt=prompt)

    def _resize_image(
        self, call: ToolCall, turn: ConversationTurn, history: Sequence[ConversationTurn]
    ) -> GenerationResult:
        target = find_last_image(history, turn)
        if target is None:
            raise NoImageAvailable("No image found in the turn or the conversation.")
        return self._outpaint(target, call.argument("aspectRatio", "1:1"), None)

    def _outpaint(self, image: ImageBlob, aspect_ratio: str, original_prompt: str | None) -> GenerationResult:
        self._checkpoint()
        resized = self.gateway.generate_image_from_references(
            build_resize_prompt(aspect_ratio, original_prompt, measure_ratio(image.data)),
            [image],
        )
        self._checkpoint()
        return GenerationResult(
            text=f"Here is your image, resized to {aspect_ratio}.",
            image=resized.to_data_uri(),
            prompt="resized",
        )

    def _generate_from_reference(
        self, call: ToolCall, turn: ConversationTurn, history: Sequence[ConversationTurn]
    ) -> GenerationResult:
        images = list(turn.images)
        if not images:
            newest = find_last_image(history)
            if newest is not None:
                images.append(newest)
        if not images:
            raise NoImageAvailable("No reference image found in the turn or the conversation.")
        return self._reference_generation(call.argument("prompt", turn.text), images)

    def _reference_generation(self, prompt: str, images: list[ImageBlob]) -> GenerationResult:
        self._checkpoint()
        image = self.gateway.generate_image_from_references(build_reference_prompt(prompt), images)
        self._checkpoint()
        return GenerationResult(
            text="Here is your generated image with face consistency preserved.",
            image=image.to_data_uri(),
            prompt=prompt,
        )

    def _checkpoint(self) -> None:
        if self.cancel_event.is_set():
            raise TurnCancelled("The turn was cancelled.")

    def _failure(self, error: BaseException, action: str | None = None) -> GenerationResult:
        kind = classify(error)
        self._emit("turn_failed", kind=kind.value, error=str(error))
        return GenerationResult(text=user_message(error, action), error=kind.value)

    def _emit(self, event_type: str, **payload: Any) -> None:
        if self.events is not None:
            self.events.emit(event_type, **payload)


def find_last_image(
    history: Sequence[ConversationTurn],
    turn: ConversationTurn | None = None,
) -> ImageBlob | None:
    """Last image on ``turn``, else the newest image found scanning ``history`` backward."""
    if turn is not None and turn.images:
        return turn.last_image()
    for previous in reversed(history):
        if previous.images:
            return previous.images[-1]
    return None

