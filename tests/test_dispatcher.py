from __future__ import annotations

import threading

from pak_engine.chat.dispatcher import ToolDispatcher, find_last_image
from pak_engine.chat.tools import TOOL_NAMES, select_tool_call
from pak_engine.errors import BackendFailure, FailureKind, QuotaExceeded
from pak_engine.memory.consistency import ConsistencyMemory
from pak_engine.pipeline import ImagePipeline
from pak_engine.runs.events import EventWriter
from pak_engine.turns import (
    Completion,
    ConversationTurn,
    GroundingSource,
    ImageBlob,
    SearchAnswer,
    ToolCall,
)

IMAGE_CALLS = {"generate_image", "generate_image_from_references"}


class FakeGateway:
    name = "fake"

    def __init__(self, completion: Completion, reference_error: Exception | None = None) -> None:
        self.completion = completion
        self.reference_error = reference_error
        self.calls: list[tuple[str, object]] = []

    def complete_with_tools(self, history, turn, system_instruction, tools):
        self.calls.append(("complete_with_tools", [tool["name"] for tool in tools]))
        return self.completion

    def generate_image(self, prompt, aspect_ratio=None):
        self.calls.append(("generate_image", prompt))
        return ImageBlob(data=b"generated")

    def generate_image_from_references(self, prompt, images):
        self.calls.append(("generate_image_from_references", (prompt, [image.data for image in images])))
        if self.reference_error is not None:
            raise self.reference_error
        return ImageBlob(data=b"from-references")

    def search(self, query):
        self.calls.append(("search", query))
        return SearchAnswer(text="sunny", sources=(GroundingSource(uri="https://weather.test", title="Weather"),))

    def complex_reasoning(self, query):
        self.calls.append(("complex_reasoning", query))
        return "deep answer"

    def synthesize_speech(self, text):
        return b"pcm"

    def analyze_image(self, image, instruction):
        return "{}"

    def image_calls(self) -> list[str]:
        return [name for name, _ in self.calls if name in IMAGE_CALLS]


class FakeBackend:
    def __init__(self, name: str, error: Exception | None = None) -> None:
        self.name = name
        self.error = error
        self.calls = 0

    def generate(self, prompt, aspect_ratio):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return ImageBlob(data=f"{self.name}-bytes".encode())


def _call(name: str, **arguments: str) -> Completion:
    return Completion(text="", tool_calls=(ToolCall(name=name, arguments=arguments),))


def _dispatcher(gateway: FakeGateway, *backends: FakeBackend, memory: ConsistencyMemory | None = None, **kwargs):
    backends = backends or (FakeBackend("primary"), FakeBackend("secondary"))
    return ToolDispatcher(
        gateway,
        memory or ConsistencyMemory(),
        ImagePipeline(list(backends)),
        events=EventWriter(None, "test"),
        **kwargs,
    )


def test_plain_text_returned_verbatim() -> None:
    gateway = FakeGateway(Completion(text="Hello! How can I help?"))
    result = _dispatcher(gateway).dispatch(ConversationTurn.user("hi"))

    assert result.text == "Hello! How can I help?"
    assert result.image is None
    assert not result.is_error
    assert gateway.calls[0][1] == list(TOOL_NAMES)


def test_reset_face_memory_clears_every_slot() -> None:
    memory = ConsistencyMemory()
    for attribute in ("face", "dress", "background", "environment"):
        memory.set(attribute, b"ref")
    gateway = FakeGateway(_call("resetFaceMemory"))

    result = _dispatcher(gateway, memory=memory).dispatch(ConversationTurn.user("reset face"))

    assert result.reset_memory is True
    assert memory.is_empty()


def test_search_defaults_query_to_turn_text() -> None:
    gateway = FakeGateway(_call("searchTheWeb"))

    result = _dispatcher(gateway).dispatch(ConversationTurn.user("weather today in Lahore"))

    assert ("search", "weather today in Lahore") in gateway.calls
    assert result.text == "sunny"
    assert result.sources[0].uri == "https://weather.test"


def test_complex_query_uses_argument() -> None:
    gateway = FakeGateway(_call("complexQuery", query="prove it"))

    result = _dispatcher(gateway).dispatch(ConversationTurn.user("please prove this"))

    assert ("complex_reasoning", "prove it") in gateway.calls
    assert result.text == "deep answer"


def test_generate_image_without_images_defers() -> None:
    gateway = FakeGateway(_call("generateImage", prompt="a lion in the desert"))

    result = _dispatcher(gateway).dispatch(ConversationTurn.user("draw a lion"))

    assert result.needs_aspect_ratio is True
    assert result.pending_prompt == "a lion in the desert"
    assert result.image is None
    assert result.text == 'I can generate an image of "a lion in the desert". Please select an aspect ratio.'
    assert gateway.image_calls() == []


def test_generate_image_with_attached_image_generates_directly() -> None:
    gateway = FakeGateway(_call("generateImage", prompt="me as a knight"))
    turn = ConversationTurn.user("make me a knight", [ImageBlob(data=b"selfie")])

    result = _dispatcher(gateway).dispatch(turn)

    assert result.needs_aspect_ratio is False
    assert result.image is not None
    assert result.image_blob().data == b"from-references"
    name, (prompt, images) = gateway.calls[-1]
    assert name == "generate_image_from_references"
    assert images == [b"selfie"]
    assert "me as a knight" in prompt


def test_generate_image_reroute_can_be_disabled() -> None:
    gateway = FakeGateway(_call("generateImage", prompt="a sunset"))
    turn = ConversationTurn.user("a sunset please", [ImageBlob(data=b"context")])

    result = _dispatcher(gateway, reroute_with_images=False).dispatch(turn)

    assert result.needs_aspect_ratio is True
    assert gateway.image_calls() == []


def test_resize_without_any_image_reports_no_image_available() -> None:
    gateway = FakeGateway(_call("resizeImage", aspectRatio="16:9"))
    history = [ConversationTurn.user("hello"), ConversationTurn.model("hi there")]

    result = _dispatcher(gateway).dispatch(ConversationTurn.user("make it wide"), history)

    assert result.error == FailureKind.NO_IMAGE_AVAILABLE.value
    assert "Please upload one first" in result.text
    assert gateway.image_calls() == []


def test_edit_uses_newest_history_image() -> None:
    gateway = FakeGateway(_call("editImage", prompt="make the car red"))
    history = [
        ConversationTurn.user("first", [ImageBlob(data=b"old")]),
        ConversationTurn.model("here", [ImageBlob(data=b"newest")]),
        ConversationTurn.user("thanks"),
    ]

    result = _dispatcher(gateway).dispatch(ConversationTurn.user("make the car red"), history)

    assert result.text == "Here is your edited image."
    assert result.prompt == "make the car red"
    _, (_, images) = gateway.calls[-1]
    assert images == [b"newest"]


def test_turn_image_wins_over_history() -> None:
    history = [ConversationTurn.model("old", [ImageBlob(data=b"history")])]
    turn = ConversationTurn.user("resize", [ImageBlob(data=b"first"), ImageBlob(data=b"last")])

    assert find_last_image(history, turn).data == b"last"
    assert find_last_image(history).data == b"history"
    assert find_last_image([]) is None


def test_resize_image_reports_ratio() -> None:
    gateway = FakeGateway(_call("resizeImage", aspectRatio="9:16"))
    turn = ConversationTurn.user("make it a story", [ImageBlob(data=b"photo")])

    result = _dispatcher(gateway).dispatch(turn)

    assert result.text == "Here is your image, resized to 9:16."
    assert result.prompt == "resized"
    _, (prompt, _) = gateway.calls[-1]
    assert "TARGET ASPECT RATIO: 9:16" in prompt


def test_generate_from_reference_uses_all_attached_images() -> None:
    gateway = FakeGateway(_call("generateFromReference", prompt="merge these"))
    turn = ConversationTurn.user("merge", [ImageBlob(data=b"a"), ImageBlob(data=b"b")])

    result = _dispatcher(gateway).dispatch(turn)

    assert result.image_blob().data == b"from-references"
    _, (_, images) = gateway.calls[-1]
    assert images == [b"a", b"b"]


def test_generate_from_reference_falls_back_to_history_image() -> None:
    gateway = FakeGateway(_call("generateFromReference", prompt="put me on a beach"))
    history = [ConversationTurn.user("me", [ImageBlob(data=b"selfie")])]

    _dispatcher(gateway).dispatch(ConversationTurn.user("put me on a beach"), history)

    _, (_, images) = gateway.calls[-1]
    assert images == [b"selfie"]


def test_generate_from_reference_without_images() -> None:
    gateway = FakeGateway(_call("generateFromReference", prompt="put me on a beach"))

    result = _dispatcher(gateway).dispatch(ConversationTurn.user("put me on a beach"))

    assert result.error == FailureKind.NO_IMAGE_AVAILABLE.value
    assert gateway.image_calls() == []


def test_only_first_tool_call_is_acted_upon() -> None:
    completion = Completion(
        tool_calls=(
            ToolCall(name="complexQuery", arguments={"query": "q"}),
            ToolCall(name="resetFaceMemory"),
        )
    )
    memory = ConsistencyMemory()
    memory.set("face", b"keep")
    gateway = FakeGateway(completion)

    result = _dispatcher(gateway, memory=memory).dispatch(ConversationTurn.user("q"))

    assert result.text == "deep answer"
    assert result.reset_memory is False
    assert memory.get("face").data == b"keep"


def test_tool_selection_policy_is_overridable() -> None:
    completion = Completion(
        tool_calls=(ToolCall(name="complexQuery", arguments={"query": "q"}), ToolCall(name="resetFaceMemory"))
    )
    gateway = FakeGateway(completion)

    result = _dispatcher(gateway, select_tool=lambda calls: calls[-1]).dispatch(ConversationTurn.user("q"))

    assert result.reset_memory is True


def test_select_tool_call_skips_nameless_calls() -> None:
    assert select_tool_call([ToolCall(name=""), ToolCall(name="searchTheWeb")]).name == "searchTheWeb"
    assert select_tool_call([]) is None


def test_unknown_tool_answers_politely() -> None:
    gateway = FakeGateway(_call("launchRocket"))
    result = _dispatcher(gateway).dispatch(ConversationTurn.user("launch"))
    assert result.text == "I'm not sure how to handle that tool call."


def test_quota_error_from_gateway_becomes_quota_text() -> None:
    gateway = FakeGateway(
        _call("editImage", prompt="x"),
        reference_error=QuotaExceeded("429 RESOURCE_EXHAUSTED"),
    )
    turn = ConversationTurn.user("edit", [ImageBlob(data=b"photo")])

    result = _dispatcher(gateway).dispatch(turn)

    assert "Quota Exceeded" in result.text
    assert result.error == FailureKind.QUOTA_EXCEEDED.value


def test_unexpected_error_is_contained() -> None:
    class ExplodingGateway(FakeGateway):
        def complete_with_tools(self, history, turn, system_instruction, tools):
            raise ValueError("socket closed")

    result = _dispatcher(ExplodingGateway(Completion())).dispatch(ConversationTurn.user("hi"))

    assert result.error == FailureKind.BACKEND_FAILURE.value
    assert "socket closed" in result.text


def test_resume_primary_failure_secondary_success() -> None:
    gateway = FakeGateway(Completion())
    primary = FakeBackend("imagen", BackendFailure("unavailable"))
    secondary = FakeBackend("gemini")

    result = _dispatcher(gateway, primary, secondary).resume("a lion", "9:16")

    assert not result.is_error
    assert result.image_blob().data == b"gemini-bytes"
    assert result.prompt == "a lion"
    assert primary.calls == 1 and secondary.calls == 1


def test_resume_both_backends_quota() -> None:
    gateway = FakeGateway(Completion())
    primary = FakeBackend("imagen", QuotaExceeded("429"))
    secondary = FakeBackend("gemini", QuotaExceeded("RESOURCE_EXHAUSTED"))

    result = _dispatcher(gateway, primary, secondary).resume("a lion", "9:16")

    assert "Quota Exceeded" in result.text
    assert "high traffic" in result.text
    assert result.error == FailureKind.QUOTA_EXCEEDED.value


def test_resume_generic_failure() -> None:
    gateway = FakeGateway(Completion())
    primary = FakeBackend("imagen", BackendFailure("a"))
    secondary = FakeBackend("gemini", BackendFailure("b"))

    result = _dispatcher(gateway, primary, secondary).resume("a lion", "1:1")

    assert result.error == FailureKind.GENERATION_FAILED.value
    assert "Quota" not in result.text


def test_cancelled_turn_makes_no_gateway_call() -> None:
    cancel = threading.Event()
    cancel.set()
    gateway = FakeGateway(_call("resetFaceMemory"))
    memory = ConsistencyMemory()
    memory.set("face", b"keep")

    result = _dispatcher(gateway, memory=memory, cancel_event=cancel).dispatch(ConversationTurn.user("reset face"))

    assert result.error == FailureKind.CANCELLED.value
    assert gateway.calls == []
    assert memory.get("face").data == b"keep"
