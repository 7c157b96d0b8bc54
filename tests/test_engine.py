from __future__ import annotations

import json
from pathlib import Path

import pytest

from pak_engine.chat.deferred import AwaitingRatio, Resolved
from pak_engine.engine import NO_PENDING_TEXT, PakEngine
from pak_engine.errors import BackendFailure, NoImageProduced, QuotaExceeded
from pak_engine.providers import DryRunGateway
from pak_engine.providers.base import ProviderRegistry
from pak_engine.turns import Completion, ImageBlob, Role, ToolCall


class _ScriptedGateway:
    name = "scripted"

    def __init__(self, *completions: Completion) -> None:
        self.completions = list(completions)
        self.on_complete = None
        self.reference_error: Exception | None = None
        self.histories: list[list] = []

    def complete_with_tools(self, history, turn, system_instruction, tools):
        self.histories.append(list(history))
        if self.on_complete is not None:
            self.on_complete()
        return self.completions.pop(0) if self.completions else Completion(text="ok")

    def generate_image(self, prompt, aspect_ratio=None):
        return ImageBlob(data=b"plain")

    def generate_image_from_references(self, prompt, images):
        if self.reference_error is not None:
            raise self.reference_error
        return ImageBlob(data=b"extracted")

    def search(self, query):
        raise NotImplementedError

    def complex_reasoning(self, query):
        raise NotImplementedError

    def synthesize_speech(self, text):
        return text.encode()

    def analyze_image(self, image, instruction):
        return "{}"


class _Backend:
    def __init__(self, name: str, error: Exception | None = None) -> None:
        self.name = name
        self.error = error
        self.on_generate = None
        self.calls = 0

    def generate(self, prompt, aspect_ratio):
        self.calls += 1
        if self.on_generate is not None:
            self.on_generate()
        if self.error is not None:
            raise self.error
        return ImageBlob(data=f"{self.name}:{aspect_ratio}".encode())


def _engine(tmp_path: Path, gateway: _ScriptedGateway, *backends: _Backend) -> PakEngine:
    registry = ProviderRegistry(backends or [_Backend("imagen"), _Backend("gemini")])
    return PakEngine(gateway, registry, events_path=tmp_path / "events.jsonl", session_id="session-1")


def _event_types(tmp_path: Path) -> list[str]:
    lines = (tmp_path / "events.jsonl").read_text(encoding="utf-8").splitlines()
    return [json.loads(line)["type"] for line in lines]


def test_plain_turn_records_user_and_model(tmp_path: Path) -> None:
    engine = _engine(tmp_path, _ScriptedGateway(Completion(text="Hi!")))

    _, result = engine.send_turn("hello")

    assert result.text == "Hi!"
    assert [turn.role for turn in engine.history] == [Role.USER, Role.MODEL]
    assert engine.history[1].text == "Hi!"
    assert _event_types(tmp_path) == ["session_started", "turn_started", "turn_completed"]


def test_failed_turn_records_only_user_turn(tmp_path: Path) -> None:
    gateway = _ScriptedGateway(Completion(tool_calls=(ToolCall(name="editImage", arguments={"prompt": "x"}),)))
    engine = _engine(tmp_path, gateway)

    _, result = engine.send_turn("edit it")

    assert result.is_error
    assert [turn.role for turn in engine.history] == [Role.USER]


def test_history_is_passed_to_following_turns(tmp_path: Path) -> None:
    gateway = _ScriptedGateway(Completion(text="one"), Completion(text="two"))
    engine = _engine(tmp_path, gateway)

    engine.send_turn("first", [ImageBlob(data=b"photo")])
    engine.send_turn("second")

    assert gateway.histories[0] == []
    second_context = gateway.histories[1]
    assert [turn.text for turn in second_context] == ["first", "one"]
    assert second_context[0].images[0].data == b"photo"


def test_explicit_history_leaves_session_untouched(tmp_path: Path) -> None:
    engine = _engine(tmp_path, _ScriptedGateway(Completion(text="stateless")))

    _, result = engine.send_turn("hello", history=[])

    assert result.text == "stateless"
    assert engine.history == []


def test_deferred_generation_resumes_with_ratio(tmp_path: Path) -> None:
    gateway = _ScriptedGateway(Completion(tool_calls=(ToolCall(name="generateImage", arguments={"prompt": "a lion"}),)))
    engine = _engine(tmp_path, gateway)

    message_id, deferred = engine.send_turn("draw a lion")

    assert deferred.needs_aspect_ratio
    assert engine.deferred.state(message_id) == AwaitingRatio(prompt="a lion")
    assert engine.pending_generations() == {message_id: "a lion"}

    result = engine.resume_deferred(message_id, None, "9:16")

    assert result.image_blob().data == b"imagen:9:16"
    assert result.prompt == "a lion"
    assert isinstance(engine.deferred.state(message_id), Resolved)
    assert engine.pending_generations() == {}
    assert engine.history[-1].images[0].data == b"imagen:9:16"
    types = _event_types(tmp_path)
    assert "turn_deferred" in types
    assert "image_generated" in types


def test_resume_unknown_message(tmp_path: Path) -> None:
    engine = _engine(tmp_path, _ScriptedGateway())

    result = engine.resume_deferred("missing", "a lion", "1:1")

    assert result.text == NO_PENDING_TEXT
    assert result.is_error


def test_failed_resume_is_resolved(tmp_path: Path) -> None:
    gateway = _ScriptedGateway(Completion(tool_calls=(ToolCall(name="generateImage", arguments={"prompt": "a lion"}),)))
    engine = _engine(
        tmp_path,
        gateway,
        _Backend("imagen", QuotaExceeded("429")),
        _Backend("gemini", NoImageProduced("blocked")),
    )
    message_id, _ = engine.send_turn("draw a lion")

    result = engine.resume_deferred(message_id, None, "16:9")

    assert "Quota Exceeded" in result.text
    assert engine.deferred.pending(message_id) is None
    assert engine.deferred.state(message_id) == Resolved(error="quota_exceeded")
    assert engine.pending_generations() == {}
    assert _event_types(tmp_path).count("image_backend_failed") == 2


def test_cancel_between_image_backends(tmp_path: Path) -> None:
    gateway = _ScriptedGateway(Completion(tool_calls=(ToolCall(name="generateImage", arguments={"prompt": "a lion"}),)))
    primary = _Backend("imagen", BackendFailure("imagen down"))
    fallback = _Backend("gemini")
    engine = _engine(tmp_path, gateway, primary, fallback)
    message_id, _ = engine.send_turn("draw a lion")
    primary.on_generate = engine.cancel

    result = engine.resume_deferred(message_id, None, "1:1")

    assert result.error == "cancelled"
    assert primary.calls == 1
    assert fallback.calls == 0
    assert _event_types(tmp_path)[-1] == "turn_cancelled"


def test_cancel_during_turn(tmp_path: Path) -> None:
    gateway = _ScriptedGateway(Completion(tool_calls=(ToolCall(name="resetFaceMemory"),)))
    engine = _engine(tmp_path, gateway)
    engine.set_reference("face", b"me")
    gateway.on_complete = engine.cancel

    _, result = engine.send_turn("reset face")

    assert result.error == "cancelled"
    assert engine.memory_snapshot().face is not None
    assert _event_types(tmp_path)[-1] == "turn_cancelled"


def test_cancel_flag_is_cleared_for_next_turn(tmp_path: Path) -> None:
    engine = _engine(tmp_path, _ScriptedGateway(Completion(text="fine")))
    engine.cancel()

    _, result = engine.send_turn("hello")

    assert result.text == "fine"


def test_reference_updates_emit_events(tmp_path: Path) -> None:
    engine = _engine(tmp_path, _ScriptedGateway())

    engine.set_reference("dress", "data:image/jpeg;base64,aGVsbG8=")
    snapshot = engine.memory_snapshot()
    engine.clear_reference("dress")
    engine.set_reference("face", b"")
    engine.clear_reference()

    assert snapshot.dress == ImageBlob(data=b"hello", mime_type="image/jpeg")
    assert engine.memory_snapshot().filled() == []
    assert _event_types(tmp_path)[1:] == ["memory_updated", "memory_cleared", "memory_cleared", "memory_cleared"]


def test_unknown_reference_attribute(tmp_path: Path) -> None:
    engine = _engine(tmp_path, _ScriptedGateway())
    with pytest.raises(ValueError):
        engine.set_reference("hat", b"x")


def test_extract_reference_success_and_failure(tmp_path: Path) -> None:
    gateway = _ScriptedGateway()
    engine = _engine(tmp_path, gateway)

    result = engine.extract_reference(b"photo", "face")
    assert result.text == "Saved the face reference."
    assert engine.memory_snapshot().face.data == b"extracted"

    gateway.reference_error = BackendFailure("model overloaded")
    failed = engine.extract_reference(b"photo", "background")
    assert failed.is_error
    assert "model overloaded" in failed.text
    assert engine.memory_snapshot().background is None


def test_malformed_attachment_becomes_error_result(tmp_path: Path) -> None:
    gateway = _ScriptedGateway()
    engine = _engine(tmp_path, gateway)

    message_id, result = engine.send_turn("what is this?", ["abc"])

    assert result.is_error
    assert result.text.startswith("An error occurred while trying to read the attached image")
    assert message_id
    assert gateway.histories == []
    assert engine.history == []
    assert _event_types(tmp_path)[-2:] == ["turn_failed", "turn_completed"]


def test_malformed_image_for_resize_and_extract(tmp_path: Path) -> None:
    engine = _engine(tmp_path, _ScriptedGateway())

    resized = engine.resize("abc", "16:9")
    extracted = engine.extract_reference(12345, "face")

    assert resized.is_error
    assert extracted.is_error
    assert "Unsupported image type" in extracted.text
    assert engine.memory_snapshot().face is None


def test_resize_returns_outpainted_image(tmp_path: Path) -> None:
    engine = _engine(tmp_path, _ScriptedGateway())

    result = engine.resize("aGVsbG8=", "21:9", original_prompt="a lion", mime_type="image/jpeg")

    assert result.text == "Here is your image, resized to 21:9."
    assert result.image_blob().data == b"extracted"


def test_speak_cleans_markdown(tmp_path: Path) -> None:
    engine = _engine(tmp_path, _ScriptedGateway())
    assert engine.speak("**Hello** [world](https://x.test)") == b"Hello world"


def test_dry_run_engine_from_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PAK_DRYRUN", "1")
    engine = PakEngine(events_path=tmp_path / "events.jsonl")

    assert isinstance(engine.gateway, DryRunGateway)
    message_id, deferred = engine.send_turn("draw a lion in the desert")
    assert deferred.needs_aspect_ratio
    result = engine.resume_deferred(message_id, None, "16:9")
    assert result.image_blob().mime_type == "image/png"
    assert not result.is_error
