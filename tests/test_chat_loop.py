from __future__ import annotations

import wave
from io import BytesIO
from pathlib import Path

import pytest
from PIL import Image

from pak_engine.chat.loop import ChatLoop, load_image
from pak_engine.engine import PakEngine


def _write_png(path: Path, size: tuple[int, int] = (64, 64)) -> Path:
    buffer = BytesIO()
    Image.new("RGB", size, (200, 10, 10)).save(buffer, format="PNG")
    path.write_bytes(buffer.getvalue())
    return path


@pytest.fixture()
def loop(tmp_path: Path) -> ChatLoop:
    engine = PakEngine(dry_run=True, session_id="chat-test")
    return ChatLoop(engine, tmp_path / "out")


def test_help_lists_commands(loop: ChatLoop, capsys: pytest.CaptureFixture[str]) -> None:
    loop.handle("/help")
    out = capsys.readouterr().out
    assert "Commands:" in out
    assert "/ratio" in out
    assert "/clear_ref" in out


def test_unknown_command(loop: ChatLoop, capsys: pytest.CaptureFixture[str]) -> None:
    loop.handle("/teleport")
    assert "Unknown command: /teleport" in capsys.readouterr().out


def test_deferred_generation_then_ratio(loop: ChatLoop, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    loop.handle("draw a lion in the desert")
    out = capsys.readouterr().out
    assert "Please select an aspect ratio." in out
    assert "Choose one with /ratio: 1:1 9:16 16:9 3:4 4:3" in out

    loop.handle("/ratio 9:16")
    out = capsys.readouterr().out
    assert "Generating image with aspect ratio 9:16..." in out
    saved = tmp_path / "out" / "image-001.png"
    assert saved.exists()
    assert loop.state.last_prompt == "draw a lion in the desert"
    with Image.open(saved) as image:
        assert image.size == (288, 512)

    loop.handle("/ratio 9:16")
    assert "Nothing is waiting for an aspect ratio." in capsys.readouterr().out


def test_ratio_validation(loop: ChatLoop, capsys: pytest.CaptureFixture[str]) -> None:
    loop.handle("/ratio 21:9")
    assert "/ratio requires one of" in capsys.readouterr().out


def test_resize_needs_previous_image(loop: ChatLoop, capsys: pytest.CaptureFixture[str]) -> None:
    loop.handle("/resize 16:9")
    assert "/resize needs an image" in capsys.readouterr().out


def test_attach_then_resize(loop: ChatLoop, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    photo = _write_png(tmp_path / "photo.png")
    loop.handle(f"/attach {photo}")
    assert "Attached 1 image(s)" in capsys.readouterr().out

    loop.handle("hello there")
    assert loop.state.attachments == []
    assert loop.state.last_image == load_image(photo)

    loop.handle("/resize 21:9")
    out = capsys.readouterr().out
    assert "Here is your image, resized to 21:9." in out
    assert (tmp_path / "out" / "image-001.png").exists()


def test_attach_missing_file(loop: ChatLoop, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    loop.handle(f"/attach {tmp_path / 'nope.png'}")
    assert "Attach failed: file not found" in capsys.readouterr().out
    assert loop.state.attachments == []


def test_reference_commands(loop: ChatLoop, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    face = _write_png(tmp_path / "face.png")

    loop.handle(f"/ref face {face}")
    loop.handle("/memory")
    out = capsys.readouterr().out
    assert "Stored face reference" in out
    assert "face         image/png" in out
    assert "dress        empty" in out

    loop.handle("/clear_ref face")
    assert "Cleared face reference." in capsys.readouterr().out
    assert loop.engine.memory_snapshot().face is None

    loop.handle("/ref hat /tmp/x.png")
    assert "/ref requires one of face, dress, background, environment" in capsys.readouterr().out


def test_extract_uses_last_image(loop: ChatLoop, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    loop.handle("/extract face")
    assert "/extract needs an image path" in capsys.readouterr().out

    loop.handle(f"/extract dress {_write_png(tmp_path / 'outfit.jpg')}")
    assert "Saved the dress reference." in capsys.readouterr().out
    assert loop.engine.memory_snapshot().dress is not None


def test_reset_face_via_chat(loop: ChatLoop, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    loop.engine.set_reference("face", b"face-bytes")

    loop.handle("please reset face")

    out = capsys.readouterr().out
    assert "Face memory has been reset." in out
    assert "Upload new face photos" in out
    assert loop.engine.memory_snapshot().face is None


def test_search_prints_sources(loop: ChatLoop, capsys: pytest.CaptureFixture[str]) -> None:
    loop.handle("latest news about pakistan")
    out = capsys.readouterr().out
    assert "dryrun search results for: latest news about pakistan" in out
    assert "  - Dry run source: https://example.com/dryrun" in out


def test_speak_writes_wav(loop: ChatLoop, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    loop.handle("/speak Hello **world**")
    path = tmp_path / "out" / "speech-001.wav"
    assert f"Speech saved to {path}" in capsys.readouterr().out
    with wave.open(str(path), "rb") as handle:
        assert handle.getframerate() == 24000
        assert handle.getnchannels() == 1
        assert handle.getnframes() == 12000


def test_run_stops_on_eof(loop: ChatLoop, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    lines = iter(["/help"])

    def fake_input(prompt: str) -> str:
        try:
            return next(lines)
        except StopIteration:
            raise EOFError from None

    monkeypatch.setattr("builtins.input", fake_input)
    loop.run()
    out = capsys.readouterr().out
    assert out.startswith("PAK AI chat started.")
    assert "Commands:" in out
