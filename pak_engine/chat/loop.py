"""Interactive chat loop wrapper."""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass, field
from pathlib import Path

from ..aspect_ratios import SUPPORTED_RATIOS, is_supported
from ..engine import PakEngine
from ..errors import PakError, user_message
from ..prompts.synthesis import CONSISTENCY_ATTRIBUTES
from ..turns import GenerationResult, ImageBlob
from ..utils import image_suffix, write_bytes, write_wav
from .command_registry import help_lines
from .intent_parser import parse_intent
from .intent_schema import Intent


def load_image(path: Path) -> ImageBlob:
    mime, _ = mimetypes.guess_type(path.name)
    return ImageBlob(data=path.read_bytes(), mime_type=mime or "image/png")


@dataclass
class ChatState:
    attachments: list[ImageBlob] = field(default_factory=list)
    last_image: ImageBlob | None = None
    last_prompt: str | None = None
    outputs: int = 0


class ChatLoop:
    def __init__(self, engine: PakEngine, out_dir: Path) -> None:
        self.engine = engine
        self.out_dir = out_dir
        self.state = ChatState()
        self._handlers = {
            "help": self._help,
            "attach": self._attach,
            "resume_deferred": self._resume_deferred,
            "resize": self._resize,
            "set_reference": self._set_reference,
            "extract_reference": self._extract_reference,
            "clear_reference": self._clear_reference,
            "show_memory": self._show_memory,
            "reset_memory": self._reset_memory,
            "speak": self._speak,
            "chat": self._chat,
        }

    def run(self) -> None:
        print("PAK AI chat started. Type /help for commands.")
        while True:
            try:
                line = input("> ")
            except (EOFError, KeyboardInterrupt):
                break
            self.handle(line)

    def handle(self, line: str) -> None:
        intent = parse_intent(line)
        if intent.action == "noop":
            return
        handler = self._handlers.get(intent.action)
        if handler is None:
            print(f"Unknown command: /{intent.command_args.get('command', '')}. Type /help for commands.")
            return
        handler(intent)

    def _help(self, intent: Intent) -> None:
        print("Commands:")
        for line in help_lines():
            print(f"  {line}")

    def _attach(self, intent: Intent) -> None:
        paths = [Path(p) for p in intent.command_args.get("paths") or []]
        if not paths:
            print("/attach requires one or more image paths")
            return
        for path in paths:
            if not path.exists():
                print(f"Attach failed: file not found ({path})")
                return
        self.state.attachments.extend(load_image(path) for path in paths)
        print(f"Attached {len(self.state.attachments)} image(s) to the next message.")

    def _chat(self, intent: Intent) -> None:
        images = list(self.state.attachments)
        self.state.attachments.clear()
        if images:
            self.state.last_image = images[-1]
        _, result = self.engine.send_turn(intent.prompt or "", images)
        self._show(result)
        if result.needs_aspect_ratio:
            print(f"Choose one with /ratio: {' '.join(SUPPORTED_RATIOS)}")

    def _resume_deferred(self, intent: Intent) -> None:
        ratio = str(intent.command_args.get("aspect_ratio") or "")
        if not is_supported(ratio):
            print(f"/ratio requires one of: {' '.join(SUPPORTED_RATIOS)}")
            return
        latest = self.engine.deferred.latest_pending()
        if latest is None:
            print("Nothing is waiting for an aspect ratio.")
            return
        message_id, prompt = latest
        print(f"Generating image with aspect ratio {ratio}...")
        self._show(self.engine.resume_deferred(message_id, prompt, ratio))

    def _resize(self, intent: Intent) -> None:
        ratio = str(intent.command_args.get("aspect_ratio") or "")
        if not is_supported(ratio, studio=True):
            print("/resize requires a supported aspect ratio, e.g. /resize 16:9")
            return
        if self.state.last_image is None:
            print("/resize needs an image: generate one or /attach one first")
            return
        self._show(self.engine.resize(self.state.last_image, ratio, self.state.last_prompt))

    def _set_reference(self, intent: Intent) -> None:
        attribute = self._attribute(intent, "/ref")
        if attribute is None:
            return
        path = Path(str(intent.command_args.get("path") or ""))
        if not intent.command_args.get("path") or not path.exists():
            print(f"/ref {attribute} requires an existing image path")
            return
        self.engine.set_reference(attribute, load_image(path))
        print(f"Stored {attribute} reference from {path}")

    def _extract_reference(self, intent: Intent) -> None:
        attribute = self._attribute(intent, "/extract")
        if attribute is None:
            return
        raw_path = intent.command_args.get("path")
        if raw_path:
            path = Path(str(raw_path))
            if not path.exists():
                print(f"Extract failed: file not found ({path})")
                return
            source = load_image(path)
        elif self.state.last_image is not None:
            source = self.state.last_image
        else:
            print("/extract needs an image path or a previous image")
            return
        result = self.engine.extract_reference(source, attribute)
        print(result.text)

    def _clear_reference(self, intent: Intent) -> None:
        attribute = intent.command_args.get("attribute")
        if attribute and attribute not in CONSISTENCY_ATTRIBUTES:
            print(f"Unknown reference: {attribute}. Use one of {', '.join(CONSISTENCY_ATTRIBUTES)}")
            return
        self.engine.clear_reference(attribute)
        print(f"Cleared {attribute or 'all'} reference{'s' if not attribute else ''}.")

    def _show_memory(self, intent: Intent) -> None:
        snapshot = self.engine.memory_snapshot()
        for attribute in CONSISTENCY_ATTRIBUTES:
            blob = getattr(snapshot, attribute)
            status = f"{blob.mime_type}, {len(blob.data)} bytes" if blob else "empty"
            print(f"  {attribute:<12} {status}")

    def _reset_memory(self, intent: Intent) -> None:
        self.engine.clear_reference(None)
        print("Face memory has been reset.")

    def _speak(self, intent: Intent) -> None:
        text = str(intent.command_args.get("text") or "")
        if not text:
            print("/speak requires text")
            return
        try:
            audio = self.engine.speak(text)
        except PakError as exc:
            print(user_message(exc, "generate speech"))
            return
        self.state.outputs += 1
        path = write_wav(self.out_dir / f"speech-{self.state.outputs:03d}.wav", audio)
        print(f"Speech saved to {path}")

    def _attribute(self, intent: Intent, command: str) -> str | None:
        attribute = str(intent.command_args.get("attribute") or "")
        if attribute not in CONSISTENCY_ATTRIBUTES:
            print(f"{command} requires one of {', '.join(CONSISTENCY_ATTRIBUTES)} and an image path")
            return None
        return attribute

    def _show(self, result: GenerationResult) -> None:
        if result.text:
            print(result.text)
        for source in result.sources or ():
            print(f"  - {source.title}: {source.uri}")
        blob = result.image_blob()
        if blob is not None:
            self.state.outputs += 1
            path = write_bytes(self.out_dir / f"image-{self.state.outputs:03d}{image_suffix(blob.mime_type)}", blob.data)
            self.state.last_image = blob
            if result.prompt and result.prompt != "resized":
                self.state.last_prompt = result.prompt
            print(f"Image saved to {path}")
        if result.reset_memory:
            print("Upload new face photos with /attach or /ref face <path>.")
