"""Dry-run gateway (offline)."""

from __future__ import annotations

import hashlib
import json
import re
from io import BytesIO
from typing import Any, Mapping, Sequence

from PIL import Image, ImageDraw, ImageFont

from ..aspect_ratios import get_spec, normalize_ratio
from ..turns import Completion, ConversationTurn, GroundingSource, ImageBlob, SearchAnswer, ToolCall

_RATIO_IN_TEXT_RE = re.compile(r"\b(\d{1,2})\s*:\s*(\d{1,2})\b")
_PLACEHOLDER_LONG_EDGE = 512

# Ordered (tool, trigger phrases); first hit wins.
_TOOL_TRIGGERS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("resetFaceMemory", ("reset face", "change face", "forget my face")),
    ("searchTheWeb", ("search", "latest", "news", "weather", "today")),
    ("resizeImage", ("resize", "aspect ratio", "make this landscape", "make this portrait")),
    ("generateFromReference", ("put me", "combine", "merge", "me as")),
    ("editImage", ("edit", "change the", "make the", "remove the", "add a")),
    ("generateImage", ("generate", "create", "draw", "image of", "picture of", "paint")),
    ("complexQuery", ("step by step", "prove", "algorithm", "write code", "debug")),
)


class DryRunGateway:
    name = "dryrun"

    def __init__(self) -> None:
        self._font = None
        self.calls: list[tuple[str, Any]] = []

    def complete_with_tools(
        self,
        history: Sequence[ConversationTurn],
        turn: ConversationTurn,
        system_instruction: str,
        tools: Sequence[Mapping[str, Any]],
    ) -> Completion:
        self.calls.append(("complete_with_tools", turn.text))
        available = {str(tool.get("name")) for tool in tools}
        call = _pick_tool(turn.text, available)
        if call is None:
            return Completion(text=f"dryrun: {turn.text}".strip())
        return Completion(text="", tool_calls=(call,))

    def generate_image(self, prompt: str, aspect_ratio: str | None = None) -> ImageBlob:
        self.calls.append(("generate_image", aspect_ratio))
        return ImageBlob(data=self._render(prompt, aspect_ratio), mime_type="image/png")

    def generate_image_from_references(self, prompt: str, images: Sequence[ImageBlob]) -> ImageBlob:
        self.calls.append(("generate_image_from_references", len(images)))
        label = f"refs:{len(images)} {prompt}"
        return ImageBlob(data=self._render(label, _ratio_from_text(prompt)), mime_type="image/png")

    def search(self, query: str) -> SearchAnswer:
        self.calls.append(("search", query))
        return SearchAnswer(
            text=f"dryrun search results for: {query}",
            sources=(GroundingSource(uri="https://example.com/dryrun", title="Dry run source"),),
        )

    def complex_reasoning(self, query: str) -> str:
        self.calls.append(("complex_reasoning", query))
        return f"dryrun reasoning: {query}"

    def synthesize_speech(self, text: str) -> bytes:
        self.calls.append(("synthesize_speech", text))
        # Half a second of 16-bit mono silence at 24 kHz.
        return b"\x00\x00" * 12000

    def analyze_image(self, image: ImageBlob, instruction: str) -> str:
        self.calls.append(("analyze_image", len(image.data)))
        if "json" in instruction.lower():
            return json.dumps(
                {
                    "backgroundType": "scene",
                    "dominantColors": ["#808080"],
                    "hasHorizon": False,
                    "backgroundElements": [],
                    "extensionSuggestions": ["Extend background naturally"],
                }
            )
        return "dryrun image analysis"

    def _render(self, prompt: str, aspect_ratio: str | None) -> bytes:
        width, height = _resolve_size(aspect_ratio)
        image = Image.new("RGB", (width, height), _color_from_prompt(prompt))
        draw = ImageDraw.Draw(image)
        font = self._font or ImageFont.load_default()
        text = f"dryrun {aspect_ratio or ''}\n{prompt[:60]}"
        draw.text((20, 20), text, fill=(255, 255, 255), font=font)
        buffer = BytesIO()
        image.save(buffer, format="PNG")
        return buffer.getvalue()


class DryRunImageBackend:
    def __init__(self, gateway: DryRunGateway, name: str = "dryrun") -> None:
        self.gateway = gateway
        self.name = name

    def generate(self, prompt: str, aspect_ratio: str) -> ImageBlob:
        return self.gateway.generate_image(prompt, aspect_ratio)


def _pick_tool(text: str, available: set[str]) -> ToolCall | None:
    lowered = (text or "").lower()
    for name, triggers in _TOOL_TRIGGERS:
        if name not in available:
            continue
        if not any(trigger in lowered for trigger in triggers):
            continue
        if name == "resetFaceMemory":
            return ToolCall(name=name, arguments={})
        if name in {"searchTheWeb", "complexQuery"}:
            return ToolCall(name=name, arguments={"query": text})
        if name == "resizeImage":
            return ToolCall(name=name, arguments={"aspectRatio": _ratio_from_text(text) or "1:1"})
        return ToolCall(name=name, arguments={"prompt": text})
    return None


def _ratio_from_text(text: str) -> str | None:
    match = _RATIO_IN_TEXT_RE.search(text or "")
    if not match:
        return None
    return normalize_ratio(f"{match.group(1)}:{match.group(2)}")


def _resolve_size(aspect_ratio: str | None) -> tuple[int, int]:
    spec = get_spec(aspect_ratio)
    if spec is None:
        return (_PLACEHOLDER_LONG_EDGE, _PLACEHOLDER_LONG_EDGE)
    scale = _PLACEHOLDER_LONG_EDGE / max(spec.width, spec.height)
    return max(1, int(spec.width * scale)), max(1, int(spec.height * scale))


def _color_from_prompt(prompt: str) -> tuple[int, int, int]:
    digest = hashlib.sha256(prompt.encode("utf-8")).digest()
    return digest[0], digest[1], digest[2]
