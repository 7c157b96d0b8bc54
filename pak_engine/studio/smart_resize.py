"""Aspect-ratio changes by outpainting, with background analysis."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from ..aspect_ratios import RatioSpec, get_spec, is_supported, measure_ratio
from ..errors import PakError
from ..prompts.synthesis import build_smart_resize_prompt
from ..providers.base import ModelGateway
from ..turns import ImageBlob

RESIZE_MODES = ("extend", "crop", "smart")

STUDIO_CATALOG = ("1:1", "4:5", "9:16", "16:9", "3:2", "2:3", "21:9", "9:21")

BACKGROUND_TYPES = ("solid", "textured", "scene", "gradient", "pattern")

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)

BACKGROUND_ANALYSIS_PROMPT = """Analyze this image's background and provide details for smart extension:
1. Background Type: solid, textured, scene, gradient, or pattern
2. Dominant Colors: List main background colors
3. Has Horizon: true/false
4. Background Elements: What objects/elements are in background?
5. Extension Suggestions: How to best extend this background?

Respond ONLY with a valid JSON object:
{
  "backgroundType": "string",
  "dominantColors": ["color1", "color2"],
  "hasHorizon": boolean,
  "backgroundElements": ["element1", "element2"],
  "extensionSuggestions": ["suggestion1", "suggestion2"]
}"""


@dataclass(frozen=True)
class ResizeMode:
    value: str
    label: str
    description: str
    best_for: str


_MODES: tuple[ResizeMode, ...] = (
    ResizeMode("extend", "Smart Extend", "Extend background intelligently (Recommended)", "All image types"),
    ResizeMode("crop", "Smart Crop", "Crop image intelligently", "Images with extra space"),
    ResizeMode("smart", "Auto Smart", "AI decides best method", "Automatic processing"),
)


@dataclass
class MaintainElements:
    face: bool = True
    dress: bool = True
    pose: bool = True
    environment: bool = True
    style: bool = True

    def as_dict(self) -> dict[str, bool]:
        return {
            "face": self.face,
            "dress": self.dress,
            "pose": self.pose,
            "environment": self.environment,
            "style": self.style,
        }


@dataclass
class SmartResizeRequest:
    image: ImageBlob
    target_ratio: str
    mode: str = "extend"
    maintain: MaintainElements = field(default_factory=MaintainElements)

    def __post_init__(self) -> None:
        if self.mode not in RESIZE_MODES:
            raise ValueError(f"Unknown resize mode: {self.mode!r}")
        if not is_supported(self.target_ratio, studio=True):
            raise ValueError(f"Unsupported aspect ratio: {self.target_ratio!r}")


@dataclass(frozen=True)
class SmartResizeResult:
    image: ImageBlob
    original_ratio: str
    new_ratio: str
    method: str
    extended_background: bool


@dataclass(frozen=True)
class BackgroundAnalysis:
    background_type: str = "scene"
    dominant_colors: tuple[str, ...] = ("#ffffff",)
    has_horizon: bool = False
    background_elements: tuple[str, ...] = ()
    extension_suggestions: tuple[str, ...] = ("Extend background naturally",)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "BackgroundAnalysis":
        background_type = str(payload.get("backgroundType") or "scene").lower()
        if background_type not in BACKGROUND_TYPES:
            background_type = "scene"
        return cls(
            background_type=background_type,
            dominant_colors=_string_tuple(payload.get("dominantColors")) or cls.dominant_colors,
            has_horizon=bool(payload.get("hasHorizon", False)),
            background_elements=_string_tuple(payload.get("backgroundElements")),
            extension_suggestions=_string_tuple(payload.get("extensionSuggestions")) or cls.extension_suggestions,
        )


class SmartResizer:
    def __init__(self, gateway: ModelGateway) -> None:
        self.gateway = gateway

    def smart_resize(self, request: SmartResizeRequest) -> SmartResizeResult:
        prompt = build_smart_resize_prompt(request.target_ratio, request.mode, request.maintain.as_dict())
        image = self.gateway.generate_image_from_references(prompt, [request.image])
        return SmartResizeResult(
            image=image,
            original_ratio=measure_ratio(request.image.data) or "original",
            new_ratio=request.target_ratio,
            method=request.mode,
            extended_background=request.mode == "extend",
        )

    def analyze_background(self, image: ImageBlob) -> BackgroundAnalysis:
        """Best-effort analysis; any gateway or parse failure yields the defaults."""
        try:
            text = self.gateway.analyze_image(image, BACKGROUND_ANALYSIS_PROMPT)
        except PakError:
            return BackgroundAnalysis()
        return parse_background_analysis(text)


def parse_background_analysis(text: str | None) -> BackgroundAnalysis:
    cleaned = _FENCE_RE.sub("", text or "").strip()
    try:
        payload = json.loads(cleaned or "{}")
    except json.JSONDecodeError:
        return BackgroundAnalysis()
    if not isinstance(payload, dict):
        return BackgroundAnalysis()
    return BackgroundAnalysis.from_payload(payload)


def aspect_ratios() -> list[RatioSpec]:
    return [spec for spec in (get_spec(value) for value in STUDIO_CATALOG) if spec is not None]


def resize_modes() -> list[ResizeMode]:
    return list(_MODES)


def _string_tuple(value: Any) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(str(item) for item in value if item is not None and str(item).strip())
