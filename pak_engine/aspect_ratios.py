"""Supported aspect ratios and their pixel targets."""

from __future__ import annotations

import re
from dataclasses import dataclass
from io import BytesIO
from math import gcd
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError

_RATIO_RE = re.compile(r"^\s*(\d+)\s*[:/]\s*(\d+)\s*$")


@dataclass(frozen=True)
class RatioSpec:
    value: str
    width: int
    height: int
    label: str
    description: str

    @property
    def ratio(self) -> float:
        return self.width / self.height

    @property
    def pixels(self) -> str:
        return f"{self.width}x{self.height} pixels"


_CHAT_RATIOS: tuple[RatioSpec, ...] = (
    RatioSpec("1:1", 1080, 1080, "SQUARE (1:1)", "Instagram Posts"),
    RatioSpec("9:16", 1080, 1920, "TALL PORTRAIT (9:16)", "Stories, Reels"),
    RatioSpec("16:9", 1920, 1080, "WIDE LANDSCAPE (16:9)", "Desktop, TV"),
    RatioSpec("3:4", 1080, 1440, "PORTRAIT (3:4)", "Classic Portrait"),
    RatioSpec("4:3", 1440, 1080, "LANDSCAPE (4:3)", "Classic Landscape"),
)

_STUDIO_EXTRA_RATIOS: tuple[RatioSpec, ...] = (
    RatioSpec("4:5", 1080, 1350, "PORTRAIT (4:5)", "Instagram Portrait"),
    RatioSpec("3:2", 1620, 1080, "CLASSIC (3:2)", "Photography"),
    RatioSpec("2:3", 1080, 1620, "VERTICAL (2:3)", "Portrait Photos"),
    RatioSpec("21:9", 2520, 1080, "ULTRA WIDE (21:9)", "Cinematic"),
    RatioSpec("9:21", 1080, 2520, "ULTRA TALL (9:21)", "Tall Mobile"),
)

SUPPORTED_RATIOS: tuple[str, ...] = tuple(spec.value for spec in _CHAT_RATIOS)
STUDIO_RATIOS: tuple[str, ...] = SUPPORTED_RATIOS + tuple(spec.value for spec in _STUDIO_EXTRA_RATIOS)

_SPECS: dict[str, RatioSpec] = {spec.value: spec for spec in _CHAT_RATIOS + _STUDIO_EXTRA_RATIOS}


def parse_ratio(value: str | None) -> Optional[Tuple[int, int]]:
    if not value:
        return None
    match = _RATIO_RE.match(value)
    if not match:
        return None
    w = int(match.group(1))
    h = int(match.group(2))
    if w <= 0 or h <= 0:
        return None
    return w, h


def normalize_ratio(value: str | None) -> str | None:
    """Canonical "W:H" text for a ratio-like string, or None when unparseable."""
    parsed = parse_ratio(value)
    if parsed is None:
        return None
    return f"{parsed[0]}:{parsed[1]}"


def ratio_value(value: str) -> float | None:
    parsed = parse_ratio(value)
    if parsed is None:
        return None
    return parsed[0] / parsed[1]


def is_supported(value: str | None, *, studio: bool = False) -> bool:
    normalized = normalize_ratio(value)
    allowed = STUDIO_RATIOS if studio else SUPPORTED_RATIOS
    return normalized in allowed


def get_spec(value: str | None) -> RatioSpec | None:
    normalized = normalize_ratio(value)
    if normalized is None:
        return None
    return _SPECS.get(normalized)


def orientation(value: str) -> str:
    """"square", "landscape" or "portrait" for a ratio string."""
    ratio = ratio_value(value)
    if ratio is None or abs(ratio - 1.0) < 1e-6:
        return "square"
    return "landscape" if ratio > 1.0 else "portrait"


def nearest_supported(value: str | None, *, studio: bool = False) -> str | None:
    ratio = ratio_value(value or "")
    if ratio is None:
        return None
    allowed = STUDIO_RATIOS if studio else SUPPORTED_RATIOS
    best_key = None
    best_delta = float("inf")
    for key in allowed:
        delta = abs(_SPECS[key].ratio - ratio)
        if delta < best_delta:
            best_key = key
            best_delta = delta
    return best_key


def measure_ratio(data: bytes) -> str | None:
    """Reduced "W:H" of encoded image bytes, or None when Pillow cannot read them."""
    try:
        with Image.open(BytesIO(data)) as decoded:
            width, height = decoded.size
    except (UnidentifiedImageError, OSError, ValueError):
        return None
    if not width or not height:
        return None
    divisor = gcd(width, height)
    return f"{width // divisor}:{height // divisor}"
