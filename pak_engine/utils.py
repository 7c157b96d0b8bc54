"""Shared utilities for the PAK engine."""

from __future__ import annotations

import os
import re
import time
import wave
from datetime import datetime, timezone
from pathlib import Path
import tomllib
from typing import Any, Mapping


_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+\-]+/[\w.+\-]+)?(?:;[\w=\-]+)*;base64,", re.IGNORECASE)
_CODE_FENCE_RE = re.compile(r"```[\s\S]*?```")
_MARKDOWN_LINK_RE = re.compile(r"\[([^\]]+)\]\([^)]+\)")


def now_utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def sanitize_payload(payload: Any) -> Any:
    if payload is None:
        return None
    if isinstance(payload, str):
        if _DATA_URI_RE.match(payload):
            return "<data-uri omitted>"
        return payload
    if isinstance(payload, (int, float, bool)):
        return payload
    if isinstance(payload, (bytes, bytearray)):
        return f"<bytes:{len(payload)}>"
    if isinstance(payload, Mapping):
        sanitized: dict[str, Any] = {}
        for key, value in payload.items():
            lowered = str(key).lower()
            if lowered in {"image", "image_bytes", "data", "audio"} and value is not None:
                sanitized[str(key)] = "<omitted>"
                continue
            sanitized[str(key)] = sanitize_payload(value)
        return sanitized
    if isinstance(payload, (list, tuple)):
        return [sanitize_payload(item) for item in payload]
    return str(payload)


_IMAGE_SUFFIXES = {"image/png": ".png", "image/jpeg": ".jpg", "image/webp": ".webp", "image/gif": ".gif"}


def image_suffix(mime_type: str | None) -> str:
    return _IMAGE_SUFFIXES.get(str(mime_type or "").lower(), ".png")


def write_bytes(path: Path, data: bytes) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


def write_wav(path: Path, pcm: bytes, sample_rate: int = 24000, channels: int = 1, sample_width: int = 2) -> Path:
    """Wrap raw little-endian PCM (the speech model's output) in a WAV container."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with wave.open(str(path), "wb") as handle:
        handle.setnchannels(channels)
        handle.setsampwidth(sample_width)
        handle.setframerate(sample_rate)
        handle.writeframes(pcm)
    return path


def split_data_uri(value: str) -> tuple[str | None, str]:
    """Return (mime_type, base64_payload) for a data URI, or (None, value) for bare base64."""
    text = str(value or "").strip()
    match = _DATA_URI_RE.match(text)
    if not match:
        return None, text
    return match.group("mime"), text[match.end():]


def clean_text_for_speech(text: str) -> str:
    """Drop markdown noise that should not be read aloud."""
    cleaned = _CODE_FENCE_RE.sub("(Code block is displayed on screen.)", str(text or ""))
    cleaned = _MARKDOWN_LINK_RE.sub(r"\1", cleaned)
    cleaned = re.sub(r"[*_`]", "", cleaned)
    return cleaned.strip()


def getenv_flag(key: str, default: bool = False) -> bool:
    raw = os.getenv(key)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def getenv_float(key: str, default: float | None = None) -> float | None:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def load_dotenv(path: Path | None = None, override: bool = False) -> bool:
    env_path = path or _default_env_path()
    if not env_path.exists():
        return False
    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[7:].strip()
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not key:
            continue
        value = value.strip()
        if value and value[0] == value[-1] and value.startswith(("\"", "'")):
            value = value[1:-1]
        if not override and key in os.environ:
            continue
        os.environ[key] = value
    return True


def _default_env_path() -> Path:
    cwd = Path.cwd()
    repo_root = _find_repo_root(cwd)
    if repo_root:
        env_path = repo_root / ".env"
        if env_path.exists():
            return env_path
    return cwd / ".env"


def _find_repo_root(start: Path) -> Path | None:
    for current in (start,) + tuple(start.parents):
        if (current / "pak_engine").is_dir():
            return current
        pyproject = current / "pyproject.toml"
        if pyproject.exists():
            try:
                data = tomllib.loads(pyproject.read_text(encoding="utf-8"))
            except Exception:
                continue
            if data.get("project", {}).get("name") == "pak":
                return current
    return None


def monotonic_ms() -> int:
    return int(time.monotonic() * 1000)
