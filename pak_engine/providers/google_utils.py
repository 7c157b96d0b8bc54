"""Shared helpers for the Google (Gemini / Imagen) backends."""

from __future__ import annotations

import base64
import os
from contextlib import contextmanager
from typing import Any, Iterator, Sequence

from google import genai
from google.genai import types

from ..errors import BackendFailure, PakError, QuotaExceeded, is_quota_error
from ..turns import ConversationTurn, GroundingSource, ImageBlob, ToolCall


def resolve_api_key() -> str:
    api_key = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
    if not api_key:
        raise RuntimeError("GEMINI_API_KEY or GOOGLE_API_KEY not set.")
    return api_key


def build_client(api_key: str | None = None) -> genai.Client:
    return genai.Client(api_key=api_key or resolve_api_key())


@contextmanager
def translate_errors(action: str) -> Iterator[None]:
    """Re-raise any backend exception as QuotaExceeded or BackendFailure."""
    try:
        yield
    except PakError:
        raise
    except Exception as exc:
        if is_quota_error(exc):
            raise QuotaExceeded(f"{action} quota exceeded: {exc}") from exc
        raise BackendFailure(f"{action} failed: {exc}") from exc


def image_part(image: ImageBlob) -> types.Part:
    return types.Part(inline_data=types.Blob(data=image.data, mime_type=image.mime_type))


def turn_to_content(turn: ConversationTurn) -> types.Content:
    parts: list[types.Part] = [types.Part(text=turn.text or "")]
    parts.extend(image_part(image) for image in turn.images)
    return types.Content(role=turn.role.value, parts=parts)


def history_to_contents(history: Sequence[ConversationTurn]) -> list[types.Content]:
    # The API rejects contents without parts, so empty turns are skipped.
    return [turn_to_content(turn) for turn in history if not turn.is_empty()]


def extract_image_blobs(response: Any) -> list[ImageBlob]:
    blobs: list[ImageBlob] = []
    candidates = getattr(response, "candidates", None) or []
    for candidate in candidates:
        content = getattr(candidate, "content", None)
        parts = getattr(content, "parts", None) or getattr(candidate, "parts", None) or []
        for part in parts:
            inline_data = getattr(part, "inline_data", None)
            data = getattr(inline_data, "data", None) if inline_data else None
            if not data:
                continue
            mime_type = getattr(inline_data, "mime_type", None) or "image/png"
            if isinstance(data, str):
                blobs.append(ImageBlob.from_base64(data, mime_type))
            elif isinstance(data, (bytes, bytearray)):
                blobs.append(ImageBlob(data=bytes(data), mime_type=mime_type))
    return blobs


def extract_text(response: Any) -> str:
    try:
        text = getattr(response, "text", None)
    except Exception:
        text = None
    if isinstance(text, str) and text.strip():
        return text
    chunks: list[str] = []
    for candidate in getattr(response, "candidates", None) or []:
        content = getattr(candidate, "content", None)
        for part in getattr(content, "parts", None) or []:
            chunk = getattr(part, "text", None)
            if isinstance(chunk, str) and chunk:
                chunks.append(chunk)
    return "".join(chunks)


def extract_tool_calls(response: Any) -> tuple[ToolCall, ...]:
    calls = getattr(response, "function_calls", None) or []
    result: list[ToolCall] = []
    for call in calls:
        name = getattr(call, "name", None)
        if not name:
            continue
        args = getattr(call, "args", None) or {}
        result.append(ToolCall(name=str(name), arguments=dict(args)))
    return tuple(result)


def extract_sources(response: Any) -> tuple[GroundingSource, ...]:
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return ()
    metadata = getattr(candidates[0], "grounding_metadata", None)
    chunks = getattr(metadata, "grounding_chunks", None) or []
    sources: list[GroundingSource] = []
    for chunk in chunks:
        web = getattr(chunk, "web", None)
        if web is None:
            continue
        uri = getattr(web, "uri", None)
        if not uri:
            continue
        sources.append(GroundingSource(uri=str(uri), title=str(getattr(web, "title", None) or uri)))
    return tuple(sources)


def extract_audio_bytes(response: Any) -> bytes | None:
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return None
    content = getattr(candidates[0], "content", None)
    parts = getattr(content, "parts", None) or []
    if not parts:
        return None
    inline_data = getattr(parts[0], "inline_data", None)
    data = getattr(inline_data, "data", None) if inline_data else None
    if isinstance(data, str) and data:
        return base64.b64decode(data)
    if isinstance(data, (bytes, bytearray)) and data:
        return bytes(data)
    return None
