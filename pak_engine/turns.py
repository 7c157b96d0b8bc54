"""Conversation data model shared by the gateway, dispatcher and engine."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Sequence

from .utils import split_data_uri

DEFAULT_MIME_TYPE = "image/png"


class Role(str, Enum):
    USER = "user"
    MODEL = "model"


@dataclass(frozen=True)
class ImageBlob:
    data: bytes
    mime_type: str = DEFAULT_MIME_TYPE

    @classmethod
    def from_base64(cls, payload: str, mime_type: str | None = None) -> "ImageBlob":
        uri_mime, raw = split_data_uri(payload)
        try:
            data = base64.b64decode(raw, validate=False)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("Image payload is not valid base64.") from exc
        return cls(data=data, mime_type=mime_type or uri_mime or DEFAULT_MIME_TYPE)

    @classmethod
    def from_data_uri(cls, uri: str) -> "ImageBlob":
        return cls.from_base64(uri)

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def to_data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.to_base64()}"

    def __repr__(self) -> str:
        return f"ImageBlob(mime_type={self.mime_type!r}, bytes={len(self.data)})"


@dataclass(frozen=True)
class ConversationTurn:
    role: Role
    text: str = ""
    images: tuple[ImageBlob, ...] = ()

    @classmethod
    def user(cls, text: str, images: Sequence[ImageBlob] = ()) -> "ConversationTurn":
        return cls(role=Role.USER, text=text or "", images=tuple(images))

    @classmethod
    def model(cls, text: str, images: Sequence[ImageBlob] = ()) -> "ConversationTurn":
        return cls(role=Role.MODEL, text=text or "", images=tuple(images))

    def last_image(self) -> ImageBlob | None:
        return self.images[-1] if self.images else None

    def is_empty(self) -> bool:
        return not self.text and not self.images


@dataclass(frozen=True)
class GroundingSource:
    uri: str
    title: str


@dataclass(frozen=True)
class ToolCall:
    name: str
    arguments: Mapping[str, Any] = field(default_factory=dict)

    def argument(self, key: str, default: str = "") -> str:
        value = self.arguments.get(key) if self.arguments else None
        if value is None:
            return default
        text = str(value).strip()
        return text or default


@dataclass(frozen=True)
class Completion:
    text: str = ""
    tool_calls: tuple[ToolCall, ...] = ()


@dataclass(frozen=True)
class SearchAnswer:
    text: str = ""
    sources: tuple[GroundingSource, ...] = ()


@dataclass
class GenerationResult:
    """Single return contract for every dispatch path."""

    text: str
    image: str | None = None
    sources: tuple[GroundingSource, ...] | None = None
    prompt: str | None = None
    needs_aspect_ratio: bool = False
    pending_prompt: str | None = None
    reset_memory: bool = False
    error: str | None = None

    def __post_init__(self) -> None:
        if self.image and self.needs_aspect_ratio:
            raise ValueError("A result cannot carry an image and request an aspect ratio.")

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def image_blob(self) -> ImageBlob | None:
        if not self.image:
            return None
        return ImageBlob.from_data_uri(self.image)
