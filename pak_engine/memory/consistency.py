"""Session-scoped reference images for identity consistency."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable, Mapping

from ..prompts.synthesis import CONSISTENCY_ATTRIBUTES, build_extraction_prompt
from ..providers.base import ModelGateway
from ..turns import DEFAULT_MIME_TYPE, ImageBlob


@dataclass(frozen=True)
class MemorySnapshot:
    face: ImageBlob | None = None
    dress: ImageBlob | None = None
    background: ImageBlob | None = None
    environment: ImageBlob | None = None

    def as_mapping(self) -> Mapping[str, ImageBlob | None]:
        return MappingProxyType({attribute: getattr(self, attribute) for attribute in CONSISTENCY_ATTRIBUTES})

    def filled(self) -> list[str]:
        return [attribute for attribute in CONSISTENCY_ATTRIBUTES if getattr(self, attribute) is not None]


class ConsistencyMemory:
    """Four independent slots: face, dress, background, environment.

    Slots hold raw image bytes; a data URI passed to ``set`` is stripped first.
    Setting an empty payload clears the slot. Nothing here raises for a known
    attribute.
    """

    def __init__(self) -> None:
        self._slots: dict[str, ImageBlob | None] = {attribute: None for attribute in CONSISTENCY_ATTRIBUTES}
        self._lock = threading.RLock()

    def set(self, attribute: str, image: ImageBlob | bytes | str | None, mime_type: str | None = None) -> None:
        key = _check_attribute(attribute)
        blob = _coerce_blob(image, mime_type)
        with self._lock:
            self._slots[key] = blob

    def get(self, attribute: str) -> ImageBlob | None:
        key = _check_attribute(attribute)
        with self._lock:
            return self._slots[key]

    def clear(self, attribute: str) -> None:
        self.set(attribute, None)

    def clear_all(self) -> None:
        with self._lock:
            for key in self._slots:
                self._slots[key] = None

    def snapshot(self) -> MemorySnapshot:
        with self._lock:
            return MemorySnapshot(**self._slots)

    def is_empty(self) -> bool:
        with self._lock:
            return all(blob is None for blob in self._slots.values())

    def references(self, attributes: Iterable[str] | None = None) -> list[ImageBlob]:
        """Stored images for ``attributes`` (all by default) in slot order."""
        wanted = set(CONSISTENCY_ATTRIBUTES if attributes is None else (_check_attribute(a) for a in attributes))
        with self._lock:
            return [
                blob
                for key, blob in self._slots.items()
                if key in wanted and blob is not None
            ]

    def extract(self, gateway: ModelGateway, image: ImageBlob, attribute: str) -> ImageBlob:
        """Isolate ``attribute`` from ``image`` via the gateway and store it.

        The slot is only written after the gateway call succeeds.
        """
        key = _check_attribute(attribute)
        extracted = gateway.generate_image_from_references(build_extraction_prompt(key), [image])
        self.set(key, extracted)
        return extracted


def _check_attribute(attribute: str) -> str:
    key = str(attribute or "").strip().lower()
    if key not in CONSISTENCY_ATTRIBUTES:
        raise ValueError(f"Unknown consistency attribute: {attribute!r}")
    return key


def _coerce_blob(image: ImageBlob | bytes | str | None, mime_type: str | None) -> ImageBlob | None:
    if image is None:
        return None
    if isinstance(image, ImageBlob):
        return image if image.data else None
    if isinstance(image, (bytes, bytearray)):
        return ImageBlob(data=bytes(image), mime_type=mime_type or DEFAULT_MIME_TYPE) if image else None
    if isinstance(image, str):
        if not image.strip():
            return None
        return ImageBlob.from_base64(image, mime_type)
    raise TypeError(f"Unsupported reference image type: {type(image).__name__}")
