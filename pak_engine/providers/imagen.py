"""Imagen backend; the primary, higher-quality attempt of the generation pipeline."""

from __future__ import annotations

from typing import Any

from google import genai
from google.genai import types

from ..aspect_ratios import nearest_supported, normalize_ratio
from ..errors import NoImageProduced
from ..models.selectors import ModelSelector
from ..turns import ImageBlob
from .base import call_with_timeout
from .google_utils import build_client, translate_errors

_IMAGEN_ALLOWED_ASPECT_RATIOS = {"1:1", "3:4", "4:3", "9:16", "16:9"}


class ImagenBackend:
    name = "imagen"

    def __init__(
        self,
        client: genai.Client | None = None,
        *,
        selector: ModelSelector | None = None,
        timeout_s: float | None = None,
        output_mime_type: str = "image/png",
    ) -> None:
        self._client = client
        self.selector = selector or ModelSelector(provider="imagen")
        self.timeout_s = timeout_s
        self.output_mime_type = output_mime_type

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            self._client = build_client()
        return self._client

    def generate(self, prompt: str, aspect_ratio: str) -> ImageBlob:
        config_kwargs: dict[str, Any] = {
            "number_of_images": 1,
            "output_mime_type": self.output_mime_type,
        }
        ratio = _normalize_imagen_aspect_ratio(aspect_ratio)
        if ratio:
            config_kwargs["aspect_ratio"] = ratio
        model = self.selector.resolve("image_primary")
        with translate_errors("Imagen generation"):
            response = call_with_timeout(
                self.client.models.generate_images,
                model=model,
                prompt=prompt,
                config=types.GenerateImagesConfig(**config_kwargs),
                timeout_s=self.timeout_s,
            )
        generated = getattr(response, "generated_images", None) or []
        for item in generated:
            image = getattr(item, "image", None)
            image_bytes = getattr(image, "image_bytes", None) if image is not None else None
            if image_bytes:
                mime_type = getattr(image, "mime_type", None) or self.output_mime_type
                return ImageBlob(data=bytes(image_bytes), mime_type=mime_type)
        raise NoImageProduced("Imagen returned no images.")


def _normalize_imagen_aspect_ratio(value: str | None) -> str | None:
    normalized = normalize_ratio(value)
    if normalized is None:
        return None
    if normalized in _IMAGEN_ALLOWED_ASPECT_RATIOS:
        return normalized
    # Studio ratios are snapped to the closest ratio Imagen accepts.
    return nearest_supported(normalized)
