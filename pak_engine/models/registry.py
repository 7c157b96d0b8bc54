"""Model catalog for the PAK gateway."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping


@dataclass(frozen=True)
class ModelSpec:
    name: str
    provider: str
    capabilities: tuple[str, ...]

    def supports(self, capability: str) -> bool:
        return capability in self.capabilities


# Capabilities: chat (function calling), image (text/reference image via
# generate_content), image_primary (generate_images), search, reasoning,
# speech, vision.
_DEFAULT_MODELS: dict[str, ModelSpec] = {
    "gemini-flash-lite-latest": ModelSpec(
        name="gemini-flash-lite-latest",
        provider="gemini",
        capabilities=("chat",),
    ),
    "imagen-4.0-generate-001": ModelSpec(
        name="imagen-4.0-generate-001",
        provider="imagen",
        capabilities=("image_primary",),
    ),
    "gemini-2.5-flash-image": ModelSpec(
        name="gemini-2.5-flash-image",
        provider="gemini",
        capabilities=("image",),
    ),
    "gemini-2.5-flash": ModelSpec(
        name="gemini-2.5-flash",
        provider="gemini",
        capabilities=("search", "vision", "chat"),
    ),
    "gemini-2.5-pro": ModelSpec(
        name="gemini-2.5-pro",
        provider="gemini",
        capabilities=("reasoning", "vision"),
    ),
    "gemini-2.5-flash-preview-tts": ModelSpec(
        name="gemini-2.5-flash-preview-tts",
        provider="gemini",
        capabilities=("speech",),
    ),
    "dryrun-text-1": ModelSpec(
        name="dryrun-text-1",
        provider="dryrun",
        capabilities=("chat", "search", "reasoning", "vision", "speech"),
    ),
    "dryrun-image-1": ModelSpec(
        name="dryrun-image-1",
        provider="dryrun",
        capabilities=("image", "image_primary"),
    ),
}


class ModelRegistry:
    def __init__(self, models: Mapping[str, ModelSpec] | None = None) -> None:
        self._models = dict(models) if models else dict(_DEFAULT_MODELS)

    def get(self, name: str) -> ModelSpec | None:
        return self._models.get(name)

    def list(self) -> Iterable[ModelSpec]:
        return self._models.values()

    def by_capability(self, capability: str, provider: str | None = None) -> list[ModelSpec]:
        return [
            model
            for model in self._models.values()
            if model.supports(capability) and (provider is None or model.provider == provider)
        ]

    def ensure(self, name: str, capability: str) -> ModelSpec | None:
        model = self.get(name)
        if model and model.supports(capability):
            return model
        return None
