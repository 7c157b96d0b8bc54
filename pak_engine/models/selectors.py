"""Model selection and fallback logic."""

from __future__ import annotations

import os
from dataclasses import dataclass

from .registry import ModelRegistry, ModelSpec

# Environment overrides per capability.
CAPABILITY_ENV_VARS: dict[str, str] = {
    "chat": "PAK_CHAT_MODEL",
    "image": "PAK_IMAGE_MODEL",
    "image_primary": "PAK_PRIMARY_IMAGE_MODEL",
    "search": "PAK_SEARCH_MODEL",
    "reasoning": "PAK_REASONING_MODEL",
    "speech": "PAK_TTS_MODEL",
    "vision": "PAK_VISION_MODEL",
}


@dataclass(frozen=True)
class ModelSelection:
    model: ModelSpec
    requested: str | None
    fallback_reason: str | None = None


class ModelSelector:
    def __init__(self, registry: ModelRegistry | None = None, provider: str | None = None) -> None:
        self.registry = registry or ModelRegistry()
        self.provider = provider

    def select(self, requested: str | None, capability: str) -> ModelSelection:
        if requested:
            model = self.registry.ensure(requested, capability)
            if model:
                return ModelSelection(model=model, requested=requested)
            fallback_reason = f"Requested model '{requested}' unavailable for capability '{capability}'."
        else:
            fallback_reason = "No model specified; using default."

        candidates = self.registry.by_capability(capability, self.provider)
        if not candidates:
            raise RuntimeError(f"No models available for capability '{capability}'.")
        model = candidates[0]
        return ModelSelection(model=model, requested=requested, fallback_reason=fallback_reason)

    def resolve(self, capability: str) -> str:
        """Model id for a capability; an env override wins even if it is not in the catalog."""
        env_var = CAPABILITY_ENV_VARS.get(capability)
        override = str(os.getenv(env_var) or "").strip() if env_var else ""
        if override:
            return override
        return self.select(None, capability).model.name
