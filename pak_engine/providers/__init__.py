"""Gateway and image backend wiring."""

from __future__ import annotations

from .base import ImageBackend, ModelGateway, ProviderRegistry, call_with_timeout
from .dryrun import DryRunGateway, DryRunImageBackend
from .gemini import GeminiGateway, GeminiImageBackend
from .imagen import ImagenBackend


def default_gateway(*, dry_run: bool = False, timeout_s: float | None = None) -> tuple[ModelGateway, ProviderRegistry]:
    """Gateway plus image backends in pipeline order (primary first)."""
    if dry_run:
        dry = DryRunGateway()
        return dry, ProviderRegistry([DryRunImageBackend(dry, "dryrun-primary"), DryRunImageBackend(dry)])
    gateway = GeminiGateway(timeout_s=timeout_s)
    return gateway, ProviderRegistry(
        [
            ImagenBackend(timeout_s=timeout_s),
            GeminiImageBackend(gateway),
        ]
    )


__all__ = [
    "DryRunGateway",
    "DryRunImageBackend",
    "GeminiGateway",
    "GeminiImageBackend",
    "ImageBackend",
    "ImagenBackend",
    "ModelGateway",
    "ProviderRegistry",
    "call_with_timeout",
    "default_gateway",
]
