"""Generation with per-attribute control over what stays fixed."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from ..memory.consistency import ConsistencyMemory
from ..prompts.synthesis import CONSISTENCY_ATTRIBUTES, ConsistencySettings, build_consistency_prompt
from ..providers.base import ModelGateway
from ..runs.events import EventWriter
from ..turns import ImageBlob


@dataclass(frozen=True)
class ControlledGeneration:
    image: ImageBlob
    settings: ConsistencySettings
    generated_elements: Mapping[str, bool]
    references: tuple[str, ...] = ()

    def references_used(self) -> list[str]:
        """Kept attributes whose stored reference image was actually sent."""
        return list(self.references)


class ConsistencyStudio:
    def __init__(self, gateway: ModelGateway, memory: ConsistencyMemory, events: EventWriter | None = None) -> None:
        self.gateway = gateway
        self.memory = memory
        self.events = events

    def generate_with_control(
        self,
        user_prompt: str,
        settings: ConsistencySettings | Mapping[str, str] | None = None,
        aspect_ratio: str = "1:1",
    ) -> ControlledGeneration:
        """Generate ``user_prompt`` keeping every attribute marked ``consistent``.

        Stored references for kept attributes are sent ahead of the prompt, in
        slot order. A kept attribute with an empty slot is simply described by
        the prompt. With no references at all this is plain text-to-image.
        """
        if settings is None:
            settings = ConsistencySettings()
        elif not isinstance(settings, ConsistencySettings):
            settings = ConsistencySettings.from_mapping(settings)
        prompt = build_consistency_prompt(user_prompt, settings, aspect_ratio)
        kept = [attribute for attribute in CONSISTENCY_ATTRIBUTES if settings.keeps(attribute)]
        snapshot = self.memory.snapshot()
        supplied = [attribute for attribute in kept if getattr(snapshot, attribute) is not None]
        references = [getattr(snapshot, attribute) for attribute in supplied]
        if references:
            image = self.gateway.generate_image_from_references(prompt, references)
        else:
            image = self.gateway.generate_image(prompt, aspect_ratio)
        generated = {attribute: not settings.keeps(attribute) for attribute in CONSISTENCY_ATTRIBUTES}
        if self.events is not None:
            self.events.emit(
                "image_generated",
                backend=self.gateway.name,
                aspect_ratio=aspect_ratio,
                references=supplied,
                generated_elements=generated,
            )
        return ControlledGeneration(
            image=image,
            settings=settings,
            generated_elements=generated,
            references=tuple(supplied),
        )

    def extract_element(self, image: ImageBlob, attribute: str) -> ImageBlob:
        extracted = self.memory.extract(self.gateway, image, attribute)
        if self.events is not None:
            self.events.emit("memory_updated", attribute=attribute, source="extraction")
        return extracted
