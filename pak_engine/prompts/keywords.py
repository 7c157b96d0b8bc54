"""Keyword heuristics used to describe a scene in generation prompts.

Detection is a plain substring scan over the lowercased prompt: the first
keyword in list order wins, otherwise the default is used. Pass a custom
``KeywordPolicy`` to the prompt builders to change the vocabulary.
"""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_SUBJECTS: tuple[str, ...] = (
    "lion",
    "person",
    "animal",
    "character",
    "figure",
    "man",
    "woman",
    "robot",
    "cat",
    "dog",
    "boy",
    "girl",
)

DEFAULT_ENVIRONMENTS: tuple[str, ...] = (
    "desert",
    "forest",
    "beach",
    "city",
    "room",
    "landscape",
    "mountain",
    "space",
    "office",
    "studio",
)

DEFAULT_STYLES: tuple[str, ...] = (
    "cinematic",
    "realistic",
    "cartoon",
    "painting",
    "digital art",
    "anime",
    "photorealistic",
    "sketch",
)


@dataclass(frozen=True)
class SceneKeywords:
    subject: str
    environment: str
    style: str


@dataclass(frozen=True)
class KeywordPolicy:
    subjects: tuple[str, ...] = DEFAULT_SUBJECTS
    environments: tuple[str, ...] = DEFAULT_ENVIRONMENTS
    styles: tuple[str, ...] = DEFAULT_STYLES
    default_subject: str = "subject"
    default_environment: str = "environment"
    default_style: str = "realistic"

    def detect_subject(self, prompt: str) -> str:
        return _first_match(prompt, self.subjects, self.default_subject)

    def detect_environment(self, prompt: str) -> str:
        return _first_match(prompt, self.environments, self.default_environment)

    def detect_style(self, prompt: str) -> str:
        return _first_match(prompt, self.styles, self.default_style)

    def detect(self, prompt: str) -> SceneKeywords:
        return SceneKeywords(
            subject=self.detect_subject(prompt),
            environment=self.detect_environment(prompt),
            style=self.detect_style(prompt),
        )


DEFAULT_POLICY = KeywordPolicy()


def _first_match(prompt: str, keywords: tuple[str, ...], default: str) -> str:
    lowered = (prompt or "").lower()
    for keyword in keywords:
        if keyword in lowered:
            return keyword
    return default
