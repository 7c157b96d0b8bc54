"""Prompt synthesis."""

from __future__ import annotations

from .keywords import DEFAULT_POLICY, KeywordPolicy, SceneKeywords
from .synthesis import (
    CONSISTENCY_ATTRIBUTES,
    ConsistencySettings,
    build_consistency_prompt,
    build_edit_prompt,
    build_extraction_prompt,
    build_generation_prompt,
    build_reference_prompt,
    build_resize_prompt,
    build_smart_resize_prompt,
    clean_prompt_for_resize,
)

__all__ = [
    "CONSISTENCY_ATTRIBUTES",
    "ConsistencySettings",
    "DEFAULT_POLICY",
    "KeywordPolicy",
    "SceneKeywords",
    "build_consistency_prompt",
    "build_edit_prompt",
    "build_extraction_prompt",
    "build_generation_prompt",
    "build_reference_prompt",
    "build_resize_prompt",
    "build_smart_resize_prompt",
    "clean_prompt_for_resize",
]
