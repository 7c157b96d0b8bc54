"""Instruction builders for image generation, editing and resizing.

Every function here is a pure string template over structured input: no model
calls, no randomness, no clock. Identical input always yields identical text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Mapping

from ..aspect_ratios import get_spec, ratio_value
from .keywords import DEFAULT_POLICY, KeywordPolicy

CONSISTENCY_ATTRIBUTES: tuple[str, ...] = ("face", "dress", "background", "environment")

ORIENTATION_TERMS: tuple[str, ...] = (
    "landscape",
    "portrait",
    "square",
    "1:1",
    "16:9",
    "9:16",
    "3:4",
    "4:3",
    "horizontal",
    "vertical",
    "wide",
    "tall",
    "panoramic",
)

NO_TEXT_LINE = "Do not include any text, watermarks, signatures, letters, or words in the image."

_FULL_BLEED_BLOCK = (
    "- ABSOLUTELY NO FRAMES, NO BORDERS, NO BEZELS.",
    "- DO NOT SHOW THE IMAGE ON A PHONE SCREEN OR DEVICE.",
    "- The image must be FULL BLEED (extending to edges).",
)

_EXTRACTION_PROMPTS: dict[str, str] = {
    "face": "Extract only the face with clear features. Remove everything else. Provide clean face reference.",
    "dress": "Extract only the clothing/outfit. Remove face and background. Provide clean dress reference.",
    "background": "Extract only the background scene. Remove person/subject. Provide clean background reference.",
    "environment": (
        "Extract the environment with lighting and atmosphere. Remove main subject. "
        "Provide environment reference."
    ),
}

_CONSISTENCY_LINES: dict[str, tuple[str, str]] = {
    "face": (
        "FACE: Keep EXACTLY same face from reference - identical features, structure, identity",
        "FACE: Create new face based on context",
    ),
    "dress": (
        "DRESS: Maintain EXACT same clothing/outfit from reference",
        "DRESS: Create new clothing based on user request",
    ),
    "background": (
        "BACKGROUND: Keep EXACT same background scene from reference",
        "BACKGROUND: Create new background based on user request",
    ),
    "environment": (
        "ENVIRONMENT: Maintain EXACT same environment, lighting, atmosphere from reference",
        "ENVIRONMENT: Create new environment based on user request",
    ),
}

_SMART_RESIZE_CHECKS: tuple[tuple[str, str], ...] = (
    ("face", "FACE: Exact identity, features, expression"),
    ("dress", "DRESS: Exact outfit, colors, patterns"),
    ("pose", "POSE: Same body position"),
    ("environment", "ENVIRONMENT: Same scene context"),
    ("style", "STYLE: Same artistic style"),
)


@dataclass(frozen=True)
class ConsistencySettings:
    """Per-attribute choice between keeping the reference and creating anew."""

    face: str = "consistent"
    dress: str = "consistent"
    background: str = "consistent"
    environment: str = "consistent"

    def __post_init__(self) -> None:
        for attribute in CONSISTENCY_ATTRIBUTES:
            value = getattr(self, attribute)
            if value not in {"consistent", "change"}:
                raise ValueError(f"{attribute} must be 'consistent' or 'change', got {value!r}")

    @classmethod
    def from_mapping(cls, values: Mapping[str, str] | None) -> "ConsistencySettings":
        values = values or {}
        return cls(**{key: str(values[key]) for key in CONSISTENCY_ATTRIBUTES if key in values})

    def keeps(self, attribute: str) -> bool:
        return getattr(self, attribute) == "consistent"


def clean_prompt_for_resize(prompt: str | None) -> str:
    """Strip orientation and ratio words so they cannot fight the target ratio."""
    if not prompt or not isinstance(prompt, str):
        return ""
    cleaned = prompt
    for term in ORIENTATION_TERMS:
        cleaned = re.sub(rf"\b{re.escape(term)}\b", "", cleaned, flags=re.IGNORECASE)
    return re.sub(r"\s+", " ", cleaned).strip()


def _composition_block(aspect_ratio: str, subject: str, environment: str) -> str:
    if aspect_ratio == "1:1":
        lines = [
            "SQUARE COMPOSITION (1:1):",
            f"- Center the {subject} perfectly",
            "- Balanced framing from all sides",
            "- Maintain equal spacing around subject",
            "- Perfect for social media posts",
        ]
    elif aspect_ratio == "9:16":
        lines = [
            "VERTICAL PORTRAIT (9:16):",
            f"- Full-body or 3/4 view of {subject}",
            "- Tall, portrait-oriented framing",
            "- More vertical space above and below",
            "- Ideal for mobile stories and reels",
            "- DO NOT put the image inside a phone screen",
        ]
    elif aspect_ratio == "16:9":
        lines = [
            "WIDE LANDSCAPE (16:9):",
            "- Panoramic horizontal composition",
            f"- Show more of the {environment} background",
            "- Wider field of view",
            "- Perfect for banners and covers",
        ]
    elif aspect_ratio == "3:4":
        lines = [
            "VERTICAL PORTRAIT (3:4):",
            "- Classic portrait composition",
            "- Balanced vertical framing",
            "- Ideal for classic photography",
        ]
    elif aspect_ratio == "4:3":
        lines = [
            "CLASSIC LANDSCAPE (4:3):",
            "- Traditional photography composition",
            "- Balanced horizontal framing",
        ]
    else:
        lines = [f"Adapt composition for {aspect_ratio} aspect ratio"]
    return "\n".join(lines)


def _size_instructions(aspect_ratio: str) -> str:
    spec = get_spec(aspect_ratio)
    return spec.pixels if spec else "the requested aspect ratio"


def build_generation_prompt(
    raw_prompt: str | None,
    aspect_ratio: str,
    policy: KeywordPolicy | None = None,
) -> str:
    policy = policy or DEFAULT_POLICY
    scene = clean_prompt_for_resize(raw_prompt)
    keywords = policy.detect(scene)
    subject = keywords.subject
    environment = keywords.environment

    consistency = "\n".join(
        [
            "CRITICAL CONSISTENCY COMMANDS:",
            f"- IDENTICAL {subject.upper()} APPEARANCE: Same face, body, features, colors",
            "- EXACT SAME CLOTHING/STYLE: No changes to attire or accessories",
            f"- IDENTICAL BACKGROUND: Same {environment}, objects, lighting",
            f"- SAME ART STYLE: {keywords.style} style, quality, and details",
            "- SAME LIGHTING: Identical light source, shadows, atmosphere",
            "- PRESERVE ALL DETAILS: No alterations to character identity",
            "",
            "STRICT PROHIBITIONS:",
            "- DO NOT change facial features",
            "- DO NOT modify clothing or colors",
            "- DO NOT alter background elements",
            "- DO NOT change art style or quality",
            "- DO NOT modify lighting conditions",
            *_FULL_BLEED_BLOCK,
            "",
            f"ONLY ADJUST: Composition and framing for {aspect_ratio} aspect ratio",
        ]
    )

    return "\n".join(
        [
            "RESIZE TRANSFORMATION COMMAND:",
            "",
            f"ORIGINAL SCENE: {scene}",
            "",
            f"TARGET FORMAT: {aspect_ratio} aspect ratio ({_size_instructions(aspect_ratio)})",
            "",
            _composition_block(aspect_ratio, subject, environment),
            "",
            consistency,
            "",
            f"OUTPUT: Generate the EXACT same scene and character, only recomposed for {aspect_ratio} aspect ratio.",
            f"Maintain pixel-perfect consistency of all visual elements. {NO_TEXT_LINE}",
            "",
            "CRITICAL: The output must be a raw, frameless image. Do not render a phone, tablet, or photo "
            "frame containing the image. The image content must fill the entire canvas edge-to-edge.",
        ]
    )


def build_resize_prompt(
    aspect_ratio: str,
    scene_description: str | None = None,
    original_ratio: str | None = None,
) -> str:
    spec = get_spec(aspect_ratio)
    ratio_description = spec.label if spec else aspect_ratio
    scene = (
        f'SCENE DESCRIPTION: "{scene_description}"' if scene_description else "SCENE: The provided image."
    )

    target = ratio_value(aspect_ratio)
    source = ratio_value(original_ratio) if original_ratio else None
    if target is not None and source is not None:
        if target > source:
            direction = [
                f"   - {aspect_ratio} is wider than the original: OUTPAINT / EXTEND the background horizontally.",
            ]
        elif target < source:
            direction = [
                f"   - {aspect_ratio} is taller than the original: EXTEND the background vertically.",
            ]
        else:
            direction = ["   - The shape is unchanged: keep the framing and refine the edges only."]
    else:
        direction = [
            f"   - If {aspect_ratio} is wider than original: OUTPAINT / EXTEND background horizontally.",
            f"   - If {aspect_ratio} is taller than original: EXTEND background vertically.",
        ]

    return "\n".join(
        [
            "CRITICAL TASK: CREATE A NEW IMAGE based on the attached reference.",
            "",
            f"TARGET ASPECT RATIO: {aspect_ratio} ({ratio_description})",
            scene,
            "",
            "INSTRUCTIONS:",
            "1. IGNORE the aspect ratio of the attached reference image.",
            f"2. GENERATE a new image canvas with dimensions approx {_size_instructions(aspect_ratio)}.",
            "3. RECOMPOSE the scene to fit this new shape perfectly.",
            *direction,
            "4. CONSISTENCY IS KEY:",
            "   - Subject (Face, Body, Dress) MUST match the reference EXACTLY.",
            "   - Environment/Lighting MUST match the reference.",
            "",
            "OUTPUT:",
            "- A single, high-quality image.",
            "- FULL BLEED (No borders, no frames, no black bars).",
            f"- The image MUST fill the {aspect_ratio} frame completely.",
        ]
    )


def build_consistency_prompt(
    user_prompt: str,
    settings: ConsistencySettings | Mapping[str, str],
    aspect_ratio: str = "1:1",
) -> str:
    if not isinstance(settings, ConsistencySettings):
        settings = ConsistencySettings.from_mapping(settings)
    lines = [f'USER REQUEST: "{user_prompt}"', "", "CRITICAL CONSISTENCY INSTRUCTIONS:"]
    for attribute in CONSISTENCY_ATTRIBUTES:
        keep, change = _CONSISTENCY_LINES[attribute]
        lines.append(keep if settings.keeps(attribute) else change)
    lines.extend(
        [
            "",
            "ADDITIONAL REQUIREMENTS:",
            "- No borders, frames, or white spaces",
            f"- Full bleed image, aspect ratio: {aspect_ratio}",
            "- High quality, photorealistic",
            "- Seamless integration of all elements",
            "- Follow user prompt for any new elements",
            "- OUTPUT: A single high-quality image.",
        ]
    )
    return "\n".join(lines)


def build_edit_prompt(user_instruction: str) -> str:
    return (
        "You are an expert photo editor. Your most important and primary goal is to perfectly preserve "
        "the facial features, likeness, and identity of the person in the original image. This is a strict "
        "requirement. Now, edit the image based on the user's instructions below. When changing the "
        "background, clothes, or pose, you MUST apply these changes to the original person without altering "
        f'their face. User edit instructions: "{user_instruction}". IMPORTANT: Do not add any frames, '
        "borders, or text to the image."
    )


def build_reference_prompt(user_prompt: str) -> str:
    return "\n".join(
        [
            "Use the attached face reference.",
            "Keep the face identical. Do not alter facial features.",
            user_prompt,
            "",
            "STRICT RULES AND GUIDELINES:",
            "- Use the reference face images exactly. Do NOT alter the identity.",
            "- Keep the face exactly the same. Do not change eyes, lips, nose, skin tone, or hair.",
            "- Only modify body, pose, and environment.",
            "- Apply the requested body/outfit ONLY.",
            "- Ensure high photorealism and natural blending.",
            "- OUTPUT FORMAT: Full-bleed image. NO Borders, NO Frames, NO Device Mockups.",
        ]
    )


def build_extraction_prompt(attribute: str) -> str:
    try:
        return _EXTRACTION_PROMPTS[attribute]
    except KeyError:
        raise ValueError(f"Unknown consistency attribute: {attribute!r}") from None


def build_smart_resize_prompt(
    aspect_ratio: str,
    mode: str,
    maintain: Mapping[str, bool],
) -> str:
    lines = [
        f"CRITICAL TASK: CREATE A NEW IMAGE with Aspect Ratio {aspect_ratio}.",
        "",
        f"TARGET: {aspect_ratio} (Ignore input image dimensions)",
        f"MODE: {mode.upper()} / OUTPAINTING",
        "",
        "CONSISTENCY CHECKLIST (MUST PRESERVE):",
    ]
    for key, line in _SMART_RESIZE_CHECKS:
        if maintain.get(key):
            lines.append(f"- {line}")
    lines.extend(
        [
            "",
            "EXECUTION INSTRUCTIONS:",
            f"1. START A NEW CANVAS with aspect ratio {aspect_ratio}.",
            "2. PLACE the subject from the reference image into this new canvas.",
            "3. EXTEND (Outpaint) the background to fill the remaining space seamlessly.",
            "4. DO NOT stretch the subject. Keep proportions correct.",
            "5. Ensure the result is a single, full-bleed image.",
            "",
            "OUTPUT FORMAT:",
            f"- Final Image MUST have aspect ratio {aspect_ratio}.",
            "- NO black bars, NO frames, NO UI elements.",
            "- High Quality, seamless extension.",
        ]
    )
    return "\n".join(lines)
