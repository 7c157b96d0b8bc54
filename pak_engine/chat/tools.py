"""Function-calling tool schemas and the chat system instruction."""

from __future__ import annotations

from typing import Any, Callable, Sequence

from ..turns import ToolCall

GENERATE_IMAGE = "generateImage"
EDIT_IMAGE = "editImage"
RESIZE_IMAGE = "resizeImage"
GENERATE_FROM_REFERENCE = "generateFromReference"
SEARCH_THE_WEB = "searchTheWeb"
COMPLEX_QUERY = "complexQuery"
RESET_FACE_MEMORY = "resetFaceMemory"


def _tool(name: str, description: str, **params: str) -> dict[str, Any]:
    return {
        "name": name,
        "description": description,
        "parameters": {
            "properties": {key: {"description": text} for key, text in params.items()},
            "required": list(params),
        },
    }


TOOL_DECLARATIONS: tuple[dict[str, Any], ...] = (
    _tool(
        GENERATE_IMAGE,
        "Generates a new image from a detailed text description.",
        prompt="A detailed, descriptive prompt for the image.",
    ),
    _tool(
        EDIT_IMAGE,
        "Edits the most recently provided image based on user instructions. Use this for modifications "
        "like changing color, adding elements, or altering the style.",
        prompt="A detailed description of the edits to be made.",
    ),
    _tool(
        RESIZE_IMAGE,
        "Resizes the most recently provided image to a specific aspect ratio.",
        aspectRatio='The target aspect ratio, e.g., "16:9", "1:1".',
    ),
    _tool(
        GENERATE_FROM_REFERENCE,
        "Generates a new image using one or more reference images. Use for tasks like placing a person "
        "in a new scene (face consistency) or combining elements from multiple photos.",
        prompt="A detailed prompt describing the desired output.",
    ),
    _tool(
        SEARCH_THE_WEB,
        "Searches the web for up-to-date information on current events, news, or specific facts.",
        query="The user query to search for.",
    ),
    _tool(
        COMPLEX_QUERY,
        "Handles complex user queries requiring deep reasoning, advanced logic, or coding by enabling "
        "a special thinking mode.",
        query="The original user query that is complex.",
    ),
    _tool(
        RESET_FACE_MEMORY,
        "Resets/clears the stored reference face images from memory. Use this when the user wants to "
        'change the face or explicitly says "reset face".',
    ),
)

TOOL_NAMES = tuple(tool["name"] for tool in TOOL_DECLARATIONS)

SYSTEM_INSTRUCTION = """You are PAK AI, a helpful and friendly multi-modal assistant with face consistency.
When the user uploads face photos, keep them as references for this conversation and use all of them
for every image generation request. Never change the face shape, skin tone, eyes, nose, lips,
hairstyle, or identity.

Rules:
1. If the user requests a new outfit, pose, or scene, apply the requested body/outfit ONLY and keep the face exactly the same.
2. If the user says "change face" or "reset face", use the 'resetFaceMemory' tool and ask for new face images.
3. If no face reference is provided for an identity request, ask: "Please upload your face image for consistency."

Capabilities:
- Web Search: for questions that need current information (weather, news, specific facts), use 'searchTheWeb'.
- Complex Tasks: for deep reasoning, multi-step problem solving, or coding, use 'complexQuery'.
- Image Generation: to create an image from a text description, use 'generateImage'.
- Image Editing: when the user provides an image and asks to change it, use 'editImage'.
- Face Consistency: when the user provides a photo of a person and asks for a new scene ("put me on a beach"), use 'generateFromReference'.
- Image Combination: when the user provides two or more images and asks to merge them, use 'generateFromReference'.
- Image Resizing: when the user asks to resize an image or change its aspect ratio, use 'resizeImage'.
- Safety: dynamic action scenes and dramatic confrontations are allowed. Strictly refuse nudity, sexually explicit content, and realistic extreme gore.
- Limitations: edits and resizes work on one image at a time; use the last image by default."""


ToolSelector = Callable[[Sequence[ToolCall]], "ToolCall | None"]


def select_tool_call(calls: Sequence[ToolCall]) -> ToolCall | None:
    """First call wins; later calls in the same response are ignored."""
    for call in calls:
        if call.name:
            return call
    return None
