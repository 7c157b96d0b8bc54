"""Failure taxonomy and classification.

Gateway calls raise one of the exceptions below. The dispatcher catches them,
maps them to a :class:`FailureKind` and turns them into user-facing text, so
callers of the orchestration layer never see raw backend exceptions.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

_QUOTA_MARKERS = ("429", "RESOURCE_EXHAUSTED", "quota")


class FailureKind(str, Enum):
    QUOTA_EXCEEDED = "quota_exceeded"
    NO_IMAGE_AVAILABLE = "no_image_available"
    NO_IMAGE_PRODUCED = "no_image_produced"
    NO_AUDIO_PRODUCED = "no_audio_produced"
    BACKEND_FAILURE = "backend_failure"
    GENERATION_FAILED = "generation_failed"
    CANCELLED = "cancelled"


class PakError(RuntimeError):
    kind: FailureKind = FailureKind.BACKEND_FAILURE


class QuotaExceeded(PakError):
    """Backend reported resource exhaustion; retry later, never within the turn."""

    kind = FailureKind.QUOTA_EXCEEDED


class NoImageAvailable(PakError):
    """A tool needed a target image and none was attached or in history."""

    kind = FailureKind.NO_IMAGE_AVAILABLE


class NoImageProduced(PakError):
    kind = FailureKind.NO_IMAGE_PRODUCED


class NoAudioProduced(PakError):
    kind = FailureKind.NO_AUDIO_PRODUCED


class BackendFailure(PakError):
    kind = FailureKind.BACKEND_FAILURE


class GenerationFailed(PakError):
    """Every image backend failed without a quota signal."""

    kind = FailureKind.GENERATION_FAILED


class TurnCancelled(PakError):
    kind = FailureKind.CANCELLED


_MESSAGES: dict[FailureKind, str] = {
    FailureKind.QUOTA_EXCEEDED: (
        "I apologize, but I'm currently experiencing high traffic (Quota Exceeded). "
        "Please try again in a few moments."
    ),
    FailureKind.NO_IMAGE_AVAILABLE: "I'm sorry, I couldn't find an image to work with. Please upload one first.",
    FailureKind.NO_IMAGE_PRODUCED: "I was unable to produce an image for that request. Please try a different prompt.",
    FailureKind.NO_AUDIO_PRODUCED: "No audio data was returned from the speech model.",
    FailureKind.GENERATION_FAILED: "Failed to generate image. Please try again.",
    FailureKind.CANCELLED: "The request was cancelled.",
}


def is_quota_error(error: BaseException | None) -> bool:
    """Return True when an error reports backend resource exhaustion."""
    if error is None:
        return False
    if isinstance(error, QuotaExceeded):
        return True
    code = getattr(error, "code", None)
    if code == 429 or str(code) == "429":
        return True
    status = getattr(error, "status", None)
    if isinstance(status, str) and status.upper() == "RESOURCE_EXHAUSTED":
        return True
    haystacks = [str(error), getattr(error, "message", None) or ""]
    details = getattr(error, "details", None)
    if details is not None:
        haystacks.append(_stringify(details))
    response_json = getattr(error, "response_json", None)
    if response_json is not None:
        haystacks.append(_stringify(response_json))
    for text in haystacks:
        if not text:
            continue
        for marker in _QUOTA_MARKERS:
            if marker in str(text):
                return True
    return False


def classify(error: BaseException) -> FailureKind:
    if isinstance(error, PakError):
        return error.kind
    if is_quota_error(error):
        return FailureKind.QUOTA_EXCEEDED
    return FailureKind.BACKEND_FAILURE


def user_message(error: BaseException, action: str | None = None) -> str:
    """User-facing text for a failure; ``action`` names what failed for generic errors."""
    kind = classify(error)
    if kind in _MESSAGES:
        return _MESSAGES[kind]
    detail = str(error).strip()
    if action:
        return f"An error occurred while trying to {action}: {detail}" if detail else f"Failed to {action}."
    return f"An error occurred: {detail}" if detail else "An unexpected error occurred."


def _stringify(value: Any) -> str:
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError):
        return str(value)
