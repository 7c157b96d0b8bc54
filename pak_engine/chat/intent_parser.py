"""Parse user input into structured intents."""

from __future__ import annotations

import re
import shlex

from .command_registry import (
    ATTRIBUTE_PATH_COMMAND_MAP,
    MULTI_PATH_COMMAND_MAP,
    NO_ARG_COMMAND_MAP,
    OPTIONAL_ATTRIBUTE_COMMAND_MAP,
    RAW_ARG_COMMAND_MAP,
)
from .intent_schema import Intent

_SLASH_PATTERN = re.compile(r"^/(\w+)(?:\s+(.*))?$")


def _parse_path_args(arg: str) -> list[str]:
    """Parse one or more path args from a slash command.

    Supports quoted paths so spaces work:
      /attach "/path/with spaces/a.png" "/path/b.png"
    """
    if not arg:
        return []
    try:
        parts = shlex.split(arg)
    except ValueError:
        parts = arg.split()
    return [part for part in parts if part]


def _parse_attribute_path(arg: str) -> tuple[str, str]:
    parts = _parse_path_args(arg)
    if not parts:
        return "", ""
    attribute = parts[0].lower()
    # Unquoted paths with spaces are joined back together.
    return attribute, " ".join(parts[1:])


def parse_intent(text: str) -> Intent:
    raw = text.strip()
    if not raw:
        return Intent(action="noop", raw=text)
    match = _SLASH_PATTERN.match(raw)
    if match:
        command = match.group(1).lower()
        arg = (match.group(2) or "").strip()
        if command in RAW_ARG_COMMAND_MAP:
            action = RAW_ARG_COMMAND_MAP[command]
            key = "text" if action == "speak" else "aspect_ratio"
            return Intent(action=action, raw=text, command_args={key: arg})
        if command in MULTI_PATH_COMMAND_MAP:
            return Intent(action=MULTI_PATH_COMMAND_MAP[command], raw=text, command_args={"paths": _parse_path_args(arg)})
        if command in ATTRIBUTE_PATH_COMMAND_MAP:
            attribute, path = _parse_attribute_path(arg)
            return Intent(
                action=ATTRIBUTE_PATH_COMMAND_MAP[command],
                raw=text,
                command_args={"attribute": attribute, "path": path},
            )
        if command in OPTIONAL_ATTRIBUTE_COMMAND_MAP:
            return Intent(
                action=OPTIONAL_ATTRIBUTE_COMMAND_MAP[command],
                raw=text,
                command_args={"attribute": arg.lower() or None},
            )
        if command in NO_ARG_COMMAND_MAP:
            return Intent(action=NO_ARG_COMMAND_MAP[command], raw=text, command_args={})
        return Intent(action="unknown", raw=text, command_args={"command": command, "arg": arg})

    return Intent(action="chat", raw=text, prompt=raw)
