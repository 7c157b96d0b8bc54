"""Shared slash-command metadata for parse + chat handling."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class CommandSpec:
    command: str
    action: str
    arg_kind: str
    help: str


RAW_ARG_COMMANDS: tuple[CommandSpec, ...] = (
    CommandSpec("ratio", "resume_deferred", "raw", "Pick the aspect ratio for the pending image"),
    CommandSpec("resize", "resize", "raw", "Resize the latest image to a ratio"),
    CommandSpec("speak", "speak", "raw", "Read text aloud (writes a .wav)"),
)

MULTI_PATH_COMMANDS: tuple[CommandSpec, ...] = (
    CommandSpec("attach", "attach", "multi_path", "Attach images to the next message"),
)

ATTRIBUTE_PATH_COMMANDS: tuple[CommandSpec, ...] = (
    CommandSpec("ref", "set_reference", "attribute_path", "Store a face/dress/background/environment reference"),
    CommandSpec("extract", "extract_reference", "attribute_path", "Extract a reference from an image"),
)

OPTIONAL_ATTRIBUTE_COMMANDS: tuple[CommandSpec, ...] = (
    CommandSpec("clear_ref", "clear_reference", "optional_attribute", "Clear one reference (or all)"),
)

NO_ARG_COMMANDS: tuple[CommandSpec, ...] = (
    CommandSpec("memory", "show_memory", "none", "Show which references are stored"),
    CommandSpec("reset", "reset_memory", "none", "Clear every stored reference"),
    CommandSpec("help", "help", "none", "Show help"),
)

ALL_COMMANDS: tuple[CommandSpec, ...] = (
    RAW_ARG_COMMANDS + MULTI_PATH_COMMANDS + ATTRIBUTE_PATH_COMMANDS + OPTIONAL_ATTRIBUTE_COMMANDS + NO_ARG_COMMANDS
)

RAW_ARG_COMMAND_MAP = {spec.command: spec.action for spec in RAW_ARG_COMMANDS}
MULTI_PATH_COMMAND_MAP = {spec.command: spec.action for spec in MULTI_PATH_COMMANDS}
ATTRIBUTE_PATH_COMMAND_MAP = {spec.command: spec.action for spec in ATTRIBUTE_PATH_COMMANDS}
OPTIONAL_ATTRIBUTE_COMMAND_MAP = {spec.command: spec.action for spec in OPTIONAL_ATTRIBUTE_COMMANDS}
NO_ARG_COMMAND_MAP = {spec.command: spec.action for spec in NO_ARG_COMMANDS}

CHAT_HELP_COMMANDS: tuple[str, ...] = tuple(f"/{spec.command}" for spec in ALL_COMMANDS)


def help_lines() -> list[str]:
    width = max(len(command) for command in CHAT_HELP_COMMANDS)
    return [f"/{spec.command:<{width - 1}}  {spec.help}" for spec in ALL_COMMANDS]
