"""Shared slash-command metadata for parse + chat handling."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class CommandSpec:
    command: str
    action: str
    arg_kind: str
    help: str


COMMANDS: tuple[CommandSpec, ...] = (
    CommandSpec("create", "create", "multi_path", "Start over from one or more reference images"),
    CommandSpec("update", "update", "raw", "Request an edit of the current version"),
    CommandSpec("revert", "revert", "index", "Make version N current (next edit branches from it)"),
    CommandSpec("snapshot", "set_snapshot", "toggle", "Include a screenshot of the current render in edits"),
    CommandSpec("history", "history", "none", "Show the version tree"),
    CommandSpec("code", "show_code", "none", "Print the current code"),
    CommandSpec("log", "show_log", "none", "Print the console log of the last generation"),
    CommandSpec("export", "export", "single_path", "Write the current code (and history report) to disk"),
    CommandSpec("reset", "reset", "none", "Discard every version"),
    CommandSpec("help", "help", "none", "Show help"),
    CommandSpec("quit", "quit", "none", "Leave the chat"),
)

COMMAND_MAP = {spec.command: spec for spec in COMMANDS}

CHAT_HELP_COMMANDS: tuple[str, ...] = tuple(f"/{spec.command}" for spec in COMMANDS)
