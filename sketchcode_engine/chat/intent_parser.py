"""Parse user input into structured intents."""

from __future__ import annotations

import re
import shlex

from .command_registry import COMMAND_MAP
from .intent_schema import Intent

_SLASH_PATTERN = re.compile(r"^/(\w+)(?:\s+(.*))?$", re.DOTALL)
_ON_VALUES = {"on", "yes", "true", "1"}
_OFF_VALUES = {"off", "no", "false", "0"}


def _parse_path_args(arg: str) -> list[str]:
    """Parse one or more path args; quoted paths may contain spaces."""
    if not arg:
        return []
    try:
        parts = shlex.split(arg)
    except ValueError:
        parts = arg.split()
    return [part for part in parts if part]


def _parse_single_path_arg(arg: str) -> str:
    parts = _parse_path_args(arg)
    if not parts:
        return ""
    if len(parts) == 1:
        return parts[0]
    return " ".join(parts)


def _parse_version_index(arg: str) -> int | None:
    """Versions are shown 1-based (``v3``); return the 0-based index."""
    token = arg.strip().lower().lstrip("v")
    if not token.isdigit():
        return None
    number = int(token)
    return number - 1 if number > 0 else None


def parse_intent(text: str) -> Intent:
    raw = text.strip()
    if not raw:
        return Intent(action="noop", raw=text)
    match = _SLASH_PATTERN.match(raw)
    if not match:
        return Intent(action="update", raw=text, instruction=raw)

    command = match.group(1).lower()
    arg = (match.group(2) or "").strip()
    spec = COMMAND_MAP.get(command)
    if spec is None:
        return Intent(action="unknown", raw=text, command_args={"command": command, "arg": arg})
    if spec.arg_kind == "raw":
        return Intent(action=spec.action, raw=text, instruction=arg or None)
    if spec.arg_kind == "index":
        return Intent(action=spec.action, raw=text, command_args={"index": _parse_version_index(arg), "arg": arg})
    if spec.arg_kind == "toggle":
        lowered = arg.lower()
        enabled: bool | None = None
        if lowered in _ON_VALUES:
            enabled = True
        elif lowered in _OFF_VALUES:
            enabled = False
        return Intent(action=spec.action, raw=text, command_args={"enabled": enabled})
    if spec.arg_kind == "single_path":
        return Intent(action=spec.action, raw=text, command_args={"path": _parse_single_path_arg(arg)})
    if spec.arg_kind == "multi_path":
        return Intent(action=spec.action, raw=text, command_args={"paths": _parse_path_args(arg)})
    return Intent(action=spec.action, raw=text, command_args={})
