"""Shared utilities for the sketchcode engine."""

from __future__ import annotations

import os
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
import tomllib
from typing import Any, Mapping

_SECRET_KEYS = {"openaiapikey", "api_key", "openai_api_key", "accesscode", "access_code", "screenshotoneapikey"}
_IMAGE_KEYS = {"image", "resultimage", "result_image", "image_url", "data"}


def now_utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def sanitize_payload(payload: Any) -> Any:
    if payload is None:
        return None
    if isinstance(payload, Enum):
        return payload.value
    if isinstance(payload, str):
        if payload.startswith("data:") and ";base64," in payload:
            return f"<data-url:{len(payload)}>"
        return payload
    if isinstance(payload, (int, float, bool)):
        return payload
    if isinstance(payload, bytes):
        return f"<bytes:{len(payload)}>"
    if isinstance(payload, Mapping):
        sanitized: dict[str, Any] = {}
        for key, value in payload.items():
            lowered = str(key).lower()
            if lowered in _SECRET_KEYS:
                sanitized[str(key)] = "<redacted>" if value else value
                continue
            if lowered in _IMAGE_KEYS and isinstance(value, str) and value:
                sanitized[str(key)] = "<omitted>"
                continue
            sanitized[str(key)] = sanitize_payload(value)
        return sanitized
    if isinstance(payload, (list, tuple)):
        return [sanitize_payload(item) for item in payload]
    return str(payload)


def read_toml(path: Path) -> dict[str, Any]:
    return tomllib.loads(path.read_text(encoding="utf-8"))


def getenv_flag(key: str, default: bool = False) -> bool:
    raw = os.getenv(key)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def load_dotenv(path: Path | None = None, override: bool = False) -> bool:
    env_path = path or _default_env_path()
    if not env_path.exists():
        return False
    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[7:].strip()
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not key:
            continue
        value = value.strip()
        if value and value[0] == value[-1] and value.startswith(("\"", "'")):
            value = value[1:-1]
        if not override and key in os.environ:
            continue
        os.environ[key] = value
    return True


def _default_env_path() -> Path:
    cwd = Path.cwd()
    repo_root = _find_repo_root(cwd)
    if repo_root:
        env_path = repo_root / ".env"
        if env_path.exists():
            return env_path
    return cwd / ".env"


def _find_repo_root(start: Path) -> Path | None:
    for current in (start,) + tuple(start.parents):
        if (current / "sketchcode_engine").is_dir():
            return current
        pyproject = current / "pyproject.toml"
        if pyproject.exists():
            try:
                data = read_toml(pyproject)
            except Exception:
                continue
            if data.get("project", {}).get("name") == "sketchcode":
                return current
    return None


def truncate(text: str, limit: int) -> str:
    cleaned = " ".join(str(text or "").split())
    if len(cleaned) <= limit:
        return cleaned
    return cleaned[: max(0, limit - 3)].rstrip() + "..."
