"""Generation settings merged into every outgoing request."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

from .utils import getenv_flag, read_toml

DEFAULT_BACKEND_WS_URL = "ws://127.0.0.1:7001/generate-code"


class CodeFlavor(str, Enum):
    HTML_TAILWIND = "html_tailwind"
    HTML_CSS = "html_css"
    REACT_TAILWIND = "react_tailwind"
    BOOTSTRAP = "bootstrap"
    VUE_TAILWIND = "vue_tailwind"
    IONIC_TAILWIND = "ionic_tailwind"
    SVG = "svg"
    REACT_NATIVE = "react_native"

    @classmethod
    def parse(cls, value: Any) -> "CodeFlavor":
        if isinstance(value, CodeFlavor):
            return value
        normalized = str(value or "").strip().lower().replace("-", "_")
        for flavor in cls:
            if flavor.value == normalized:
                return flavor
        raise ValueError(f"Unknown code flavor: {value!r}")


@dataclass(frozen=True)
class Settings:
    generated_code_config: CodeFlavor = CodeFlavor.HTML_TAILWIND
    openai_api_key: str | None = None
    openai_base_url: str | None = None
    screenshot_one_api_key: str | None = None
    is_image_generation_enabled: bool = True
    mock_ai_response: bool = False
    prompt_code: str = ""
    access_code: str | None = None
    backend_ws_url: str = DEFAULT_BACKEND_WS_URL
    transport: str = "websocket"

    @classmethod
    def from_env(cls) -> "Settings":
        flavor_raw = os.getenv("SKETCHCODE_CODE_FLAVOR")
        return cls(
            generated_code_config=CodeFlavor.parse(flavor_raw) if flavor_raw else CodeFlavor.HTML_TAILWIND,
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_base_url=os.getenv("OPENAI_BASE_URL") or os.getenv("OPENAI_API_BASE") or None,
            screenshot_one_api_key=os.getenv("SCREENSHOTONE_API_KEY") or None,
            is_image_generation_enabled=getenv_flag("SKETCHCODE_IMAGE_GENERATION", True),
            mock_ai_response=getenv_flag("SKETCHCODE_MOCK", False),
            prompt_code=os.getenv("SKETCHCODE_PROMPT_CODE") or "",
            access_code=os.getenv("SKETCHCODE_ACCESS_CODE") or None,
            backend_ws_url=os.getenv("SKETCHCODE_WS_URL") or DEFAULT_BACKEND_WS_URL,
            transport=(os.getenv("SKETCHCODE_TRANSPORT") or "websocket").strip().lower(),
        )

    @classmethod
    def from_toml(cls, path: Path, base: "Settings | None" = None) -> "Settings":
        data = read_toml(path)
        section = data.get("sketchcode", data)
        if not isinstance(section, Mapping):
            return base or cls()
        return (base or cls()).merged(section)

    def merged(self, overrides: Mapping[str, Any]) -> "Settings":
        known = {item.name for item in fields(self)}
        updates: dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in known:
                continue
            if key == "generated_code_config":
                value = CodeFlavor.parse(value)
            updates[key] = value
        return replace(self, **updates)

    @property
    def resolved_transport(self) -> str:
        return "mock" if self.mock_ai_response else self.transport

    def to_request_params(self) -> dict[str, Any]:
        return {
            "openAiApiKey": self.openai_api_key,
            "openAiBaseURL": self.openai_base_url,
            "screenshotOneApiKey": self.screenshot_one_api_key,
            "isImageGenerationEnabled": self.is_image_generation_enabled,
            "generatedCodeConfig": self.generated_code_config.value,
            "mockAiResponse": self.mock_ai_response,
            "promptCode": self.prompt_code,
            "accessCode": self.access_code,
        }
