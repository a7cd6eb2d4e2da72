"""Rendered-preview capturers used for "include screenshot" updates."""

from __future__ import annotations

import io
import tempfile
from pathlib import Path
from typing import Protocol

from PIL import Image, ImageDraw, ImageFont

from .images import encode_data_url


class PreviewCapturer(Protocol):
    def capture(self, code: str) -> str:
        """Return a PNG data URL of ``code`` rendered, or "" when unavailable."""
        ...


class PlaywrightCapturer:
    """Renders HTML in headless Chromium and screenshots the full page."""

    def __init__(self, width: int = 1280, height: int = 800, timeout_ms: int = 15000) -> None:
        self.width = width
        self.height = height
        self.timeout_ms = timeout_ms

    def capture(self, code: str) -> str:
        if not code.strip():
            return ""
        from playwright.sync_api import sync_playwright

        with tempfile.TemporaryDirectory(prefix="sketchcode-capture-") as tmp:
            html_path = Path(tmp) / "index.html"
            html_path.write_text(code, encoding="utf-8")
            with sync_playwright() as p:
                browser = p.chromium.launch()
                try:
                    ctx = browser.new_context(viewport={"width": self.width, "height": self.height})
                    page = ctx.new_page()
                    page.goto(html_path.resolve().as_uri(), timeout=self.timeout_ms)
                    page.wait_for_load_state("networkidle", timeout=self.timeout_ms)
                    png = page.screenshot(full_page=True)
                    ctx.close()
                finally:
                    browser.close()
        return encode_data_url(png, "image/png")


class PlaceholderCapturer:
    """Offline capturer: draws the first lines of the code onto a PNG."""

    def __init__(self, width: int = 640, height: int = 400, max_lines: int = 24) -> None:
        self.width = width
        self.height = height
        self.max_lines = max_lines
        self._font = None

    def capture(self, code: str) -> str:
        if not code.strip():
            return ""
        image = Image.new("RGB", (self.width, self.height), (255, 255, 255))
        draw = ImageDraw.Draw(image)
        font = self._font or ImageFont.load_default()
        lines = code.splitlines()[: self.max_lines]
        draw.multiline_text((12, 12), "\n".join(line[:100] for line in lines), fill=(30, 30, 30), font=font)
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        return encode_data_url(buffer.getvalue(), "image/png")


def capture_snapshot(capturer: PreviewCapturer | None, code: str) -> tuple[str | None, str | None]:
    """Capture a snapshot, degrading to no snapshot on any failure.

    Returns ``(data_url, error)``; exactly one is set unless the capturer
    produced nothing, in which case both are None.
    """
    if capturer is None:
        return None, "No preview capturer configured."
    try:
        result = capturer.capture(code)
    except Exception as exc:
        return None, f"Snapshot capture failed: {exc}"
    return (result or None), None
