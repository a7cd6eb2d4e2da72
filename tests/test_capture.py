from __future__ import annotations

from sketchcode_engine.capture import PlaceholderCapturer, capture_snapshot
from sketchcode_engine.images import data_url_size


class ExplodingCapturer:
    def capture(self, code: str) -> str:
        raise RuntimeError("chromium not installed")


def test_placeholder_capturer_renders_png() -> None:
    url = PlaceholderCapturer(width=200, height=100).capture("<html><body>hi</body></html>")
    assert url.startswith("data:image/png;base64,")
    assert data_url_size(url) == (200, 100)


def test_placeholder_capturer_skips_empty_code() -> None:
    assert PlaceholderCapturer().capture("   ") == ""


def test_capture_snapshot_degrades() -> None:
    assert capture_snapshot(None, "<p>x</p>") == (None, "No preview capturer configured.")
    result, error = capture_snapshot(ExplodingCapturer(), "<p>x</p>")
    assert result is None
    assert "chromium not installed" in error
    assert capture_snapshot(PlaceholderCapturer(), "") == (None, None)


def test_capture_snapshot_success() -> None:
    result, error = capture_snapshot(PlaceholderCapturer(), "<p>x</p>")
    assert error is None
    assert result is not None and result.startswith("data:image/png")
