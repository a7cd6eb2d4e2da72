"""CLI progress helpers."""

from __future__ import annotations

import os
import shutil
import sys
import threading
import time
from typing import Callable, TextIO

_BOLD = "\x1b[1m"
_GREY = "\x1b[38;2;150;157;165m"
_RESET = "\x1b[0m"


def progress_line(label: str, start: float, detail: str | None = None, done: bool = False) -> str:
    elapsed = max(0, int(time.monotonic() - start))
    minutes, seconds = divmod(elapsed, 60)
    suffix = "done" if done else "ctrl-c to stop"
    extra = f" • {detail}" if detail else ""
    return f"• {label} ({minutes}m {seconds:02d}s{extra} • {suffix})"


class ProgressTicker:
    """Single status line that refreshes in place on a TTY.

    ``detail`` is polled on each tick, e.g. to show the latest console line
    or the number of streamed characters.
    """

    def __init__(
        self,
        label: str,
        stream: TextIO | None = None,
        interval_s: float = 0.5,
        detail: Callable[[], str | None] | None = None,
    ) -> None:
        self.label = label
        self.stream = stream or sys.stdout
        self.interval_s = max(0.05, interval_s)
        self.detail = detail
        self.start = time.monotonic()
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._tty = bool(getattr(self.stream, "isatty", lambda: False)())
        self._started = False

    def start_ticking(self) -> None:
        self.start = time.monotonic()
        if not self._tty:
            self.stream.write(f"{_BOLD}{progress_line(self.label, self.start)}{_RESET}\n")
            self.stream.flush()
            return
        self._redraw()
        self._started = True
        self._thread.start()

    def stop(self, done_label: str = "Generated in") -> None:
        if self._started:
            self._stop.set()
            self._thread.join()
        elapsed = max(0, int(time.monotonic() - self.start))
        line = _separator_line(f"{done_label} {_format_duration(elapsed)}", _terminal_width(self.stream, 100))
        prefix = "\r" if self._tty else ""
        clear = "\033[K" if self._tty else ""
        self.stream.write(f"{prefix}{_GREY}{line}{_RESET}{clear}\n")
        self.stream.flush()

    def _run(self) -> None:
        while not self._stop.wait(self.interval_s):
            self._redraw()

    def _redraw(self) -> None:
        detail = None
        if self.detail is not None:
            try:
                detail = self.detail()
            except Exception:
                detail = None
        line = progress_line(self.label, self.start, detail)
        self.stream.write(f"\r{_BOLD}{line}{_RESET}\033[K")
        self.stream.flush()


def _format_duration(seconds: int) -> str:
    minutes, secs = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m {secs:02d}s"
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"


def _separator_line(label: str, width: int) -> str:
    content = f" {label} "
    if width <= len(content) + 2:
        return content.strip()
    remaining = width - len(content)
    left = remaining // 2
    return f"{'─' * left}{content}{'─' * (remaining - left)}"


def _terminal_width(stream: TextIO | None, fallback: int) -> int:
    if stream and hasattr(stream, "fileno"):
        try:
            return os.get_terminal_size(stream.fileno()).columns
        except (OSError, ValueError):
            pass
    return shutil.get_terminal_size(fallback=(fallback, 20)).columns
