"""Offline transport that streams a canned document (no backend)."""

from __future__ import annotations

import html
import threading
import time

from ..config import CodeFlavor
from ..generation.request import GenerationRequest, RequestKind
from ..images import data_url_size
from .base import Cancelled, Chunk, Complete, Error, EventSink, Log, TransportHandle


class MockTransport:
    name = "mock"

    def __init__(self, *, chunk_size: int = 48, delay_s: float = 0.01, fail_with: str | None = None) -> None:
        self.chunk_size = max(1, int(chunk_size))
        self.delay_s = max(0.0, float(delay_s))
        self.fail_with = fail_with

    def open(self, request: GenerationRequest, sink: EventSink) -> TransportHandle:
        cancelled = threading.Event()
        handle = TransportHandle(request, sink, transport_name=self.name, on_cancel=lambda _reason: cancelled.set())
        thread = threading.Thread(
            target=self._thread_main,
            args=(handle, cancelled),
            name=f"sketchcode-mock-{handle.handle_id}",
            daemon=True,
        )
        thread.start()
        return handle

    def _thread_main(self, handle: TransportHandle, cancelled: threading.Event) -> None:
        try:
            self._run(handle, cancelled)
        except Exception as exc:
            handle.emit(Error(f"Mock transport crashed: {exc}"))

    def _run(self, handle: TransportHandle, cancelled: threading.Event) -> None:
        request = handle.request
        code = mock_code(request)
        streamed = f"```{_fence_language(request.settings.generated_code_config)}\n{code}\n```"
        handle.emit(Log("Generating code..."))
        for start in range(0, len(streamed), self.chunk_size):
            if cancelled.wait(self.delay_s):
                handle.emit(Cancelled(handle.cancel_reason or "user"))
                return
            handle.emit(Chunk(streamed[start : start + self.chunk_size]))
            if self.fail_with and start >= len(streamed) // 2:
                handle.emit(Error(self.fail_with))
                return
        if cancelled.is_set():
            handle.emit(Cancelled(handle.cancel_reason or "user"))
            return
        handle.emit(Log("Code generation complete."))
        handle.emit(Complete(code))


def mock_code(request: GenerationRequest) -> str:
    """Deterministic placeholder code for ``request``."""
    size = data_url_size(request.image) or (1280, 720)
    width, height = size
    flavor = request.settings.generated_code_config
    if request.kind is RequestKind.EDIT and request.history:
        title = html.escape(request.history[-1])
        revision = len(request.history)
    else:
        title = "Generated page"
        revision = 0
    if flavor is CodeFlavor.SVG:
        return (
            f'<svg xmlns="http://www.w3.org/2000/svg" width="{width}" height="{height}">'
            f'<rect width="100%" height="100%" fill="#f8fafc"/>'
            f'<text x="24" y="48" font-size="24">{title}</text></svg>'
        )
    if flavor is CodeFlavor.REACT_NATIVE:
        return (
            "import { Text, View } from 'react-native';\n\n"
            "export default function App() {\n"
            f"  return <View style={{{{ width: {width}, height: {height} }}}}><Text>{title}</Text></View>;\n"
            "}"
        )
    return (
        "<!DOCTYPE html>\n"
        "<html>\n"
        "<head><script src=\"https://cdn.tailwindcss.com\"></script></head>\n"
        f"<body data-revision=\"{revision}\">\n"
        f"  <main class=\"mx-auto\" style=\"max-width: {width}px; min-height: {height}px\">\n"
        f"    <h1 class=\"text-2xl\">{title}</h1>\n"
        "  </main>\n"
        "</body>\n"
        "</html>"
    )


def _fence_language(flavor: CodeFlavor) -> str:
    if flavor is CodeFlavor.SVG:
        return "svg"
    if flavor in {CodeFlavor.REACT_NATIVE, CodeFlavor.REACT_TAILWIND}:
        return "jsx"
    if flavor is CodeFlavor.VUE_TAILWIND:
        return "vue"
    return "html"
