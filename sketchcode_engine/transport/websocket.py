"""WebSocket transport to a code-generation backend.

The request payload is sent as the first message. The backend answers with
JSON frames:

* ``{"type": "chunk", "value": str}``   streamed code tokens
* ``{"type": "status", "value": str}``  console/status line
* ``{"type": "setCode", "value": str}`` final, post-processed code
* ``{"type": "error", "value": str}``   upstream failure

User cancellation closes the socket with ``USER_CLOSE_CODE``.
"""

from __future__ import annotations

import asyncio
import json
import threading
from dataclasses import dataclass
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed

from ..config import DEFAULT_BACKEND_WS_URL
from ..generation.request import GenerationRequest
from .base import Cancelled, Chunk, Complete, Error, EventSink, Log, TransportHandle

USER_CLOSE_CODE = 4333
NORMAL_CLOSE_CODE = 1000


@dataclass
class _Connection:
    loop: asyncio.AbstractEventLoop | None = None
    ws: Any = None
    connecting: asyncio.Task | None = None


class WebSocketTransport:
    name = "websocket"

    def __init__(
        self,
        url: str | None = None,
        *,
        open_timeout_s: float = 10.0,
        idle_timeout_s: float = 120.0,
    ) -> None:
        self.url = url or DEFAULT_BACKEND_WS_URL
        self.open_timeout_s = open_timeout_s
        self.idle_timeout_s = idle_timeout_s

    def open(self, request: GenerationRequest, sink: EventSink) -> TransportHandle:
        url = request.settings.backend_ws_url or self.url
        handle = TransportHandle(request, sink, transport_name=self.name)
        conn = _Connection()
        lock = threading.Lock()

        def on_cancel(reason: str) -> None:
            with lock:
                loop, ws, connecting = conn.loop, conn.ws, conn.connecting
            if loop is None or loop.is_closed():
                # Stream not started yet; it checks the flag before connecting.
                return
            try:
                if ws is not None:
                    asyncio.run_coroutine_threadsafe(ws.close(code=USER_CLOSE_CODE, reason=reason[:100]), loop)
                elif connecting is not None:
                    loop.call_soon_threadsafe(connecting.cancel)
            except RuntimeError:
                return

        handle.bind_cancel(on_cancel)
        thread = threading.Thread(
            target=self._thread_main,
            args=(handle, url, conn, lock),
            name=f"sketchcode-ws-{handle.handle_id}",
            daemon=True,
        )
        thread.start()
        return handle

    def _thread_main(self, handle: TransportHandle, url: str, conn: _Connection, lock: threading.Lock) -> None:
        try:
            asyncio.run(self._stream(handle, url, conn, lock))
        except Exception as exc:
            _finish_failed(handle, f"Transport crashed: {exc}")

    async def _stream(self, handle: TransportHandle, url: str, conn: _Connection, lock: threading.Lock) -> None:
        try:
            loop = asyncio.get_running_loop()
            connecting = loop.create_task(self._connect(url))
            with lock:
                conn.loop = loop
                conn.connecting = connecting
            if handle.cancel_requested:
                connecting.cancel()
            try:
                ws = await connecting
            except asyncio.CancelledError:
                handle.emit(Cancelled(handle.cancel_reason or "user"))
                return
            async with ws:
                with lock:
                    conn.ws = ws
                    conn.connecting = None
                if handle.cancel_requested:
                    await ws.close(code=USER_CLOSE_CODE)
                    handle.emit(Cancelled(handle.cancel_reason or "user"))
                    return
                await ws.send(json.dumps(handle.request.to_payload()))
                await self._receive_loop(handle, ws)
        except ConnectionClosed:
            _finish_failed(handle, "Connection closed unexpectedly.")
        except Exception as exc:
            _finish_failed(handle, f"Connection failed: {exc}")
        finally:
            with lock:
                conn.ws = None
                conn.loop = None
                conn.connecting = None

    async def _connect(self, url: str) -> Any:
        return await websockets.connect(
            url,
            open_timeout=self.open_timeout_s,
            max_size=None,
            ping_interval=20,
            ping_timeout=20,
        )

    async def _receive_loop(self, handle: TransportHandle, ws: Any) -> None:
        final_code: str | None = None
        while True:
            try:
                raw = await asyncio.wait_for(ws.recv(), timeout=self.idle_timeout_s)
            except asyncio.TimeoutError:
                await ws.close()
                if final_code is not None and not handle.cancel_requested:
                    handle.emit(Complete(final_code))
                    return
                _finish_failed(handle, f"Timed out after {self.idle_timeout_s:.0f}s without backend messages.")
                return
            except ConnectionClosed:
                break

            try:
                message = json.loads(raw)
            except (TypeError, ValueError):
                await ws.close()
                _finish_failed(handle, "Malformed message from backend.")
                return
            if not isinstance(message, dict):
                continue

            kind = message.get("type")
            value = message.get("value")
            if kind == "chunk":
                if isinstance(value, str) and value:
                    handle.emit(Chunk(value))
            elif kind == "status":
                if isinstance(value, str):
                    handle.emit(Log(value))
            elif kind == "setCode":
                if isinstance(value, str):
                    final_code = value
            elif kind == "error":
                await ws.close()
                _finish_failed(handle, str(value or "Backend error."))
                return

        close_code = getattr(ws, "close_code", None)
        if handle.cancel_requested or close_code == USER_CLOSE_CODE:
            handle.emit(Cancelled(handle.cancel_reason or "user"))
        elif final_code is not None:
            handle.emit(Complete(final_code))
        elif close_code == NORMAL_CLOSE_CODE:
            handle.emit(Error("Connection closed before the backend delivered code."))
        else:
            handle.emit(Error(f"Connection closed (code {close_code})."))


def _finish_failed(handle: TransportHandle, reason: str) -> None:
    if handle.cancel_requested:
        handle.emit(Cancelled(handle.cancel_reason or "user"))
    else:
        handle.emit(Error(reason))
