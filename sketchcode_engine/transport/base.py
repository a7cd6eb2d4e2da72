"""Session transport contract: typed events and cancellable handles."""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass
from typing import Callable, ClassVar, Iterable, Protocol, Union

from ..generation.request import GenerationRequest


@dataclass(frozen=True)
class Chunk:
    text: str
    type: ClassVar[str] = "chunk"
    terminal: ClassVar[bool] = False


@dataclass(frozen=True)
class Log:
    line: str
    type: ClassVar[str] = "log"
    terminal: ClassVar[bool] = False


@dataclass(frozen=True)
class Complete:
    code: str
    type: ClassVar[str] = "complete"
    terminal: ClassVar[bool] = True


@dataclass(frozen=True)
class Error:
    reason: str
    type: ClassVar[str] = "error"
    terminal: ClassVar[bool] = True


@dataclass(frozen=True)
class Cancelled:
    reason: str = "user"
    type: ClassVar[str] = "cancelled"
    terminal: ClassVar[bool] = True


TransportEvent = Union[Chunk, Log, Complete, Error, Cancelled]
EventSink = Callable[["TransportHandle", TransportEvent], None]


class TransportHandle:
    """One generation stream.

    ``emit`` forwards events to the sink until a terminal event has been
    forwarded; everything after that is dropped and ``emit`` returns False.
    """

    def __init__(
        self,
        request: GenerationRequest,
        sink: EventSink,
        *,
        transport_name: str = "",
        on_cancel: Callable[[str], None] | None = None,
    ) -> None:
        self.handle_id = uuid.uuid4().hex[:12]
        self.request = request
        self.transport_name = transport_name
        self.terminal_event: TransportEvent | None = None
        self._sink = sink
        self._on_cancel = on_cancel
        self._lock = threading.Lock()
        self._closed = False
        self._done = threading.Event()
        self._cancel_reason: str | None = None

    def __repr__(self) -> str:
        return f"TransportHandle({self.transport_name or 'transport'}:{self.handle_id})"

    @property
    def done(self) -> bool:
        return self._done.is_set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_reason is not None

    @property
    def cancel_reason(self) -> str | None:
        return self._cancel_reason

    def bind_cancel(self, callback: Callable[[str], None]) -> None:
        self._on_cancel = callback

    def emit(self, event: TransportEvent) -> bool:
        with self._lock:
            if self._closed:
                return False
            if event.terminal:
                self._closed = True
                self.terminal_event = event
        try:
            self._sink(self, event)
        finally:
            if event.terminal:
                self._done.set()
        return True

    def cancel(self, reason: str = "user") -> None:
        with self._lock:
            if self._closed or self._cancel_reason is not None:
                return
            self._cancel_reason = reason
            callback = self._on_cancel
        if callback is not None:
            callback(reason)

    def wait(self, timeout: float | None = None) -> bool:
        return self._done.wait(timeout)


class SessionTransport(Protocol):
    name: str

    def open(self, request: GenerationRequest, sink: EventSink) -> TransportHandle:
        ...


def cancel(handle: TransportHandle, reason: str = "user") -> None:
    handle.cancel(reason)


class TransportRegistry:
    def __init__(self, transports: Iterable[SessionTransport]) -> None:
        self._transports = {transport.name: transport for transport in transports}

    def get(self, name: str) -> SessionTransport | None:
        return self._transports.get(name)

    def list(self) -> list[str]:
        return sorted(self._transports.keys())
