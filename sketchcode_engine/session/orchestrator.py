"""Generation session state machine.

The orchestrator owns the session state and the version history. It runs at
most one generation cycle at a time and applies transport events through an
explicit ``(phase, event type) -> handler`` transition table, so an event the
table does not accept is an ``IllegalTransitionError`` rather than a silent
state change.
"""

from __future__ import annotations

import sys
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Any, Callable, Protocol, Sequence, TextIO

from ..capture import PreviewCapturer, capture_snapshot
from ..config import Settings
from ..errors import (
    IllegalTransitionError,
    NoCurrentVersionError,
    SessionBusyError,
    SketchcodeError,
    TransportError,
    UserCancelled,
)
from ..generation.context import ContextTracker, ContextUsage
from ..generation.request import GenerationRequest, RequestKind, build_create_request, build_update_request
from ..history.store import VersionHistoryStore, VersionInputs, VersionKind, VersionNode
from ..runs.events import EventWriter
from ..transport.base import (
    Cancelled,
    Chunk,
    Complete,
    Error,
    Log,
    SessionTransport,
    TransportEvent,
    TransportHandle,
    cancel,
)


class Phase(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"
    READY = "ready"


class Notifier(Protocol):
    def notify(self, message: str) -> None:
        ...


class ConsoleNotifier:
    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream or sys.stderr

    def notify(self, message: str) -> None:
        self.stream.write(f"{message}\n")
        self.stream.flush()


@dataclass
class SessionState:
    phase: Phase = Phase.IDLE
    current_version_index: int | None = None
    live_buffer: str = ""
    console_log: list[str] = field(default_factory=list)
    reference_images: list[str] = field(default_factory=list)
    last_error: SketchcodeError | None = None


@dataclass
class _Cycle:
    cycle_id: str
    kind: RequestKind
    parent_index: int | None
    reference_image: str
    instruction: str | None = None
    result_image: str | None = None
    started_at: float = field(default_factory=time.monotonic)
    handle: TransportHandle | None = None
    pending_revert: int | None = None
    finished: bool = False
    superseded: bool = False


class GenerationOrchestrator:
    def __init__(
        self,
        transport: SessionTransport,
        settings: Settings | None = None,
        *,
        events: EventWriter | None = None,
        notifier: Notifier | None = None,
        capturer: PreviewCapturer | None = None,
        context_tracker: ContextTracker | None = None,
    ) -> None:
        self.session_id = events.session_id if events else uuid.uuid4().hex[:12]
        self.transport = transport
        self.settings = settings or Settings()
        self.events = events
        self.notifier = notifier or ConsoleNotifier()
        self.capturer = capturer
        self.context_tracker = context_tracker or ContextTracker()
        self._lock = threading.RLock()
        self._changed = threading.Condition(self._lock)
        self._state = SessionState()
        self._store = VersionHistoryStore()
        self._cycle: _Cycle | None = None
        self._last_cycle: _Cycle | None = None
        self._transitions: dict[tuple[Phase, str], Callable[[_Cycle, Any], None]] = {
            (Phase.GENERATING, Chunk.type): self._on_chunk,
            (Phase.GENERATING, Log.type): self._on_log,
            (Phase.GENERATING, Complete.type): self._on_complete,
            (Phase.GENERATING, Cancelled.type): self._on_cancelled,
            (Phase.GENERATING, Error.type): self._on_error,
        }

    # Observable state

    @property
    def phase(self) -> Phase:
        with self._lock:
            return self._state.phase

    @property
    def current_version_index(self) -> int | None:
        with self._lock:
            return self._state.current_version_index

    @property
    def live_buffer(self) -> str:
        with self._lock:
            return self._state.live_buffer

    @property
    def console_log(self) -> list[str]:
        with self._lock:
            return list(self._state.console_log)

    def console_tail(self, n: int = 1) -> list[str]:
        with self._lock:
            return self._state.console_log[-n:] if n > 0 else []

    @property
    def reference_images(self) -> list[str]:
        with self._lock:
            return list(self._state.reference_images)

    @property
    def last_error(self) -> SketchcodeError | None:
        with self._lock:
            return self._state.last_error

    @property
    def history(self) -> VersionHistoryStore:
        return self._store

    @property
    def current_version(self) -> VersionNode | None:
        with self._lock:
            index = self._state.current_version_index
            return self._store.get(index) if index is not None else None

    @property
    def current_code(self) -> str:
        node = self.current_version
        return node.code if node else ""

    @property
    def displayed_code(self) -> str:
        """What a preview should show: the live buffer while streaming."""
        with self._lock:
            if self._state.phase is Phase.GENERATING:
                return self._state.live_buffer
            return self.current_code

    def wait(self, timeout: float | None = None) -> bool:
        """Block until no cycle is in flight; False on timeout."""
        with self._changed:
            return self._changed.wait_for(lambda: self._state.phase is not Phase.GENERATING, timeout)

    # Commands

    def create(self, images: Sequence[str]) -> TransportHandle | None:
        with self._lock:
            self._ensure_not_busy()
            request = build_create_request(images, self.settings)
            self._clear_locked()
            self._state.reference_images = list(images)
            cycle = _Cycle(
                cycle_id=uuid.uuid4().hex[:8],
                kind=RequestKind.INITIAL_CREATE,
                parent_index=None,
                reference_image=request.image,
            )
            return self._start_cycle(cycle, request)

    def update(self, instruction: str, include_snapshot: bool = False) -> TransportHandle | None:
        text = str(instruction or "").strip()
        while True:
            with self._lock:
                self._ensure_not_busy()
                node = self._require_current_locked()
                if not text:
                    raise ValueError("Update instruction is empty.")
                history = [*self._store.lineage(node.index), text]

            # Snapshot capture and token counting can take seconds; readers,
            # revert_to and reset must not wait on them.
            result_image: str | None = None
            capture_error: str | None = None
            if include_snapshot:
                result_image, capture_error = capture_snapshot(self.capturer, node.code)
            usage = self.context_tracker.measure(history, node.code)

            with self._lock:
                self._ensure_not_busy()
                if self._require_current_locked() is not node:
                    # A revert or reset landed meanwhile; redo against the new current version.
                    continue
                if capture_error:
                    self._emit("snapshot_failed", version_index=node.index, error=capture_error)
                request = build_update_request(
                    self._store,
                    node.index,
                    self._state.reference_images[0],
                    text,
                    self.settings,
                    result_image=result_image,
                )
                self._emit_context(usage)
                cycle = _Cycle(
                    cycle_id=uuid.uuid4().hex[:8],
                    kind=RequestKind.EDIT,
                    parent_index=node.index,
                    reference_image=request.image,
                    instruction=text,
                    result_image=result_image,
                )
                return self._start_cycle(cycle, request)

    def stop(self, reason: str = "user") -> None:
        """Request cancellation; the phase changes when the transport confirms."""
        with self._lock:
            cycle = self._cycle
            handle = cycle.handle if cycle else None
            if handle is None:
                return
            self._emit("generation_stop_requested", cycle_id=cycle.cycle_id, reason=reason)
        cancel(handle, reason)

    def reset(self) -> None:
        with self._changed:
            cycle = self._cycle
            if cycle is not None:
                cycle.superseded = True
            self._clear_locked()
            self._emit("session_reset")
            self._changed.notify_all()
        if cycle is not None and cycle.handle is not None:
            cancel(cycle.handle, "reset")

    def revert_to(self, index: int) -> VersionNode:
        with self._lock:
            node = self._store.get(index)
            cycle = self._cycle
            if self._state.phase is Phase.GENERATING and cycle is not None:
                cycle.pending_revert = index
                self._emit("version_reverted", version_index=index, deferred=True)
                return node
            self._state.current_version_index = index
            self._emit("version_reverted", version_index=index, deferred=False)
            return node

    def handle_event(self, handle: TransportHandle, event: TransportEvent) -> None:
        """Apply an event for ``handle``; events for unknown handles are dropped."""
        with self._lock:
            cycle = None
            for candidate in (self._cycle, self._last_cycle):
                if candidate is not None and candidate.handle is handle:
                    cycle = candidate
                    break
        if cycle is None:
            return
        self._dispatch(cycle, handle, event)

    # Internals

    def _require_current_locked(self) -> VersionNode:
        index = self._state.current_version_index
        if index is None:
            error = NoCurrentVersionError()
            self.notifier.notify(str(error))
            raise error
        return self._store.get(index)

    def _ensure_not_busy(self) -> None:
        if self._state.phase is Phase.GENERATING:
            error = SessionBusyError()
            self.notifier.notify(str(error))
            raise error

    def _clear_locked(self) -> None:
        if self._cycle is not None:
            self._last_cycle = self._cycle
        self._cycle = None
        self._store.clear()
        self._state = SessionState()

    def _start_cycle(self, cycle: _Cycle, request: GenerationRequest) -> TransportHandle | None:
        self._state.console_log = []
        self._state.live_buffer = ""
        self._state.last_error = None
        self._state.phase = Phase.GENERATING
        self._cycle = cycle
        self._emit(
            "generation_started",
            cycle_id=cycle.cycle_id,
            kind=request.kind.value,
            parent_index=cycle.parent_index,
            history=list(request.history),
            include_snapshot=bool(request.result_image),
            transport=getattr(self.transport, "name", None),
        )
        try:
            handle = self.transport.open(request, partial(self._dispatch, cycle))
        except Exception as exc:
            self._finish_failed(cycle, f"Could not open transport: {exc}")
            self._changed.notify_all()
            return None
        if cycle.handle is None:
            cycle.handle = handle
        return handle

    def _dispatch(self, cycle: _Cycle, handle: TransportHandle, event: TransportEvent) -> None:
        with self._changed:
            if cycle.handle is None:
                cycle.handle = handle
            if cycle.superseded:
                return
            if cycle.finished or cycle is not self._cycle:
                raise IllegalTransitionError(self._state.phase.value, event.type)
            handler = self._transitions.get((self._state.phase, event.type))
            if handler is None:
                raise IllegalTransitionError(self._state.phase.value, event.type)
            handler(cycle, event)
            self._changed.notify_all()

    def _on_chunk(self, cycle: _Cycle, event: Chunk) -> None:
        self._state.live_buffer += event.text

    def _on_log(self, cycle: _Cycle, event: Log) -> None:
        self._state.console_log.append(event.line)
        self._emit("generation_log", cycle_id=cycle.cycle_id, line=event.line)

    def _on_complete(self, cycle: _Cycle, event: Complete) -> None:
        if cycle.kind is RequestKind.INITIAL_CREATE:
            kind = VersionKind.INITIAL_CREATE
            inputs = VersionInputs(image_url=cycle.reference_image)
        else:
            kind = VersionKind.EDIT
            inputs = VersionInputs(prompt=cycle.instruction, result_image=cycle.result_image)
        node = self._store.append(kind=kind, code=event.code, inputs=inputs, parent_index=cycle.parent_index)
        self._finish(cycle, Phase.READY, node.index)
        self._emit(
            "version_created",
            cycle_id=cycle.cycle_id,
            version_index=node.index,
            kind=node.kind.value,
            parent_index=node.parent_index,
            code_chars=len(node.code),
            elapsed_s=round(time.monotonic() - cycle.started_at, 3),
        )

    def _on_cancelled(self, cycle: _Cycle, event: Cancelled) -> None:
        error = UserCancelled(event.reason)
        index = self._fallback_index(cycle)
        self._finish(cycle, Phase.READY if index is not None else Phase.IDLE, index)
        self._state.last_error = error
        self._emit("generation_cancelled", cycle_id=cycle.cycle_id, reason=event.reason, version_index=index)
        self.notifier.notify(str(error))

    def _on_error(self, cycle: _Cycle, event: Error) -> None:
        self._finish_failed(cycle, event.reason)

    def _finish_failed(self, cycle: _Cycle, reason: str) -> None:
        error = TransportError(reason)
        index = self._fallback_index(cycle)
        self._finish(cycle, Phase.READY if index is not None else Phase.IDLE, index)
        self._state.last_error = error
        self._emit("generation_failed", cycle_id=cycle.cycle_id, error=reason, version_index=index)
        self.notifier.notify(f"Error generating code: {reason}")

    def _fallback_index(self, cycle: _Cycle) -> int | None:
        if cycle.pending_revert is not None and self._store.contains(cycle.pending_revert):
            return cycle.pending_revert
        return cycle.parent_index

    def _finish(self, cycle: _Cycle, phase: Phase, index: int | None) -> None:
        cycle.finished = True
        self._last_cycle = cycle
        self._cycle = None
        self._state.phase = phase
        self._state.current_version_index = index
        self._state.live_buffer = ""

    def _emit_context(self, usage: ContextUsage) -> None:
        self._emit(
            "context_window_update",
            used_tokens=usage.used_tokens,
            max_tokens=usage.max_tokens,
            pct=usage.pct,
            alert_level=usage.alert_level,
        )

    def _emit(self, event_type: str, **payload: Any) -> None:
        if self.events is not None:
            self.events.emit(event_type, **payload)
