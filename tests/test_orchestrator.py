from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from sketchcode_engine.errors import (
    IllegalTransitionError,
    IndexOutOfRangeError,
    NoCurrentVersionError,
    SessionBusyError,
    TransportError,
    UserCancelled,
)
from sketchcode_engine.generation.context import ContextTracker
from sketchcode_engine.generation.request import GenerationRequest, RequestKind
from sketchcode_engine.history.store import VersionKind
from sketchcode_engine.runs.events import EventWriter, read_events
from sketchcode_engine.session.orchestrator import GenerationOrchestrator, Phase
from sketchcode_engine.transport.base import Cancelled, Chunk, Complete, Error, EventSink, Log, TransportHandle

IMG = "data:image/png;base64,AAAA"


class ScriptedTransport:
    """Hands out handles the test drives by emitting events directly."""

    name = "scripted"

    def __init__(self, confirm_cancel: bool = True) -> None:
        self.confirm_cancel = confirm_cancel
        self.handles: list[TransportHandle] = []

    def open(self, request: GenerationRequest, sink: EventSink) -> TransportHandle:
        handle = TransportHandle(request, sink, transport_name=self.name)
        if self.confirm_cancel:
            handle.bind_cancel(lambda reason: handle.emit(Cancelled(reason)))
        self.handles.append(handle)
        return handle

    @property
    def last(self) -> TransportHandle:
        return self.handles[-1]


class BrokenTransport:
    name = "broken"

    def open(self, request: GenerationRequest, sink: EventSink) -> TransportHandle:
        raise OSError("no route to backend")


class CollectingNotifier:
    def __init__(self) -> None:
        self.messages: list[str] = []

    def notify(self, message: str) -> None:
        self.messages.append(message)


class StaticCapturer:
    def __init__(self, result: str = "data:image/png;base64,SNAP", fail: bool = False) -> None:
        self.result = result
        self.fail = fail
        self.calls: list[str] = []

    def capture(self, code: str) -> str:
        self.calls.append(code)
        if self.fail:
            raise RuntimeError("iframe not ready")
        return self.result


def _make(tmp_path: Path | None = None, **kwargs):
    transport = kwargs.pop("transport", None) or ScriptedTransport()
    notifier = CollectingNotifier()
    events = EventWriter(tmp_path / "events.jsonl", "session-1") if tmp_path else None
    tracker = ContextTracker(max_tokens=1000, tokenizer=lambda text: len(text.split()))
    orchestrator = GenerationOrchestrator(
        transport,
        events=events,
        notifier=notifier,
        context_tracker=tracker,
        **kwargs,
    )
    return orchestrator, transport, notifier


def _complete_create(orchestrator: GenerationOrchestrator, transport: ScriptedTransport, code: str = "<div>v1</div>") -> None:
    orchestrator.create([IMG])
    transport.last.emit(Complete(code))


def _complete_update(orchestrator: GenerationOrchestrator, transport: ScriptedTransport, text: str) -> int:
    orchestrator.update(text)
    transport.last.emit(Complete(f"<div>{text}</div>"))
    assert orchestrator.current_version_index is not None
    return orchestrator.current_version_index


def test_create_streams_then_commits_complete_payload() -> None:
    orchestrator, transport, _ = _make()
    orchestrator.create([IMG])
    assert orchestrator.phase is Phase.GENERATING
    handle = transport.last
    handle.emit(Chunk("<div"))
    handle.emit(Chunk(">hi</div>"))
    assert orchestrator.live_buffer == "<div>hi</div>"
    assert orchestrator.displayed_code == "<div>hi</div>"
    handle.emit(Complete("<div>hi</div>"))

    assert orchestrator.phase is Phase.READY
    assert orchestrator.live_buffer == ""
    assert len(orchestrator.history) == 1
    node = orchestrator.history.get(0)
    assert node.kind is VersionKind.INITIAL_CREATE
    assert node.parent_index is None
    assert node.code == "<div>hi</div>"
    assert node.inputs.image_url == IMG
    assert orchestrator.current_version_index == 0
    assert orchestrator.current_code == "<div>hi</div>"


def test_complete_payload_overrides_streamed_text() -> None:
    orchestrator, transport, _ = _make()
    orchestrator.create([IMG])
    transport.last.emit(Chunk("```html\n<p>draft</p>\n```"))
    transport.last.emit(Complete("<p>final</p>"))
    assert orchestrator.current_code == "<p>final</p>"


def test_log_lines_collect_in_console() -> None:
    orchestrator, transport, _ = _make()
    orchestrator.create([IMG])
    transport.last.emit(Log("Generating code..."))
    transport.last.emit(Log("Code generation complete."))
    assert orchestrator.console_log == ["Generating code...", "Code generation complete."]
    assert orchestrator.console_tail(1) == ["Code generation complete."]


def test_update_while_generating_is_busy() -> None:
    orchestrator, transport, notifier = _make()
    _complete_create(orchestrator, transport)
    orchestrator.update("make it blue")
    with pytest.raises(SessionBusyError):
        orchestrator.update("make it red")
    with pytest.raises(SessionBusyError):
        orchestrator.create([IMG])
    assert len(transport.handles) == 2
    assert len(orchestrator.history) == 1
    assert orchestrator.phase is Phase.GENERATING
    assert any("already in progress" in message for message in notifier.messages)


def test_update_without_version_fails() -> None:
    orchestrator, transport, notifier = _make()
    with pytest.raises(NoCurrentVersionError):
        orchestrator.update("make it blue")
    assert orchestrator.phase is Phase.IDLE
    assert transport.handles == []
    assert notifier.messages


def test_update_sends_lineage_history() -> None:
    orchestrator, transport, _ = _make()
    _complete_create(orchestrator, transport)
    _complete_update(orchestrator, transport, "make it blue")
    orchestrator.update("add footer")
    request = transport.last.request
    assert request.kind is RequestKind.EDIT
    assert request.image == IMG
    assert request.history == ("make it blue", "add footer")
    assert request.result_image is None


def test_revert_then_update_branches() -> None:
    orchestrator, transport, _ = _make()
    _complete_create(orchestrator, transport)
    first = _complete_update(orchestrator, transport, "make it blue")
    _complete_update(orchestrator, transport, "add footer")

    node = orchestrator.revert_to(0)
    assert node.index == 0
    assert orchestrator.current_version_index == 0
    assert orchestrator.current_code == "<div>v1</div>"

    branch = _complete_update(orchestrator, transport, "fix spacing")
    assert transport.last.request.history == ("fix spacing",)
    new_node = orchestrator.history.get(branch)
    assert new_node.parent_index == 0
    siblings = [n.index for n in orchestrator.history.children(0)]
    assert siblings == [first, branch]
    assert len(orchestrator.history) == 4


def test_revert_out_of_range_leaves_state() -> None:
    orchestrator, transport, _ = _make()
    _complete_create(orchestrator, transport)
    _complete_update(orchestrator, transport, "a")
    _complete_update(orchestrator, transport, "b")
    assert len(orchestrator.history) == 3
    with pytest.raises(IndexOutOfRangeError):
        orchestrator.revert_to(5)
    assert orchestrator.current_version_index == 2


def test_stop_is_cooperative_and_keeps_prior_version() -> None:
    orchestrator, transport, notifier = _make(transport=ScriptedTransport(confirm_cancel=False))
    _complete_create(orchestrator, transport)
    orchestrator.update("make it blue")
    transport.last.emit(Chunk("<div>partial"))

    orchestrator.stop()
    assert transport.last.cancel_requested
    assert orchestrator.phase is Phase.GENERATING

    transport.last.emit(Cancelled("user"))
    assert orchestrator.phase is Phase.READY
    assert orchestrator.current_version_index == 0
    assert len(orchestrator.history) == 1
    assert orchestrator.live_buffer == ""
    assert isinstance(orchestrator.last_error, UserCancelled)
    assert any("cancelled" in message for message in notifier.messages)


def test_stop_during_initial_create_returns_to_idle() -> None:
    orchestrator, transport, _ = _make()
    orchestrator.create([IMG])
    transport.last.emit(Chunk("<div"))
    orchestrator.stop()
    assert orchestrator.phase is Phase.IDLE
    assert len(orchestrator.history) == 0
    assert orchestrator.current_version_index is None


def test_stop_without_cycle_is_noop() -> None:
    orchestrator, transport, _ = _make()
    _complete_create(orchestrator, transport)
    orchestrator.stop()
    assert orchestrator.phase is Phase.READY


def test_error_during_edit_preserves_version() -> None:
    orchestrator, transport, notifier = _make()
    _complete_create(orchestrator, transport)
    orchestrator.update("make it blue")
    transport.last.emit(Error("upstream rejected the key"))
    assert orchestrator.phase is Phase.READY
    assert orchestrator.current_version_index == 0
    assert isinstance(orchestrator.last_error, TransportError)
    assert notifier.messages[-1] == "Error generating code: upstream rejected the key"


def test_error_during_create_returns_to_idle() -> None:
    orchestrator, transport, _ = _make()
    orchestrator.create([IMG])
    transport.last.emit(Error("network down"))
    assert orchestrator.phase is Phase.IDLE
    assert len(orchestrator.history) == 0


def test_transport_open_failure_is_reported_not_raised() -> None:
    orchestrator, _, notifier = _make(transport=BrokenTransport())
    assert orchestrator.create([IMG]) is None
    assert orchestrator.phase is Phase.IDLE
    assert "no route to backend" in notifier.messages[-1]


@pytest.mark.parametrize("phase", ["idle", "generating", "ready"])
def test_reset_from_any_phase(phase: str) -> None:
    orchestrator, transport, _ = _make(transport=ScriptedTransport(confirm_cancel=False))
    if phase in {"generating", "ready"}:
        _complete_create(orchestrator, transport)
        _complete_update(orchestrator, transport, "a")
    if phase == "generating":
        orchestrator.update("b")
        transport.last.emit(Log("working"))

    orchestrator.reset()

    assert orchestrator.phase is Phase.IDLE
    assert len(orchestrator.history) == 0
    assert orchestrator.current_version_index is None
    assert orchestrator.console_log == []
    assert orchestrator.live_buffer == ""
    if phase == "generating":
        stale = transport.last
        assert stale.cancel_requested
        stale.emit(Complete("<div>late</div>"))
        assert len(orchestrator.history) == 0
        assert orchestrator.phase is Phase.IDLE


def test_create_after_revert_starts_fresh_tree() -> None:
    orchestrator, transport, _ = _make()
    _complete_create(orchestrator, transport)
    _complete_update(orchestrator, transport, "a")
    orchestrator.revert_to(0)
    _complete_create(orchestrator, transport, code="<div>fresh</div>")
    assert len(orchestrator.history) == 1
    assert orchestrator.history.get(0).code == "<div>fresh</div>"


def test_create_requires_an_image() -> None:
    orchestrator, transport, _ = _make()
    _complete_create(orchestrator, transport)
    with pytest.raises(ValueError):
        orchestrator.create([])
    assert len(orchestrator.history) == 1


def test_event_after_complete_is_illegal() -> None:
    orchestrator, transport, _ = _make()
    _complete_create(orchestrator, transport)
    handle = transport.last
    assert handle.emit(Chunk("late")) is False
    with pytest.raises(IllegalTransitionError):
        orchestrator.handle_event(handle, Chunk("late"))
    assert orchestrator.current_code == "<div>v1</div>"


def test_revert_during_generation_applies_on_cancel() -> None:
    orchestrator, transport, _ = _make()
    _complete_create(orchestrator, transport)
    _complete_update(orchestrator, transport, "a")
    orchestrator.update("b")
    orchestrator.revert_to(0)
    assert orchestrator.current_version_index == 1
    orchestrator.stop()
    assert orchestrator.current_version_index == 0


def test_revert_during_generation_yields_to_commit() -> None:
    orchestrator, transport, _ = _make()
    _complete_create(orchestrator, transport)
    _complete_update(orchestrator, transport, "a")
    orchestrator.update("b")
    orchestrator.revert_to(0)
    transport.last.emit(Complete("<div>b</div>"))
    node = orchestrator.current_version
    assert node is not None
    assert node.index == 2
    assert node.parent_index == 1


def test_snapshot_included_when_requested() -> None:
    capturer = StaticCapturer()
    orchestrator, transport, _ = _make(capturer=capturer)
    _complete_create(orchestrator, transport)
    orchestrator.update("tighten spacing", include_snapshot=True)
    assert capturer.calls == ["<div>v1</div>"]
    assert transport.last.request.result_image == "data:image/png;base64,SNAP"
    transport.last.emit(Complete("<div>tight</div>"))
    assert orchestrator.history.get(1).inputs.result_image == "data:image/png;base64,SNAP"


def test_snapshot_failure_degrades_to_no_snapshot(tmp_path: Path) -> None:
    orchestrator, transport, _ = _make(tmp_path, capturer=StaticCapturer(fail=True))
    _complete_create(orchestrator, transport)
    orchestrator.update("tighten spacing", include_snapshot=True)
    assert orchestrator.phase is Phase.GENERATING
    assert transport.last.request.result_image is None
    types = [event["type"] for event in read_events(tmp_path / "events.jsonl")]
    assert "snapshot_failed" in types


def test_snapshot_not_captured_unless_requested() -> None:
    capturer = StaticCapturer()
    orchestrator, transport, _ = _make(capturer=capturer)
    _complete_create(orchestrator, transport)
    orchestrator.update("tighten spacing")
    assert capturer.calls == []


def test_event_stream_order(tmp_path: Path) -> None:
    orchestrator, transport, _ = _make(tmp_path)
    orchestrator.create([IMG])
    transport.last.emit(Log("Generating code..."))
    transport.last.emit(Complete("<div>v1</div>"))
    orchestrator.update("make it blue")
    transport.last.emit(Error("boom"))
    orchestrator.reset()

    events = read_events(tmp_path / "events.jsonl")
    types = [event["type"] for event in events]
    assert types[0] == "generation_started"
    started = types.index("generation_started")
    created = types.index("version_created")
    assert started < types.index("generation_log") < created
    assert created < types.index("context_window_update") < types.index("generation_failed")
    assert types[-1] == "session_reset"
    first_started = next(event for event in events if event["type"] == "generation_started")
    assert first_started["kind"] == "create"
    assert all(event["session_id"] == "session-1" for event in events)


def test_wait_returns_when_not_generating() -> None:
    orchestrator, transport, _ = _make()
    assert orchestrator.wait(0.01) is True
    orchestrator.create([IMG])
    assert orchestrator.wait(0.01) is False
    transport.last.emit(Complete("<div/>"))
    assert orchestrator.wait(0.01) is True


class GatedCapturer:
    """Blocks inside ``capture`` until the test releases it."""

    def __init__(self) -> None:
        self.entered = threading.Event()
        self.release = threading.Event()
        self.calls: list[str] = []

    def capture(self, code: str) -> str:
        self.calls.append(code)
        self.entered.set()
        assert self.release.wait(5)
        return "data:image/png;base64,SNAP"


def _update_in_background(orchestrator: GenerationOrchestrator, text: str) -> tuple[threading.Thread, list[object]]:
    outcome: list[object] = []

    def run() -> None:
        try:
            outcome.append(orchestrator.update(text, include_snapshot=True))
        except Exception as exc:
            outcome.append(exc)

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return thread, outcome


def test_slow_snapshot_does_not_block_readers() -> None:
    capturer = GatedCapturer()
    orchestrator, transport, _ = _make(capturer=capturer)
    _complete_create(orchestrator, transport)
    _complete_update(orchestrator, transport, "make it blue")

    thread, outcome = _update_in_background(orchestrator, "add footer")
    assert capturer.entered.wait(5)

    started = time.monotonic()
    assert orchestrator.phase is Phase.READY
    assert orchestrator.history.lineage(1) == ["make it blue"]
    assert orchestrator.current_code == "<div>make it blue</div>"
    assert time.monotonic() - started < 1.0

    capturer.release.set()
    thread.join(5)
    assert isinstance(outcome[0], TransportHandle)
    assert transport.last.request.history == ("make it blue", "add footer")
    assert transport.last.request.result_image == "data:image/png;base64,SNAP"


def test_revert_during_snapshot_rebuilds_against_new_version() -> None:
    capturer = GatedCapturer()
    orchestrator, transport, _ = _make(capturer=capturer)
    _complete_create(orchestrator, transport)
    _complete_update(orchestrator, transport, "make it blue")

    thread, outcome = _update_in_background(orchestrator, "add footer")
    assert capturer.entered.wait(5)
    orchestrator.revert_to(0)
    capturer.release.set()
    thread.join(5)

    assert isinstance(outcome[0], TransportHandle)
    assert capturer.calls == ["<div>make it blue</div>", "<div>v1</div>"]
    assert transport.last.request.history == ("add footer",)
    transport.last.emit(Complete("<div>footer</div>"))
    assert orchestrator.current_version.parent_index == 0


def test_reset_during_snapshot_cancels_update() -> None:
    capturer = GatedCapturer()
    orchestrator, transport, _ = _make(capturer=capturer)
    _complete_create(orchestrator, transport)

    thread, outcome = _update_in_background(orchestrator, "add footer")
    assert capturer.entered.wait(5)
    orchestrator.reset()
    capturer.release.set()
    thread.join(5)

    assert isinstance(outcome[0], NoCurrentVersionError)
    assert orchestrator.phase is Phase.IDLE
    assert len(transport.handles) == 1
