"""Interactive chat loop wrapper."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from ..cli_progress import ProgressTicker
from ..errors import SketchcodeError
from ..history.display import render_tree, version_label
from ..images import load_image_data_url
from ..runs.export import export_code, export_history_html
from ..session.orchestrator import GenerationOrchestrator, Phase
from .command_registry import COMMANDS
from .intent_parser import parse_intent


@dataclass
class ChatState:
    include_snapshot: bool = False


class ChatLoop:
    def __init__(
        self,
        orchestrator: GenerationOrchestrator,
        out_dir: Path,
        *,
        input_fn: Callable[[str], str] = input,
        poll_s: float = 0.2,
    ) -> None:
        self.orchestrator = orchestrator
        self.out_dir = out_dir
        self.state = ChatState()
        self._input = input_fn
        self._poll_s = poll_s

    def run(self, images: list[str] | None = None) -> None:
        print("Sketchcode chat started. Type /help for commands.")
        if images:
            self.create(images)
        while True:
            try:
                line = self._input("> ")
            except (EOFError, KeyboardInterrupt):
                break
            if not self.handle_line(line):
                break

    def handle_line(self, line: str) -> bool:
        """Run one line of input; False when the user asked to quit."""
        intent = parse_intent(line)
        action = intent.action
        if action == "noop":
            return True
        if action == "quit":
            return False
        if action == "help":
            for spec in COMMANDS:
                print(f"/{spec.command:<10} {spec.help}")
            print("Plain text is sent as an edit of the current version.")
            return True
        if action == "unknown":
            print(f"Unknown command: /{intent.command_args.get('command')}")
            return True
        if action == "create":
            paths = intent.command_args.get("paths") or []
            if not paths:
                print("/create requires at least one image path")
                return True
            self.create(paths)
            return True
        if action == "update":
            if not intent.instruction:
                print("Tell the AI what to change.")
                return True
            self.update(intent.instruction)
            return True
        if action == "revert":
            index = intent.command_args.get("index")
            if index is None:
                print("/revert requires a version number, e.g. /revert 2")
                return True
            try:
                node = self.orchestrator.revert_to(index)
            except SketchcodeError as exc:
                print(str(exc))
                return True
            print(f"Current version: {version_label(node.index)}")
            return True
        if action == "set_snapshot":
            enabled = intent.command_args.get("enabled")
            self.state.include_snapshot = (not self.state.include_snapshot) if enabled is None else bool(enabled)
            print(f"Include screenshot of current version: {'on' if self.state.include_snapshot else 'off'}")
            return True
        if action == "history":
            tree = render_tree(self.orchestrator.history, self.orchestrator.current_version_index)
            print(tree or "No versions yet.")
            return True
        if action == "show_code":
            print(self.orchestrator.current_code or "No code yet.")
            return True
        if action == "show_log":
            for entry in self.orchestrator.console_log:
                print(entry)
            return True
        if action == "export":
            self.export(intent.command_args.get("path") or "")
            return True
        if action == "reset":
            self.orchestrator.reset()
            print("Session reset.")
            return True
        return True

    def create(self, sources: list[str]) -> None:
        try:
            images = [load_image_data_url(source) for source in sources]
        except (OSError, ValueError) as exc:
            print(f"Create failed: {exc}")
            return
        try:
            self.orchestrator.create(images)
        except (SketchcodeError, ValueError) as exc:
            print(str(exc))
            return
        self.await_cycle("Generating code")

    def update(self, instruction: str) -> None:
        try:
            self.orchestrator.update(instruction, include_snapshot=self.state.include_snapshot)
        except (SketchcodeError, ValueError) as exc:
            print(str(exc))
            return
        self.await_cycle("Updating code")

    def await_cycle(self, label: str) -> None:
        orchestrator = self.orchestrator

        def detail() -> str | None:
            tail = orchestrator.console_tail(1)
            chars = len(orchestrator.live_buffer)
            return f"{tail[0]} • {chars} chars" if tail else f"{chars} chars"

        ticker = ProgressTicker(label, detail=detail)
        ticker.start_ticking()
        try:
            while not orchestrator.wait(self._poll_s):
                pass
        except KeyboardInterrupt:
            orchestrator.stop()
            orchestrator.wait()
        finally:
            ticker.stop()
        node = orchestrator.current_version
        if orchestrator.phase is Phase.READY and node is not None:
            print(f"Current version: {version_label(node.index)} ({len(node.code)} chars)")

    def export(self, raw_path: str) -> None:
        code = self.orchestrator.current_code
        if not code:
            print("Nothing to export yet.")
            return
        target = Path(raw_path) if raw_path else self.out_dir / "index.html"
        written = export_code(code, target)
        report = export_history_html(
            self.orchestrator.history,
            written.parent / "history.html",
            self.orchestrator.current_version_index,
        )
        print(f"Exported to {written} (history: {report})")
