"""Sketchcode CLI entrypoints."""

from __future__ import annotations

import argparse
import uuid
from pathlib import Path

from .capture import PlaceholderCapturer, PlaywrightCapturer, PreviewCapturer
from .chat.loop import ChatLoop
from .config import CodeFlavor, Settings
from .errors import SketchcodeError
from .history.display import version_label
from .images import load_image_data_url
from .runs.events import EventWriter
from .runs.export import export_code, export_history_html
from .session.orchestrator import GenerationOrchestrator, Phase
from .transport import transport_for
from .utils import load_dotenv


def _add_common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--out", default="sketchcode-out", help="Output directory")
    parser.add_argument("--events", help="Path to events.jsonl")
    parser.add_argument("--config", help="TOML settings file")
    parser.add_argument("--flavor", choices=[flavor.value for flavor in CodeFlavor])
    parser.add_argument("--ws-url", dest="ws_url", help="Code generation backend WebSocket URL")
    parser.add_argument("--mock", action="store_true", help="Use the offline mock transport")
    parser.add_argument(
        "--capture",
        choices=["playwright", "placeholder", "none"],
        default="playwright",
        help="How to screenshot the current render for snapshot edits",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sketchcode", description="Generate UI code from a reference image")
    sub = parser.add_subparsers(dest="command")

    chat = sub.add_parser("chat", help="Interactive create/edit loop")
    chat.add_argument("--image", action="append", default=[], help="Reference image (repeatable)")
    _add_common_args(chat)

    run = sub.add_parser("run", help="Create once, apply edits in order, write the result")
    run.add_argument("--image", action="append", required=True, help="Reference image (repeatable)")
    run.add_argument("--update", action="append", default=[], help="Edit instruction (repeatable)")
    run.add_argument("--snapshot", action="store_true", help="Include a screenshot of the current render in edits")
    run.add_argument("--report", help="Also write the history report to this HTML path")
    _add_common_args(run)

    return parser


def _resolve_settings(args: argparse.Namespace) -> Settings:
    settings = Settings.from_env()
    if args.config:
        settings = Settings.from_toml(Path(args.config), base=settings)
    overrides: dict[str, object] = {}
    if args.flavor:
        overrides["generated_code_config"] = args.flavor
    if args.ws_url:
        overrides["backend_ws_url"] = args.ws_url
    if args.mock:
        overrides["mock_ai_response"] = True
    return settings.merged(overrides) if overrides else settings


def _build_capturer(kind: str) -> PreviewCapturer | None:
    if kind == "playwright":
        return PlaywrightCapturer()
    if kind == "placeholder":
        return PlaceholderCapturer()
    return None


def _build_orchestrator(args: argparse.Namespace) -> tuple[GenerationOrchestrator, Path]:
    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)
    events_path = Path(args.events) if args.events else out_dir / "events.jsonl"
    settings = _resolve_settings(args)
    orchestrator = GenerationOrchestrator(
        transport_for(settings),
        settings,
        events=EventWriter(events_path, uuid.uuid4().hex[:12]),
        capturer=_build_capturer(args.capture),
    )
    return orchestrator, out_dir


def _handle_chat(args: argparse.Namespace) -> int:
    orchestrator, out_dir = _build_orchestrator(args)
    ChatLoop(orchestrator, out_dir).run(list(args.image))
    return 0


def _handle_run(args: argparse.Namespace) -> int:
    orchestrator, out_dir = _build_orchestrator(args)
    loop = ChatLoop(orchestrator, out_dir)
    try:
        images = [load_image_data_url(source) for source in args.image]
    except (OSError, ValueError) as exc:
        print(f"Create failed: {exc}")
        return 1
    try:
        orchestrator.create(images)
    except (SketchcodeError, ValueError) as exc:
        print(str(exc))
        return 1
    loop.await_cycle("Generating code")
    loop.state.include_snapshot = bool(args.snapshot)
    for instruction in args.update:
        if orchestrator.phase is not Phase.READY:
            break
        loop.update(instruction)

    node = orchestrator.current_version
    if node is None:
        print("Generation failed; nothing written.")
        return 1
    written = export_code(node.code, out_dir / "index.html")
    print(f"Wrote {version_label(node.index)} to {written}")
    if args.report:
        report = export_history_html(orchestrator.history, Path(args.report), node.index)
        print(f"History report: {report}")
    return 0 if orchestrator.last_error is None else 1


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.command == "chat":
        raise SystemExit(_handle_chat(args))
    if args.command == "run":
        raise SystemExit(_handle_run(args))
    parser.print_help()
    raise SystemExit(1)


if __name__ == "__main__":
    main()
