"""Export generated code and the version history to disk."""

from __future__ import annotations

import html
from pathlib import Path

from ..history.display import history_rows
from ..history.store import VersionHistoryStore


def export_code(code: str, out_path: Path) -> Path:
    if out_path.is_dir():
        out_path = out_path / "index.html"
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(code, encoding="utf-8")
    return out_path


def export_history_html(store: VersionHistoryStore, out_path: Path, current_index: int | None = None) -> Path:
    cards: list[str] = []
    for row in history_rows(store, current_index):
        node = store.get(row.index)
        label = html.escape(row.label)
        summary = html.escape(row.summary)
        parent = html.escape(row.parent_label) if row.parent_label else ""
        parent_html = f"<div class='parent'>branched from {parent}</div>" if parent else ""
        current_cls = " current" if row.is_current else ""
        cards.append(
            f"<div class='card{current_cls}' style='margin-left: {row.depth * 16}px'>"
            f"<div class='meta'><div class='vid'>{label} · {html.escape(row.kind)}</div>"
            f"<div class='summary'>{summary}</div>{parent_html}</div>"
            f"<pre><code>{html.escape(node.code)}</code></pre>"
            f"</div>"
        )

    html_doc = f"""
<!doctype html>
<html>
<head>
  <meta charset='utf-8'>
  <title>Sketchcode History</title>
  <style>
    body {{ font-family: Arial, sans-serif; background: #f6f6f6; margin: 0; padding: 20px; }}
    .card {{ background: white; border-radius: 10px; margin-bottom: 16px; box-shadow: 0 2px 8px rgba(0,0,0,0.08); }}
    .card.current {{ outline: 2px solid #0066cc; }}
    .meta {{ padding: 10px; }}
    .vid {{ font-weight: bold; font-size: 12px; color: #444; }}
    .summary {{ font-size: 13px; margin: 8px 0; }}
    .parent {{ font-size: 12px; color: #0066cc; }}
    pre {{ margin: 0; padding: 10px; background: #111; color: #eee; overflow-x: auto; font-size: 12px; }}
  </style>
</head>
<body>
  <h1>Sketchcode History</h1>
  {''.join(cards)}
</body>
</html>
"""
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(html_doc, encoding="utf-8")
    return out_path
