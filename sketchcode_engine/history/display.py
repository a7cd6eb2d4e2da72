"""Navigable views over the version history."""

from __future__ import annotations

from dataclasses import dataclass

from ..utils import truncate
from .store import VersionHistoryStore, VersionKind, VersionNode


@dataclass(frozen=True)
class HistoryRow:
    index: int
    label: str
    kind: str
    summary: str
    parent_index: int | None
    parent_label: str | None
    is_current: bool
    depth: int


def version_label(index: int | None) -> str | None:
    if index is None:
        return None
    return f"v{index + 1}"


def summarize_node(node: VersionNode, max_chars: int = 60) -> str:
    if node.kind is VersionKind.INITIAL_CREATE:
        return "Create"
    return truncate(node.inputs.prompt or "Edit", max_chars)


def history_rows(store: VersionHistoryStore, current_index: int | None = None) -> list[HistoryRow]:
    """One row per version in append order.

    ``parent_label`` is only filled in when the parent is not the previous
    version, i.e. when the row starts a branch.
    """
    depths: dict[int, int] = {}
    rows: list[HistoryRow] = []
    for node in store:
        depth = 0 if node.parent_index is None else depths.get(node.parent_index, 0) + 1
        depths[node.index] = depth
        branched = node.parent_index is not None and node.parent_index != node.index - 1
        rows.append(
            HistoryRow(
                index=node.index,
                label=version_label(node.index) or "",
                kind="Create" if node.kind is VersionKind.INITIAL_CREATE else "Edit",
                summary=summarize_node(node),
                parent_index=node.parent_index,
                parent_label=version_label(node.parent_index) if branched else None,
                is_current=node.index == current_index,
                depth=depth,
            )
        )
    return rows


def render_tree(store: VersionHistoryStore, current_index: int | None = None) -> str:
    """Draw the version forest with box connectors, current version marked ``*``.

    Walks iteratively so arbitrarily long edit chains render.
    """
    children: dict[int, list[VersionNode]] = {}
    roots: list[VersionNode] = []
    for node in store:
        if node.parent_index is None:
            roots.append(node)
        else:
            children.setdefault(node.parent_index, []).append(node)

    lines: list[str] = []
    stack: list[tuple[VersionNode, str, bool, bool]] = [(root, "", True, True) for root in reversed(roots)]
    while stack:
        node, prefix, is_last, is_root = stack.pop()
        marker = " *" if node.index == current_index else ""
        text = f"{version_label(node.index)} {summarize_node(node)}{marker}"
        if is_root:
            lines.append(text)
            child_prefix = ""
        else:
            lines.append(f"{prefix}{'└─ ' if is_last else '├─ '}{text}")
            child_prefix = prefix + ("   " if is_last else "│  ")
        kids = children.get(node.index, [])
        for pos in range(len(kids) - 1, -1, -1):
            stack.append((kids[pos], child_prefix, pos == len(kids) - 1, False))
    return "\n".join(lines)
