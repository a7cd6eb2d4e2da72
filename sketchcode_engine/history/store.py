"""Append-only, tree-shaped version history for a generation session."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator

from ..errors import IndexOutOfRangeError
from ..utils import now_utc_iso


class VersionKind(str, Enum):
    INITIAL_CREATE = "ai_create"
    EDIT = "ai_edit"


@dataclass(frozen=True)
class VersionInputs:
    image_url: str | None = None
    prompt: str | None = None
    result_image: str | None = None


@dataclass(frozen=True)
class VersionNode:
    index: int
    kind: VersionKind
    parent_index: int | None
    code: str
    inputs: VersionInputs
    created_at: str = ""

    @property
    def instruction(self) -> str | None:
        if self.kind is VersionKind.EDIT:
            return self.inputs.prompt
        return None


class VersionHistoryStore:
    """Arena of version nodes; parents are referenced by index.

    Nodes are never mutated or removed once appended, so any index handed out
    stays revertable for the lifetime of the session (until ``clear``).
    """

    def __init__(self) -> None:
        self._nodes: list[VersionNode] = []

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[VersionNode]:
        return iter(list(self._nodes))

    @property
    def nodes(self) -> tuple[VersionNode, ...]:
        return tuple(self._nodes)

    def append(
        self,
        *,
        kind: VersionKind,
        code: str,
        inputs: VersionInputs,
        parent_index: int | None,
    ) -> VersionNode:
        index = len(self._nodes)
        if kind is VersionKind.INITIAL_CREATE:
            if parent_index is not None:
                raise ValueError("Initial versions cannot have a parent.")
        elif parent_index is None or not 0 <= parent_index < index:
            raise ValueError(f"Edit parent {parent_index!r} must reference an existing version (0..{index - 1}).")
        node = VersionNode(
            index=index,
            kind=kind,
            parent_index=parent_index,
            code=code,
            inputs=inputs,
            created_at=now_utc_iso(),
        )
        self._nodes.append(node)
        return node

    def get(self, index: int) -> VersionNode:
        if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index < len(self._nodes):
            raise IndexOutOfRangeError(index, len(self._nodes))
        return self._nodes[index]

    def contains(self, index: int) -> bool:
        return isinstance(index, int) and 0 <= index < len(self._nodes)

    def ancestry(self, index: int) -> list[VersionNode]:
        """Nodes from the root down to ``index`` (inclusive)."""
        chain: list[VersionNode] = []
        node: VersionNode | None = self.get(index)
        while node is not None:
            chain.append(node)
            node = self._nodes[node.parent_index] if node.parent_index is not None else None
        chain.reverse()
        return chain

    def lineage(self, index: int) -> list[str]:
        """Instruction texts from the root to ``index`` in chronological order.

        The root's input is the reference image, so it contributes nothing.
        """
        return [node.inputs.prompt or "" for node in self.ancestry(index) if node.kind is VersionKind.EDIT]

    def children(self, index: int) -> list[VersionNode]:
        return [node for node in self._nodes if node.parent_index == index]

    def roots(self) -> list[VersionNode]:
        return [node for node in self._nodes if node.parent_index is None]

    def latest(self) -> VersionNode | None:
        return self._nodes[-1] if self._nodes else None

    def clear(self) -> None:
        self._nodes = []

    def to_payload(self) -> list[dict[str, Any]]:
        return [
            {
                "index": node.index,
                "type": node.kind.value,
                "parent_index": node.parent_index,
                "code": node.code,
                "inputs": {
                    "image_url": node.inputs.image_url,
                    "prompt": node.inputs.prompt,
                    "result_image": node.inputs.result_image,
                },
                "created_at": node.created_at,
            }
            for node in self._nodes
        ]
