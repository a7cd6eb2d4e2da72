"""Generation request assembly."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Sequence

from ..config import Settings
from ..errors import NoCurrentVersionError
from ..history.store import VersionHistoryStore


class RequestKind(str, Enum):
    INITIAL_CREATE = "create"
    EDIT = "update"


@dataclass(frozen=True)
class GenerationRequest:
    kind: RequestKind
    image: str
    history: tuple[str, ...] = ()
    result_image: str | None = None
    settings: Settings = field(default_factory=Settings)

    @property
    def instruction(self) -> str | None:
        if self.kind is RequestKind.EDIT and self.history:
            return self.history[-1]
        return None

    def to_payload(self) -> dict[str, Any]:
        """Wire payload; settings are applied last and win over request keys."""
        params: dict[str, Any] = {
            "generationType": self.kind.value,
            "image": self.image,
        }
        if self.kind is RequestKind.EDIT:
            params["history"] = list(self.history)
            if self.result_image:
                params["resultImage"] = self.result_image
        params.update(self.settings.to_request_params())
        return params


def build_create_request(images: Sequence[str], settings: Settings | None = None) -> GenerationRequest:
    if not images or not images[0]:
        raise ValueError("A reference image is required to create a version.")
    return GenerationRequest(
        kind=RequestKind.INITIAL_CREATE,
        image=images[0],
        settings=settings or Settings(),
    )


def build_update_request(
    store: VersionHistoryStore,
    current_index: int | None,
    reference_image: str,
    instruction: str,
    settings: Settings | None = None,
    result_image: str | None = None,
) -> GenerationRequest:
    if current_index is None:
        raise NoCurrentVersionError()
    history = store.lineage(current_index)
    history.append(instruction)
    return GenerationRequest(
        kind=RequestKind.EDIT,
        image=reference_image,
        history=tuple(history),
        result_image=result_image or None,
        settings=settings or Settings(),
    )
