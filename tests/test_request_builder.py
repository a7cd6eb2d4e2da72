from __future__ import annotations

import pytest

from sketchcode_engine.config import CodeFlavor, Settings
from sketchcode_engine.errors import NoCurrentVersionError
from sketchcode_engine.generation.request import RequestKind, build_create_request, build_update_request
from sketchcode_engine.history.store import VersionHistoryStore, VersionInputs, VersionKind

IMG = "data:image/png;base64,AAAA"


def _store_with_chain() -> VersionHistoryStore:
    store = VersionHistoryStore()
    store.append(kind=VersionKind.INITIAL_CREATE, code="c0", inputs=VersionInputs(image_url=IMG), parent_index=None)
    store.append(kind=VersionKind.EDIT, code="c1", inputs=VersionInputs(prompt="make it blue"), parent_index=0)
    store.append(kind=VersionKind.EDIT, code="c2", inputs=VersionInputs(prompt="add footer"), parent_index=1)
    return store


def test_create_request_uses_first_image() -> None:
    request = build_create_request([IMG, "data:image/png;base64,BBBB"])
    assert request.kind is RequestKind.INITIAL_CREATE
    assert request.image == IMG
    assert request.history == ()
    assert request.result_image is None


def test_create_request_requires_image() -> None:
    with pytest.raises(ValueError):
        build_create_request([])


def test_update_request_history_is_lineage_plus_instruction() -> None:
    store = _store_with_chain()
    request = build_update_request(store, 2, IMG, "bigger title")
    assert request.kind is RequestKind.EDIT
    assert request.history == ("make it blue", "add footer", "bigger title")
    assert request.instruction == "bigger title"


def test_update_request_from_root_branch() -> None:
    store = _store_with_chain()
    request = build_update_request(store, 0, IMG, "fix spacing")
    assert request.history == ("fix spacing",)


def test_update_request_without_current_version() -> None:
    with pytest.raises(NoCurrentVersionError):
        build_update_request(VersionHistoryStore(), None, IMG, "anything")


def test_payload_merges_settings() -> None:
    settings = Settings(generated_code_config=CodeFlavor.REACT_TAILWIND, openai_api_key="sk-test")
    store = _store_with_chain()
    request = build_update_request(store, 1, IMG, "x", settings, result_image="data:image/png;base64,CCCC")
    payload = request.to_payload()
    assert payload["generationType"] == "update"
    assert payload["history"] == ["make it blue", "x"]
    assert payload["resultImage"] == "data:image/png;base64,CCCC"
    assert payload["generatedCodeConfig"] == "react_tailwind"
    assert payload["openAiApiKey"] == "sk-test"


def test_create_payload_has_no_history_or_snapshot() -> None:
    payload = build_create_request([IMG]).to_payload()
    assert payload["generationType"] == "create"
    assert "history" not in payload
    assert "resultImage" not in payload
    assert payload["generatedCodeConfig"] == "html_tailwind"
