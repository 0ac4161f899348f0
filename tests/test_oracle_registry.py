from __future__ import annotations

import json
from types import SimpleNamespace

import httpx
import openai
import pytest

from core.config.models import FillSettings
from core.oracles.offline import OfflineOracle
from core.oracles.openai_oracle import OpenAIOracle
from core.oracles.registry import create_oracle, default_oracle_name, list_supported_oracles
from core.templates.models import FieldValue, SlotView
from core.utils.errors import OracleTimeoutError, OracleUnavailableError


class FakeCompletions:
    def __init__(self, *, content: str | None = None, error: Exception | None = None) -> None:
        self.content = content
        self.error = error
        self.requests: list[dict] = []

    def create(self, **request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _client(completions: FakeCompletions) -> SimpleNamespace:
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def test_registry_lists_and_creates_offline_oracle() -> None:
    assert list_supported_oracles() == ["offline", "openai"]
    assert isinstance(create_oracle("offline"), OfflineOracle)


def test_registry_rejects_unknown_oracle() -> None:
    with pytest.raises(ValueError, match="Unsupported oracle"):
        create_oracle("psychic")


def test_default_oracle_name_prefers_explicit_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BLANKFILL_ORACLE", "Offline")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

    assert default_oracle_name() == "offline"


def test_default_oracle_name_depends_on_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("BLANKFILL_ORACLE", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    assert default_oracle_name() == "offline"

    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    assert default_oracle_name() == "openai"


def test_offline_oracle_contributes_nothing() -> None:
    oracle = OfflineOracle()

    assert oracle.detect_placeholders("[Company Name]") == []
    assert oracle.summarize("text") == ""
    assert oracle.map_slots([], []) == {}


def test_openai_oracle_parses_detection_reply() -> None:
    completions = FakeCompletions(
        content=json.dumps(
            {
                "placeholders": [
                    {
                        "key": "company_name",
                        "label": "Company Name",
                        "type": "text",
                        "question": "Which company?",
                        "originalPattern": "[Company Name]",
                        "numberOfOccurrences": 2,
                    },
                    {"key": "broken"},
                ]
            }
        )
    )
    oracle = OpenAIOracle(
        settings=FillSettings(oracle_model="test-model"),
        client=_client(completions),
    )

    descriptors = oracle.detect_placeholders("Between [Company Name] and [Company Name]")

    assert [item.key for item in descriptors] == ["company_name"]
    request = completions.requests[0]
    assert request["model"] == "test-model"
    assert request["response_format"] == {"type": "json_object"}


def test_openai_oracle_mapping_is_filtered_to_batch() -> None:
    completions = FakeCompletions(content='{"h0001": "title", "h0002": "ghost", "h0404": "title"}')
    oracle = OpenAIOracle(client=_client(completions))
    slots = [
        SlotView(id="h0001", representation="styled_markup", kind="label_only", text_window="x"),
        SlotView(id="h0002", representation="styled_markup", kind="bracket", text_window="y"),
    ]

    mapping = oracle.map_slots(slots, [FieldValue(key="title", value="CEO")])

    assert mapping == {"h0001": "title"}


def test_openai_oracle_summary_collapses_whitespace() -> None:
    oracle = OpenAIOracle(client=_client(FakeCompletions(content="  A SAFE\n between parties. ")))

    assert oracle.summarize("text") == "A SAFE between parties."


def test_openai_timeout_maps_to_oracle_timeout() -> None:
    error = openai.APITimeoutError(request=httpx.Request("POST", "https://api.example.test"))
    oracle = OpenAIOracle(client=_client(FakeCompletions(error=error)))

    with pytest.raises(OracleTimeoutError):
        oracle.summarize("text")


def test_openai_errors_and_empty_replies_map_to_unavailable() -> None:
    error = openai.APIConnectionError(request=httpx.Request("POST", "https://api.example.test"))
    failing = OpenAIOracle(client=_client(FakeCompletions(error=error)))
    empty = OpenAIOracle(client=_client(FakeCompletions(content="")))

    with pytest.raises(OracleUnavailableError):
        failing.detect_placeholders("text")
    with pytest.raises(OracleUnavailableError):
        empty.summarize("text")
