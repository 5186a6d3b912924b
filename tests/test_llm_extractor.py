from __future__ import annotations

import json
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest

from wc_dispatch.exceptions import ExtractionUnavailable
from wc_dispatch.logger import JsonlLogger
from wc_dispatch.parsing.contracts import MessageHeaders
from wc_dispatch.parsing.llm_extractor import FUNCTION_NAME, LlmExtractor, fraction_confidence


def _tool_response(arguments: str | None, *, name: str = FUNCTION_NAME) -> SimpleNamespace:
    call = SimpleNamespace(function=SimpleNamespace(name=name, arguments=arguments))
    message = SimpleNamespace(tool_calls=[call], function_call=None)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeCompletions:
    def __init__(self, response: Any) -> None:
        self.response = response
        self.calls: list[dict[str, Any]] = []

    def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        return self.response


class FakeClient:
    def __init__(self, response: Any) -> None:
        self.completions = FakeCompletions(response)
        self.chat = SimpleNamespace(completions=self.completions)


FULL_PAYLOAD = {
    "customerName": "Alice Smith",
    "phone": "555-123-4567",
    "email": "alice@example.com",
    "address": "123 Main St",
    "service": "Window cleaning",
    "preferredDate": "2025-05-03",
    "alternativeDates": ["2025-05-10", "", "  "],
    "notes": "Dog in yard",
}


def test_full_payload_maps_fields_and_scores_one() -> None:
    client = FakeClient(_tool_response(json.dumps(FULL_PAYLOAD)))
    extractor = LlmExtractor(client, model="gpt-test")

    result = extractor.extract(
        "Can I get a quote? Need it done tomorrow.", MessageHeaders(subject="Windows")
    )

    assert result.strategy == "llm"
    assert result.confidence == 1.0
    assert result.fields.customer_name == "Alice Smith"
    assert result.fields.requested_date == "2025-05-03"
    assert result.fields.alternative_dates == ("2025-05-10",)
    assert result.fields.needs_estimate is True
    assert result.request_type == "Quote Request"
    assert result.urgency == "High"

    out = result.to_llm_dict()
    assert out["customerName"] == "Alice Smith"
    assert out["preferredDate"] == "2025-05-03"
    assert out["confidence"] == 1.0


def test_request_forces_the_extraction_tool() -> None:
    client = FakeClient(_tool_response(json.dumps(FULL_PAYLOAD)))
    LlmExtractor(client, model="gpt-test").extract("body", MessageHeaders(subject="Subj"))

    (call,) = client.completions.calls
    assert call["model"] == "gpt-test"
    assert call["tool_choice"] == {"type": "function", "function": {"name": FUNCTION_NAME}}
    assert call["tools"][0]["function"]["name"] == FUNCTION_NAME
    assert "Subject: Subj" in call["messages"][1]["content"]


def test_partial_payload_confidence_is_fraction_of_required() -> None:
    payload = {"customerName": "Bob", "phone": "", "email": None, "address": "45 Elm Dr"}
    client = FakeClient(_tool_response(json.dumps(payload)))

    result = LlmExtractor(client, model="m").extract("hello")

    assert result.confidence == 0.33
    assert result.fields.phone is None
    assert result.fields.email is None


def test_fraction_confidence_empty() -> None:
    assert fraction_confidence({}) == 0.0


@pytest.mark.parametrize(
    "response",
    [
        SimpleNamespace(choices=[]),
        SimpleNamespace(choices=[SimpleNamespace(message=None)]),
        SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(tool_calls=[], function_call=None))]
        ),
        _tool_response(None),
        _tool_response(""),
        _tool_response(json.dumps(FULL_PAYLOAD), name="some_other_tool"),
    ],
)
def test_missing_payload_raises(response: Any) -> None:
    extractor = LlmExtractor(FakeClient(response), model="m")

    with pytest.raises(ExtractionUnavailable) as e:
        extractor.extract("Name: Alice")

    assert "no structured payload" in str(e.value)


@pytest.mark.parametrize("arguments", ["{not json", "[1, 2]", '"just a string"'])
def test_invalid_json_raises(arguments: str) -> None:
    extractor = LlmExtractor(FakeClient(_tool_response(arguments)), model="m")

    with pytest.raises(ExtractionUnavailable) as e:
        extractor.extract("Name: Alice")

    assert "not valid JSON" in str(e.value)
    assert e.value.to_dict()["model"] == "m"


def test_legacy_function_call_shape_is_read() -> None:
    message = SimpleNamespace(
        tool_calls=None,
        function_call=SimpleNamespace(name=FUNCTION_NAME, arguments=json.dumps(FULL_PAYLOAD)),
    )
    response = SimpleNamespace(choices=[SimpleNamespace(message=message)])

    result = LlmExtractor(FakeClient(response), model="m").extract("x")

    assert result.fields.email == "alice@example.com"


def test_logs_start_and_ok(tmp_path: Path) -> None:
    log_path = tmp_path / "llm.jsonl"
    logger = JsonlLogger(path=log_path, component="llm_extractor")
    client = FakeClient(_tool_response(json.dumps(FULL_PAYLOAD)))

    LlmExtractor(client, model="m", logger=logger).extract("hello")

    events = [json.loads(line)["event"] for line in log_path.read_text(encoding="utf-8").splitlines()]
    assert events == ["llm_extract_start", "llm_extract_ok"]
