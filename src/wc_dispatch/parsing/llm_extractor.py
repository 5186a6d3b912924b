from __future__ import annotations

import json
from typing import Any

from wc_dispatch.exceptions import ExtractionUnavailable
from wc_dispatch.logger import JsonlLogger
from wc_dispatch.parsing.contracts import Extraction, ExtractedFields, MessageHeaders
from wc_dispatch.parsing.email_parser import normalize_text
from wc_dispatch.parsing.rules import LLM_REQUIRED_FIELDS, is_urgent, needs_estimate

FUNCTION_NAME = "extract_scheduling_info"

EXTRACTION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "customerName": {"type": "string"},
        "phone": {"type": "string"},
        "email": {"type": "string"},
        "address": {"type": "string"},
        "service": {"type": "string"},
        "preferredDate": {"type": "string"},
        "alternativeDates": {"type": "array", "items": {"type": "string"}},
        "notes": {"type": "string"},
    },
    "required": list(LLM_REQUIRED_FIELDS),
}

SYSTEM_PROMPT = (
    "You are a helpful assistant that extracts scheduling information from emails "
    "for a window cleaning business.\n"
    "Extract ONLY the information requested in the schema. If information is missing, "
    "leave the field empty or null.\n"
    "For dates, convert them to YYYY-MM-DD format if possible."
)


def _text_or_none(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    return text or None


def fraction_confidence(payload: dict[str, Any]) -> float:
    filled = [name for name in LLM_REQUIRED_FIELDS if _text_or_none(payload.get(name))]
    return round(len(filled) / len(LLM_REQUIRED_FIELDS), 2)


def _tool_arguments(response: Any) -> str | None:
    choices = getattr(response, "choices", None) or []
    if not choices:
        return None
    message = getattr(choices[0], "message", None)
    if message is None:
        return None

    for call in getattr(message, "tool_calls", None) or []:
        function = getattr(call, "function", None)
        if function is not None and getattr(function, "name", None) == FUNCTION_NAME:
            return getattr(function, "arguments", None) or None

    # legacy function_call shape
    function_call = getattr(message, "function_call", None)
    if function_call is not None:
        return getattr(function_call, "arguments", None) or None
    return None


def fields_from_payload(payload: dict[str, Any], *, subject: str, body: str) -> ExtractedFields:
    alternatives_raw = payload.get("alternativeDates")
    alternatives = (
        tuple(d for d in (_text_or_none(v) for v in alternatives_raw) if d)
        if isinstance(alternatives_raw, list)
        else ()
    )
    return ExtractedFields(
        customer_name=_text_or_none(payload.get("customerName")),
        phone=_text_or_none(payload.get("phone")),
        email=_text_or_none(payload.get("email")),
        address=_text_or_none(payload.get("address")),
        service=_text_or_none(payload.get("service")),
        requested_date=_text_or_none(payload.get("preferredDate")),
        alternative_dates=alternatives,
        notes=_text_or_none(payload.get("notes")),
        needs_estimate=needs_estimate(subject, body),
    )


class LlmExtractor:
    """Schema-constrained extraction through a chat completion tool call.

    The client is anything exposing ``chat.completions.create`` (the
    ``openai.OpenAI`` client in production, a fake in tests). A response
    without a usable tool-call payload raises ``ExtractionUnavailable``;
    there is no partial result and no retry here.
    """

    name = "llm"

    def __init__(self, client: Any, *, model: str, logger: JsonlLogger | None = None) -> None:
        self._client = client
        self._model = model
        self._logger = logger

    def _request(self, subject: str, body: str) -> Any:
        return self._client.chat.completions.create(
            model=self._model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": (
                        "Extract scheduling information from this email.\n"
                        f"Subject: {subject}\n\n{body}"
                    ),
                },
            ],
            tools=[
                {
                    "type": "function",
                    "function": {
                        "name": FUNCTION_NAME,
                        "description": "Extract scheduling information from email content",
                        "parameters": EXTRACTION_SCHEMA,
                    },
                }
            ],
            tool_choice={"type": "function", "function": {"name": FUNCTION_NAME}},
        )

    def extract(self, body: str | None, headers: MessageHeaders | None = None) -> Extraction:
        hdrs = headers or MessageHeaders()
        normalized_body = normalize_text(body or "")
        subject = normalize_text(hdrs.subject or "")

        if self._logger:
            self._logger.debug(
                "llm_extract_start", model=self._model, body_chars=len(normalized_body)
            )

        response = self._request(subject, normalized_body)

        arguments = _tool_arguments(response)
        if not arguments:
            raise ExtractionUnavailable(
                "Failed to extract information: completion returned no structured payload",
                model=self._model,
            )

        try:
            payload = json.loads(arguments)
        except json.JSONDecodeError as exc:
            raise ExtractionUnavailable(
                "Failed to extract information: structured payload is not valid JSON",
                model=self._model,
                detail=str(exc),
            ) from exc
        if not isinstance(payload, dict):
            raise ExtractionUnavailable(
                "Failed to extract information: structured payload is not valid JSON",
                model=self._model,
                detail=f"expected object, got {type(payload).__name__}",
            )

        fields = fields_from_payload(payload, subject=subject, body=normalized_body)
        extraction = Extraction(
            fields=fields,
            confidence=fraction_confidence(payload),
            urgency="High" if is_urgent(normalized_body) else "Normal",
            request_type="Quote Request" if fields.needs_estimate else "General Inquiry",
            strategy="llm",
            matched_by={
                name: "llm"
                for name, value in fields.summary().items()
                if name != "needs_estimate" and value
            },
        )

        if self._logger:
            self._logger.info(
                "llm_extract_ok",
                model=self._model,
                confidence=extraction.confidence,
                fields_found=sorted(extraction.matched_by),
            )
        return extraction
