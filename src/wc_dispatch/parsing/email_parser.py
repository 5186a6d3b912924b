from __future__ import annotations

import re
import unicodedata

from wc_dispatch.parsing.contracts import Extraction, ExtractedFields, MessageHeaders
from wc_dispatch.parsing.rules import (
    CONFIDENCE_WEIGHTS,
    FIELD_RULES,
    SHAPE_RULES,
    find_dates,
    is_urgent,
    needs_estimate,
    split_sender,
)


def normalize_text(text: str) -> str:
    normalized = unicodedata.normalize("NFKC", text)
    normalized = normalized.replace("\r\n", "\n").replace("\r", "\n")
    normalized = normalized.replace("\u200b", "").replace("\ufeff", "")

    lines = [re.sub(r"[ \t]+", " ", line).strip() for line in normalized.split("\n")]
    compact = "\n".join(lines)
    compact = re.sub(r"\n{3,}", "\n\n", compact)
    return compact.strip()


def weighted_confidence(values: dict[str, str | None]) -> float:
    score = sum(weight for name, weight in CONFIDENCE_WEIGHTS.items() if values.get(name))
    return round(min(score, 1.0), 2)


def _alternative_dates(body: str, requested: str | None) -> tuple[str, ...]:
    alternatives: list[str] = []
    for candidate in find_dates(body):
        if requested and candidate in requested:
            continue
        alternatives.append(candidate)
    return tuple(alternatives)


def parse_email(body: str | None, headers: MessageHeaders | None = None) -> Extraction:
    """Extract job fields from an email body using the labeled + shape rule table.

    Never raises for malformed or empty input; anything not found stays None.
    """
    hdrs = headers or MessageHeaders()
    normalized_body = normalize_text(body or "")
    normalized_subject = normalize_text(hdrs.subject or "")
    combined = "\n".join(part for part in [normalized_subject, normalized_body] if part)

    values: dict[str, str | None] = {}
    matched_by: dict[str, str] = {}

    for rule in FIELD_RULES:
        value = rule.search(normalized_body)
        if value is not None:
            values[rule.field] = value
            matched_by[rule.field] = "label"
            continue

        shape = SHAPE_RULES.get(rule.field)
        if shape is None:
            values[rule.field] = None
            continue
        # email may sit in the subject line; the rest are body-only
        value = shape(combined if rule.field == "email" else normalized_body)
        values[rule.field] = value
        if value is not None:
            matched_by[rule.field] = "shape"

    sender_name, sender_email = split_sender(hdrs.sender)
    if values.get("customer_name") is None and sender_name:
        values["customer_name"] = sender_name
        matched_by["customer_name"] = "sender"
    if values.get("email") is None and sender_email:
        values["email"] = sender_email
        matched_by["email"] = "sender"

    wants_estimate = needs_estimate(normalized_subject, normalized_body)

    fields = ExtractedFields(
        customer_name=values.get("customer_name"),
        phone=values.get("phone"),
        email=values.get("email"),
        address=values.get("address"),
        service=values.get("service"),
        requested_date=values.get("requested_date"),
        alternative_dates=_alternative_dates(normalized_body, values.get("requested_date")),
        notes=values.get("notes"),
        needs_estimate=wants_estimate,
    )

    return Extraction(
        fields=fields,
        confidence=weighted_confidence(values),
        urgency="High" if is_urgent(normalized_body) else "Normal",
        request_type="Quote Request" if wants_estimate else "General Inquiry",
        strategy="regex",
        matched_by=matched_by,
    )


class RegexExtractor:
    name = "regex"

    def extract(self, body: str | None, headers: MessageHeaders | None = None) -> Extraction:
        return parse_email(body, headers)
