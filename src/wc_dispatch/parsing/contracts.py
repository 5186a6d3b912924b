from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

Urgency = Literal["High", "Normal"]
RequestType = Literal["Quote Request", "General Inquiry"]
Strategy = Literal["regex", "llm"]


@dataclass(frozen=True)
class MessageHeaders:
    subject: str = ""
    sender: str = ""


@dataclass(frozen=True)
class RawEmail:
    id: str
    thread_id: str
    subject: str
    sender: str
    received_at: str
    body_text: str

    @property
    def headers(self) -> MessageHeaders:
        return MessageHeaders(subject=self.subject, sender=self.sender)


@dataclass(frozen=True)
class ExtractedFields:
    customer_name: str | None = None
    phone: str | None = None
    email: str | None = None
    address: str | None = None
    service: str | None = None
    requested_date: str | None = None
    alternative_dates: tuple[str, ...] = ()
    notes: str | None = None
    needs_estimate: bool = False

    def summary(self) -> dict[str, Any]:
        """Regex-path output shape: six optional fields plus ``needs_estimate``."""
        return {
            "name": self.customer_name,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
            "service": self.service,
            "requested_date": self.requested_date,
            "needs_estimate": self.needs_estimate,
        }

    def to_llm_dict(self) -> dict[str, Any]:
        return {
            "customerName": self.customer_name,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
            "service": self.service,
            "preferredDate": self.requested_date,
            "alternativeDates": list(self.alternative_dates),
            "notes": self.notes,
        }


@dataclass(frozen=True)
class Extraction:
    fields: ExtractedFields
    confidence: float
    urgency: Urgency = "Normal"
    request_type: RequestType = "General Inquiry"
    strategy: Strategy = "regex"
    matched_by: dict[str, str] = field(default_factory=dict)

    def to_llm_dict(self) -> dict[str, Any]:
        return {**self.fields.to_llm_dict(), "confidence": self.confidence}

    def to_jsonable(self) -> dict[str, Any]:
        return {
            "strategy": self.strategy,
            "fields": {
                **self.fields.summary(),
                "alternative_dates": list(self.fields.alternative_dates),
                "notes": self.fields.notes,
            },
            "confidence": self.confidence,
            "urgency": self.urgency,
            "request_type": self.request_type,
            "matched_by": dict(self.matched_by),
        }
