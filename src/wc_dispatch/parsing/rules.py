"""Extraction rule table for customer emails.

Every target field has exactly one labeled rule in ``FIELD_RULES`` (label
tokens, stop characters, post-processor) and at most one shape rule in
``SHAPE_RULES`` that runs only when the labeled rule finds nothing. The
vocabularies for quote/urgency classification and the confidence weights
live here too, so both extraction strategies read the same table.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field

# ---- Value post-processing ----

_EMAIL_RE = re.compile(r"\b([A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,})\b")

_TRAILING_PUNCT = " \t.,;:"


def clean_value(raw: str) -> str | None:
    value = " ".join(raw.split()).strip(_TRAILING_PUNCT)
    return value or None


def clean_name(raw: str) -> str | None:
    value = clean_value(raw)
    if value is None:
        return None
    if "@" in value or any(ch.isdigit() for ch in value):
        return None
    return value


def normalize_phone(raw: str) -> str | None:
    stripped = raw.strip()
    digits = re.sub(r"\D", "", stripped)
    if len(digits) < 10 or len(digits) > 15:
        return None
    if stripped.startswith("+"):
        return f"+{digits}"
    return digits


_PHONE_LEAD_RE = re.compile(r"\+?[\d(][\d().\- \t]*")


def labeled_phone(raw: str) -> str | None:
    """Phone from a labeled value; digits in trailing notes ("after 5pm") are ignored."""
    lead = _PHONE_LEAD_RE.match(raw.strip())
    if lead and lead.group(0).startswith("+"):
        return normalize_phone(lead.group(0))
    return find_phone(raw) or (normalize_phone(lead.group(0)) if lead else None)


def first_email(text: str) -> str | None:
    match = _EMAIL_RE.search(text)
    if not match:
        return None
    return match.group(1).lower()


# ---- Labeled rules ----

# a label starts its line (after optional bullet marks) or follows a field separator,
# so "Email address:" is never read as an "address:" label
_LABEL_TEMPLATE = (
    r"(?im)(?:^|[|;,])[ \t*>\u2022-]*(?:{labels})[ \t]*[:\-][ \t]*(?P<value>[^\n{stop}]+)"
)


def _label_alternation(labels: tuple[str, ...]) -> str:
    # longest first so "phone number" wins over "phone"
    ordered = sorted(labels, key=len, reverse=True)
    return "|".join(re.escape(label).replace(r"\ ", r"[ \t]+") for label in ordered)


@dataclass(frozen=True)
class FieldRule:
    field: str
    labels: tuple[str, ...]
    stop: str = ""
    post: Callable[[str], str | None] = clean_value
    pattern: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        compiled = re.compile(
            _LABEL_TEMPLATE.format(labels=_label_alternation(self.labels), stop=re.escape(self.stop))
        )
        object.__setattr__(self, "pattern", compiled)

    def search(self, text: str) -> str | None:
        """First labeled value for this field, post-processed; None when absent or rejected."""
        match = self.pattern.search(text)
        if not match:
            return None
        return self.post(match.group("value"))


FIELD_RULES: tuple[FieldRule, ...] = (
    FieldRule(
        field="customer_name",
        labels=("customer name", "contact name", "full name", "name", "customer", "client"),
        stop=",;|<(",
        post=clean_name,
    ),
    FieldRule(
        field="phone",
        labels=("phone number", "phone", "telephone", "tel", "cell", "mobile"),
        stop=",;|",
        post=labeled_phone,
    ),
    FieldRule(
        field="email",
        labels=("email address", "email", "e-mail"),
        post=first_email,
    ),
    FieldRule(
        field="address",
        labels=("service address", "address", "location"),
        stop="|",
    ),
    FieldRule(
        field="service",
        labels=("service requested", "service", "work", "job"),
        stop="|",
    ),
    FieldRule(
        field="requested_date",
        labels=("preferred date", "requested date", "date", "scheduled", "appointment"),
        stop="|",
    ),
    FieldRule(
        field="notes",
        labels=("special instructions", "notes", "comments"),
    ),
)


# ---- Shape rules (no label) ----

_STREET_SUFFIXES = (
    "Road|Rd|Street|St|Avenue|Ave|Lane|Ln|Drive|Dr|Boulevard|Blvd|Highway|Hwy|"
    "Court|Ct|Circle|Cir|Place|Pl|Terrace|Ter|Way"
)

_ADDRESS_RE = re.compile(
    r"\b\d{1,6}[ \t]+(?:(?!\d+[ \t])[A-Za-z0-9.'#-]+[ \t]+){0,5}?"
    rf"(?:{_STREET_SUFFIXES})\b\.?"
    r"(?:,[ \t]*[A-Z][A-Za-z ]+(?:,[ \t]*[A-Z]{2})?(?:[ \t]+\d{5}(?:-\d{4})?)?)?"
)

_PHONE_RE = re.compile(r"(?<![\w+])(?:\+?1[-. ]?)?\(?\d{3}\)?[-. ]?\d{3}[-. ]?\d{4}(?!\w)")

_NAME_INTRO_RE = re.compile(r"(?i:\bmy name is)[ \t]+([A-Z][a-z'\-]+(?:[ \t]+[A-Z][a-z'\-]+){0,3})")

_NAME_SIGNOFF_RE = re.compile(
    r"(?im)^(?:thanks|thank you|regards|best regards|kind regards|best|cheers|sincerely),?[ \t]*\n+"
    r"(?-i:([A-Z][a-z'\-]+(?:[ \t]+[A-Z][a-z'\-]+){0,2}))[ \t]*$"
)

SERVICE_VOCABULARY: dict[str, str] = {
    "solar panel cleaning": "Solar Panel Cleaning",
    "skylight cleaning": "Skylight Cleaning",
    "pressure washing": "Pressure Washing",
    "power washing": "Pressure Washing",
    "gutter cleaning": "Gutter Cleaning",
    "screen repair": "Screen Repair",
    "window washing": "Window Cleaning",
    "window cleaning": "Window Cleaning",
}

_MONTHS = (
    r"Jan(?:uary)?|Feb(?:ruary)?|Mar(?:ch)?|Apr(?:il)?|May|June?|July?|Aug(?:ust)?|"
    r"Sep(?:t(?:ember)?)?|Oct(?:ober)?|Nov(?:ember)?|Dec(?:ember)?"
)
_WEEKDAYS = r"Mon(?:day)?|Tue(?:s(?:day)?)?|Wed(?:nesday)?|Thu(?:rs(?:day)?)?|Fri(?:day)?|Sat(?:urday)?|Sun(?:day)?"

_DATE_RES: tuple[re.Pattern[str], ...] = (
    re.compile(
        rf"\b(?:(?:{_WEEKDAYS}),?[ \t]+)?(?:{_MONTHS})\.?[ \t]+\d{{1,2}}(?:st|nd|rd|th)?(?:,?[ \t]+\d{{4}})?\b",
        re.IGNORECASE,
    ),
    re.compile(r"\b\d{4}-\d{2}-\d{2}\b"),
    re.compile(r"(?<![\d/])\d{1,2}/\d{1,2}(?:/\d{2,4})?(?![\d/])"),
)


def find_address(text: str) -> str | None:
    match = _ADDRESS_RE.search(text)
    return clean_value(match.group(0)) if match else None


def find_phone(text: str) -> str | None:
    for match in _PHONE_RE.finditer(text):
        phone = normalize_phone(match.group(0))
        if phone:
            return phone
    return None


def find_name(text: str) -> str | None:
    match = _NAME_INTRO_RE.search(text) or _NAME_SIGNOFF_RE.search(text)
    return clean_name(match.group(1)) if match else None


def find_service(text: str) -> str | None:
    lowered = text.lower()
    hits = [(lowered.find(term), label) for term, label in SERVICE_VOCABULARY.items() if term in lowered]
    if not hits:
        return None
    return min(hits)[1]


def _plausible_numeric_date(value: str) -> bool:
    parts = [int(p) for p in re.split(r"[-/]", value)]
    if "-" in value:
        _, month, day = parts
    else:
        month, day = parts[0], parts[1]
    return 1 <= month <= 12 and 1 <= day <= 31


def find_dates(text: str) -> list[str]:
    """All date-shaped spans in order of appearance, de-duplicated."""
    spans: list[tuple[int, int, str]] = []
    for idx, pattern in enumerate(_DATE_RES):
        for match in pattern.finditer(text):
            value = match.group(0).strip()
            if idx > 0 and not _plausible_numeric_date(value):
                continue
            spans.append((match.start(), match.end(), value))
    spans.sort()

    found: list[str] = []
    last_end = -1
    for start, end, value in spans:
        if start < last_end:
            continue
        last_end = end
        if value not in found:
            found.append(value)
    return found


def find_date(text: str) -> str | None:
    dates = find_dates(text)
    return dates[0] if dates else None


SHAPE_RULES: dict[str, Callable[[str], str | None]] = {
    "customer_name": find_name,
    "phone": find_phone,
    "email": first_email,
    "address": find_address,
    "service": find_service,
    "requested_date": find_date,
}


# ---- Sender header ----

_ANGLE_ADDR_RE = re.compile(r"<\s*([^<>\s]+@[^<>\s]+)\s*>")


def split_sender(sender: str | None) -> tuple[str | None, str | None]:
    """Split ``"Display Name" <addr@host>`` into (display name, address)."""
    if not sender or not sender.strip():
        return None, None

    candidate = sender.strip()
    angle = _ANGLE_ADDR_RE.search(candidate)
    if angle:
        address = first_email(angle.group(1))
        display = candidate[: angle.start()]
    else:
        address = first_email(candidate)
        display = "" if address else candidate

    display = display.strip().strip('"').strip("'")
    display = re.sub(r"\s+", " ", display).strip()
    if not display or _EMAIL_RE.fullmatch(display):
        return None, address
    return display, address


# ---- Classification vocabularies ----

ESTIMATE_TERMS: tuple[str, ...] = ("estimate", "quote", "price")
URGENCY_TERMS: tuple[str, ...] = (
    "urgent",
    "asap",
    "as soon as possible",
    "today",
    "tomorrow",
    "emergency",
)


def mentions_any(text: str, terms: tuple[str, ...]) -> bool:
    lowered = text.lower()
    return any(term in lowered for term in terms)


def needs_estimate(subject: str, body: str) -> bool:
    return mentions_any(subject, ESTIMATE_TERMS) or mentions_any(body, ESTIMATE_TERMS)


def is_urgent(body: str) -> bool:
    return mentions_any(body, URGENCY_TERMS)


# ---- Confidence ----

CONFIDENCE_WEIGHTS: dict[str, float] = {
    "customer_name": 0.3,
    "address": 0.4,
    "phone": 0.3,
}

LLM_REQUIRED_FIELDS: tuple[str, ...] = (
    "customerName",
    "phone",
    "email",
    "address",
    "service",
    "preferredDate",
)
