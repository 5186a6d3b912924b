from __future__ import annotations

import base64
from typing import Any

from bs4 import BeautifulSoup

from wc_dispatch.parsing.contracts import RawEmail

_BLOCK_TAGS = ["p", "div", "li", "tr", "br", "h1", "h2", "h3", "h4", "h5", "h6"]


def safe_base64url_decode(data: str) -> bytes:
    if not isinstance(data, str):
        raise ValueError("invalid base64url data: expected string")

    normalized = data.strip()
    if normalized == "":
        return b""

    padding = (-len(normalized)) % 4
    normalized += "=" * padding

    try:
        return base64.urlsafe_b64decode(normalized)
    except (ValueError, TypeError) as exc:
        context = data[:24].replace("\n", " ").replace("\r", " ")
        raise ValueError(f"invalid base64url data near {context!r}") from exc


def html_to_text(markup: str) -> str:
    """HTML -> text: drop script/style, one line per block element.

    Inline tags stay on their line so ``<b>Name:</b> Alice`` keeps label and
    value together; unclosed ``<p>`` still starts a new line.
    """
    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup(["script", "style", "head"]):
        tag.decompose()
    for tag in soup.find_all(_BLOCK_TAGS):
        tag.insert_before("\n")
        tag.insert_after("\n")

    text = soup.get_text()
    lines = [" ".join(line.split()) for line in text.splitlines()]
    return "\n".join(line for line in lines if line)


def extract_parts(payload: dict[str, Any]) -> list[dict[str, Any]]:
    if not isinstance(payload, dict):
        raise ValueError("malformed payload: expected dict")

    parts: list[dict[str, Any]] = []

    def walk(part: dict[str, Any]) -> None:
        if not isinstance(part, dict):
            raise ValueError("malformed MIME part: expected dict")

        parts.append(part)

        children = part.get("parts")
        if children is None:
            return
        if not isinstance(children, list):
            raise ValueError("malformed MIME structure: parts must be a list")

        for child in children:
            if not isinstance(child, dict):
                raise ValueError("malformed MIME structure: part entry must be a dict")
            walk(child)

    walk(payload)
    return parts


def decode_message_bodies(message: dict[str, Any]) -> dict[str, Any]:
    if not isinstance(message, dict):
        raise ValueError("malformed message: expected dict")

    warnings: list[str] = []

    payload = message.get("payload")
    if payload is None:
        return {
            "text_plain": None,
            "text_html": None,
            "chosen": "none",
            "text": "",
            "warnings": warnings,
        }
    if not isinstance(payload, dict):
        raise ValueError("malformed message payload: expected dict")

    plain_chunks: list[str] = []
    html_chunks: list[str] = []

    for part in extract_parts(payload):
        body = part.get("body")
        if body is None:
            continue
        if not isinstance(body, dict):
            raise ValueError("malformed body: expected dict")

        data = body.get("data")
        if data is None:
            continue
        if not isinstance(data, str):
            raise ValueError("malformed body data: expected string")

        mime_type = str(part.get("mimeType") or "")

        try:
            text = safe_base64url_decode(data).decode("utf-8", errors="replace")
        except ValueError as exc:
            warnings.append(str(exc))
            continue

        if mime_type == "text/plain":
            plain_chunks.append(text)
        elif mime_type == "text/html":
            html_chunks.append(text)
        elif mime_type == "":
            # top-level payload.body.data can come without an explicit mimeType
            plain_chunks.append(text)

    text_plain = "\n\n".join(plain_chunks) if plain_chunks else None
    text_html = "\n\n".join(html_chunks) if html_chunks else None

    plain_non_empty = bool(text_plain and text_plain.strip())
    html_non_empty = bool(text_html and text_html.strip())

    if plain_non_empty:
        chosen = "plain"
        text = text_plain or ""
    elif html_non_empty:
        chosen = "html"
        text = html_to_text(text_html or "")
    else:
        chosen = "none"
        text = ""

    return {
        "text_plain": text_plain,
        "text_html": text_html,
        "chosen": chosen,
        "text": text,
        "warnings": warnings,
    }


def header_value(message: dict[str, Any], name: str) -> str:
    payload = message.get("payload")
    if not isinstance(payload, dict):
        return ""

    headers = payload.get("headers")
    if not isinstance(headers, list):
        return ""

    target = name.lower()
    for header in headers:
        if not isinstance(header, dict):
            continue
        h_name = str(header.get("name") or "").strip().lower()
        if h_name == target:
            return str(header.get("value") or "")
    return ""


def to_raw_email(message: dict[str, Any]) -> RawEmail:
    decoded = decode_message_bodies(message)
    return RawEmail(
        id=str(message.get("id") or ""),
        thread_id=str(message.get("threadId") or ""),
        subject=header_value(message, "Subject") or "No Subject",
        sender=header_value(message, "From"),
        received_at=header_value(message, "Date") or str(message.get("internalDate") or ""),
        body_text=str(decoded.get("text") or ""),
    )
