from __future__ import annotations

import base64
from email.message import EmailMessage
from typing import Any

from wc_dispatch.clients import GmailService
from wc_dispatch.gmail_decode import to_raw_email
from wc_dispatch.logger import JsonlLogger
from wc_dispatch.parsing.contracts import RawEmail

UNREAD_QUERY = "is:unread -category:promotions -category:social"


def _internal_date_ms(message: dict[str, Any]) -> int:
    raw = str(message.get("internalDate") or "").strip()
    return int(raw) if raw.isdigit() else 0


class GmailAdapter:
    def __init__(self, service: GmailService, logger: JsonlLogger, run_id: str = "") -> None:
        self._service = service
        self._logger = logger
        self._run_id = run_id

    def search_message_ids(self, query: str, max_results: int = 50) -> list[str]:
        self._logger.info(
            "gmail_search_start",
            run_id=self._run_id,
            query=query,
            max_results=max_results,
        )

        try:
            response = (
                self._service.users()
                .messages()
                .list(userId="me", q=query, maxResults=max_results)
                .execute()
            )
        except Exception as exc:
            raise RuntimeError("Gmail search failed while listing message ids") from exc

        messages = response.get("messages", []) if isinstance(response, dict) else []
        message_ids = [
            str(message["id"])
            for message in messages
            if isinstance(message, dict) and "id" in message
        ]

        self._logger.info(
            "gmail_search_ok",
            run_id=self._run_id,
            query=query,
            count=len(message_ids),
        )
        return message_ids

    def fetch_messages(self, message_ids: list[str], format: str = "full") -> list[dict[str, Any]]:
        if not message_ids:
            return []

        self._logger.info("gmail_fetch_start", run_id=self._run_id, count=len(message_ids))

        messages: list[dict[str, Any]] = []
        try:
            for message_id in message_ids:
                message = (
                    self._service.users()
                    .messages()
                    .get(userId="me", id=message_id, format=format)
                    .execute()
                )
                if isinstance(message, dict):
                    messages.append(message)
                else:
                    messages.append({"id": message_id, "raw": message})
        except Exception as exc:
            raise RuntimeError("Gmail fetch failed while retrieving message details") from exc

        self._logger.info("gmail_fetch_ok", run_id=self._run_id, count=len(messages))
        return messages

    def get_raw_email(self, message_id: str) -> RawEmail:
        messages = self.fetch_messages([message_id])
        return to_raw_email(messages[0])

    def list_unread(self, max_results: int = 10, query: str = UNREAD_QUERY) -> list[RawEmail]:
        ids = self.search_message_ids(query=query, max_results=max_results)
        messages = sorted(self.fetch_messages(ids), key=_internal_date_ms, reverse=True)
        return [to_raw_email(m) for m in messages]

    def send_html(self, *, to: str, subject: str, html: str, sender: str | None = None) -> str:
        msg = EmailMessage()
        msg["To"] = to
        msg["Subject"] = subject
        if sender:
            msg["From"] = sender
        msg.set_content("This message requires an HTML-capable mail client.")
        msg.add_alternative(html, subtype="html")

        raw = base64.urlsafe_b64encode(msg.as_bytes()).decode("ascii")
        self._logger.info("gmail_send_start", run_id=self._run_id, to=to, subject=subject)
        try:
            sent = self._service.users().messages().send(userId="me", body={"raw": raw}).execute()
        except Exception as exc:
            raise RuntimeError(f"Gmail send failed for recipient {to}") from exc

        message_id = str(sent.get("id") or "") if isinstance(sent, dict) else ""
        self._logger.info("gmail_send_ok", run_id=self._run_id, to=to, message_id=message_id)
        return message_id
