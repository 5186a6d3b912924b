from __future__ import annotations

from typing import Any

from wc_dispatch.exceptions import ValidationError
from wc_dispatch.store import Datastore, iso_now, newest_first


def create_notification(store: Datastore, message: str) -> dict[str, Any]:
    text = (message or "").strip()
    if not text:
        raise ValidationError("Notification message is required", field="message")
    return store.notifications.insert({"message": text, "read": False, "created_at": iso_now()})


def list_notifications(store: Datastore, *, unread_only: bool = False) -> list[dict[str, Any]]:
    rows = newest_first(store.notifications.list())
    if unread_only:
        rows = [r for r in rows if not r.get("read")]
    return rows


def mark_read(store: Datastore, notification_id: str) -> dict[str, Any]:
    return store.notifications.update(notification_id, {"read": True})
