"""Manual operator overrides.

An override is a logged intent ("reassign this job") plus a notification for
whoever is watching the dashboard. Nothing here mutates the target record.
"""

from __future__ import annotations

from typing import Any

from wc_dispatch.exceptions import ValidationError
from wc_dispatch.notifications import create_notification
from wc_dispatch.store import Datastore, iso_now, newest_first

OVERRIDE_ACTIONS: dict[str, str] = {
    "job-reassign": "Reassign Job to Different Team",
    "estimate-adjust": "Adjust Estimate Amount",
    "schedule-change": "Change Job Schedule",
    "cancel-job": "Cancel Scheduled Job",
}


def trigger_override(
    store: Datastore,
    action_id: str,
    *,
    target_id: str | None = None,
    note: str = "",
) -> dict[str, Any]:
    label = OVERRIDE_ACTIONS.get(action_id)
    if label is None:
        raise ValidationError(f"Unknown override action: {action_id}", field="action")

    record = store.overrides.insert(
        {
            "action": action_id,
            "label": label,
            "target_id": target_id,
            "note": note,
            "created_at": iso_now(),
        }
    )
    create_notification(store, f'Override action "{label}" triggered')
    return record


def override_history(store: Datastore) -> list[dict[str, Any]]:
    return newest_first(store.overrides.list())
