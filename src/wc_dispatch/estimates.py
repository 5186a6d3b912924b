from __future__ import annotations

from typing import Any

from wc_dispatch.exceptions import RecordNotFound, ValidationError
from wc_dispatch.notifications import create_notification
from wc_dispatch.store import Datastore, iso_now, newest_first

EDITABLE_FIELDS = ("name", "address", "details", "amount", "status")


def _blank(v: Any) -> bool:
    return v is None or (isinstance(v, str) and not v.strip())


def create_estimate(
    store: Datastore,
    *,
    name: str,
    address: str,
    amount: Any,
    details: str = "",
) -> dict[str, Any]:
    if _blank(name) or _blank(address) or _blank(amount):
        raise ValidationError("Name, address, and amount are required fields")

    estimate = store.estimates.insert(
        {
            "name": name,
            "address": address,
            "details": details,
            "amount": amount,
            "status": "pending",
            "created_at": iso_now(),
        }
    )
    create_notification(store, f"Estimate created for {estimate['name']}")
    return estimate


def list_estimates(store: Datastore) -> list[dict[str, Any]]:
    return newest_first(store.estimates.list())


def get_estimate(store: Datastore, estimate_id: str) -> dict[str, Any]:
    try:
        return store.estimates.get(estimate_id)
    except RecordNotFound as exc:
        raise RecordNotFound("estimates", estimate_id, "Estimate not found") from exc


def update_estimate(store: Datastore, estimate_id: str, updates: dict[str, Any]) -> dict[str, Any]:
    unknown = sorted(set(updates) - set(EDITABLE_FIELDS))
    if unknown:
        raise ValidationError(
            f"Cannot update estimate field(s): {', '.join(unknown)}", field=unknown[0]
        )
    get_estimate(store, estimate_id)
    return store.estimates.update(estimate_id, updates)
