from __future__ import annotations

from pathlib import Path

import pytest

from wc_dispatch.estimates import create_estimate, get_estimate, list_estimates, update_estimate
from wc_dispatch.exceptions import RecordNotFound, ValidationError
from wc_dispatch.notifications import list_notifications
from wc_dispatch.store import Datastore, json_datastore


@pytest.fixture
def store(tmp_path: Path) -> Datastore:
    return json_datastore(tmp_path / "data")


@pytest.mark.parametrize(
    "kwargs",
    [
        {"name": "", "address": "1 Main St", "amount": "100"},
        {"name": "Alice", "address": "  ", "amount": "100"},
        {"name": "Alice", "address": "1 Main St", "amount": None},
    ],
)
def test_required_fields(store: Datastore, kwargs: dict[str, str]) -> None:
    with pytest.raises(ValidationError) as e:
        create_estimate(store, **kwargs)

    assert str(e.value) == "Name, address, and amount are required fields"
    assert store.estimates.list() == []
    assert list_notifications(store) == []


def test_create_sets_pending_and_notifies(store: Datastore) -> None:
    est = create_estimate(store, name="Alice", address="1 Main St", amount="$240", details="2 floors")

    assert est["status"] == "pending"
    assert est["amount"] == 240.0
    assert est["created_at"].endswith("Z")
    assert [n["message"] for n in list_notifications(store)] == ["Estimate created for Alice"]


def test_get_missing_estimate(store: Datastore) -> None:
    with pytest.raises(RecordNotFound) as e:
        get_estimate(store, "missing")

    assert str(e.value) == "Estimate not found"


def test_update_editable_fields(store: Datastore) -> None:
    est = create_estimate(store, name="Alice", address="1 Main St", amount=100)

    updated = update_estimate(store, est["id"], {"amount": "125.5", "status": "accepted"})

    assert updated["amount"] == 125.5
    assert updated["status"] == "accepted"
    assert get_estimate(store, est["id"])["status"] == "accepted"


def test_update_rejects_unknown_fields(store: Datastore) -> None:
    est = create_estimate(store, name="Alice", address="1 Main St", amount=100)

    with pytest.raises(ValidationError) as e:
        update_estimate(store, est["id"], {"id": "other", "created_at": "x"})

    assert "created_at, id" in str(e.value)


def test_update_missing_estimate(store: Datastore) -> None:
    with pytest.raises(RecordNotFound):
        update_estimate(store, "missing", {"status": "accepted"})


def test_list_newest_first(store: Datastore, monkeypatch: pytest.MonkeyPatch) -> None:
    stamps = iter(["2025-01-01T00:00:00Z", "2025-02-01T00:00:00Z"] * 2)
    monkeypatch.setattr("wc_dispatch.estimates.iso_now", lambda: next(stamps))

    create_estimate(store, name="Old", address="a", amount=1)
    create_estimate(store, name="New", address="b", amount=2)

    assert [e["name"] for e in list_estimates(store)] == ["New", "Old"]
