from __future__ import annotations

import base64
import json
from email import message_from_bytes
from email.policy import default as default_policy
from pathlib import Path

import pytest

from fakes import FakeCalendarService, FakeGmailService
from wc_dispatch.calendar_adapter import CalendarAdapter
from wc_dispatch.customer_emails import format_long_date, render_status_email
from wc_dispatch.exceptions import RecordNotFound, ValidationError
from wc_dispatch.gmail_adapter import GmailAdapter
from wc_dispatch.logger import JsonlLogger
from wc_dispatch.notifications import list_notifications
from wc_dispatch.parsing.contracts import RawEmail
from wc_dispatch.parsing.email_parser import parse_email
from wc_dispatch.scheduling import (
    add_team,
    create_job,
    create_job_request,
    dismiss_job_request,
    list_job_requests,
    list_jobs,
    list_scheduled_jobs,
    list_teams,
    schedule_job,
    update_job_status,
)
from wc_dispatch.store import Datastore, json_datastore

BODY = "Name: Alice Smith\nEmail: alice@example.com\nAddress: 12 Oak Ln\nPhone: 555 222 3333"


@pytest.fixture
def store(tmp_path: Path) -> Datastore:
    return json_datastore(tmp_path / "data")


@pytest.fixture
def logger(tmp_path: Path) -> JsonlLogger:
    return JsonlLogger(path=tmp_path / "logs.jsonl", component="test")


def _events(logger: JsonlLogger) -> list[dict]:
    return [json.loads(line) for line in logger.path.read_text(encoding="utf-8").splitlines()]


def _request(store: Datastore, body: str = BODY, message_id: str = "m1") -> dict:
    raw = RawEmail(
        id=message_id,
        thread_id=f"t-{message_id}",
        subject="Window cleaning",
        sender="",
        received_at="2025-05-01T10:00:00Z",
        body_text=body,
    )
    return create_job_request(store, raw, parse_email(body, raw.headers))


def _scheduled(store: Datastore, calendar: CalendarAdapter, **overrides) -> dict:
    req = _request(store)
    kwargs = {
        "job_request_id": req["id"],
        "scheduled_date": "2025-05-03",
        "scheduled_time": "09:30",
        "estimated_duration": "2",
        "assigned_staff": "sam@crew.example",
    }
    kwargs.update(overrides)
    return schedule_job(store, calendar, **kwargs)


# --- teams and team jobs -----------------------------------------------------


def test_teams_sorted_by_name(store: Datastore) -> None:
    add_team(store, name="zeta crew", members=["Sam", " ", "Lee "])
    add_team(store, name="Alpha")

    teams = list_teams(store)

    assert [t["name"] for t in teams] == ["Alpha", "zeta crew"]
    assert teams[1]["members"] == ["Sam", "Lee"]


def test_create_job_validates_and_notifies(store: Datastore) -> None:
    team = add_team(store, name="Crew A")

    with pytest.raises(ValidationError) as e:
        create_job(store, team_id=team["id"], job_name="", date="2025-05-03")
    assert str(e.value) == "Team, job name, and date are required fields"

    with pytest.raises(ValidationError):
        create_job(store, team_id=team["id"], job_name="Gutters", date="05/03/2025")
    with pytest.raises(ValidationError):
        create_job(store, team_id=team["id"], job_name="Gutters", date="2025-05-03", status="done")
    with pytest.raises(RecordNotFound):
        create_job(store, team_id="nope", job_name="Gutters", date="2025-05-03")

    job = create_job(store, team_id=team["id"], job_name="Gutters", date="2025-05-03")

    assert job["status"] == "scheduled"
    assert [n["message"] for n in list_notifications(store)] == ["Gutters scheduled for Crew A"]


def test_list_jobs_by_team_sorted_by_date(store: Datastore) -> None:
    a = add_team(store, name="A")
    b = add_team(store, name="B")
    create_job(store, team_id=a["id"], job_name="late", date="2025-06-01")
    create_job(store, team_id=a["id"], job_name="early", date="2025-05-01")
    create_job(store, team_id=b["id"], job_name="other", date="2025-04-01")

    assert [j["job_name"] for j in list_jobs(store, team_id=a["id"])] == ["early", "late"]
    assert len(list_jobs(store)) == 3


# --- job requests --------------------------------------------------------------


def test_job_request_maps_extraction(store: Datastore) -> None:
    req = _request(store)

    assert req["status"] == "pending"
    assert req["email_id"] == "m1"
    assert req["customer_name"] == "Alice Smith"
    assert req["customer_email"] == "alice@example.com"
    assert req["confidence_score"] == 1.0
    assert req["alternative_dates"] == []


def test_request_status_filter(store: Datastore) -> None:
    keep = _request(store, message_id="m1")
    gone = _request(store, message_id="m2")
    dismiss_job_request(store, gone["id"])

    assert [r["id"] for r in list_job_requests(store, "pending")] == [keep["id"]]
    assert [r["id"] for r in list_job_requests(store, "dismissed")] == [gone["id"]]
    with pytest.raises(ValidationError):
        list_job_requests(store, "archived")


# --- calendar-backed jobs ------------------------------------------------------


def test_schedule_job_creates_event_and_marks_request(store: Datastore, logger: JsonlLogger) -> None:
    svc = FakeCalendarService()
    calendar = CalendarAdapter(svc, logger)

    job = _scheduled(store, calendar, job_details="Ladder needed", logger=logger)

    (event,) = svc.inserted
    assert event["summary"] == "Window Cleaning - Alice Smith"
    assert event["location"] == "12 Oak Ln"
    assert event["start"]["dateTime"] == "2025-05-03T09:30:00"
    assert event["end"]["dateTime"] == "2025-05-03T11:30:00"
    assert event["attendees"] == [{"email": "sam@crew.example"}]
    assert "Additional Details: Ladder needed" in event["description"]

    assert job["calendar_event_id"] == "evt-1"
    assert job["estimated_duration"] == 2.0
    assert store.job_requests.get(job["job_request_id"])["status"] == "scheduled"
    assert list_notifications(store)[0]["message"] == (
        "Window cleaning for Alice Smith scheduled on 2025-05-03 at 09:30"
    )
    assert "job_scheduled" in [e["event"] for e in _events(logger)]


def test_staff_name_is_not_invited(store: Datastore, logger: JsonlLogger) -> None:
    svc = FakeCalendarService()
    _scheduled(store, CalendarAdapter(svc, logger), assigned_staff="Sam")

    assert svc.inserted[0]["attendees"] == []


@pytest.mark.parametrize(
    "overrides",
    [
        {"scheduled_date": ""},
        {"scheduled_time": "9:30am"},
        {"scheduled_time": "24:00"},
        {"scheduled_date": "2025-13-01"},
        {"estimated_duration": "zero"},
        {"estimated_duration": "-1"},
    ],
)
def test_schedule_job_rejects_bad_input(
    store: Datastore, logger: JsonlLogger, overrides: dict[str, str]
) -> None:
    svc = FakeCalendarService()

    with pytest.raises(ValidationError):
        _scheduled(store, CalendarAdapter(svc, logger), **overrides)

    assert svc.inserted == []
    assert store.scheduled_jobs.list() == []


def test_calendar_failure_writes_nothing(store: Datastore, logger: JsonlLogger) -> None:
    svc = FakeCalendarService()
    svc.insert_error = RuntimeError("boom")

    with pytest.raises(RuntimeError):
        _scheduled(store, CalendarAdapter(svc, logger))

    assert store.scheduled_jobs.list() == []
    assert store.job_requests.list()[0]["status"] == "pending"


def test_invalid_status_rejected(store: Datastore, logger: JsonlLogger) -> None:
    job = _scheduled(store, CalendarAdapter(FakeCalendarService(), logger))

    with pytest.raises(ValidationError) as e:
        update_job_status(store, None, job_id=job["id"], new_status="done")

    assert str(e.value) == "Invalid status value"


def test_notes_are_appended(store: Datastore, logger: JsonlLogger) -> None:
    job = _scheduled(store, CalendarAdapter(FakeCalendarService(), logger))

    update_job_status(store, None, job_id=job["id"], new_status="in_progress", notes="on site")
    updated = update_job_status(store, None, job_id=job["id"], new_status="completed", notes="done")

    lines = updated["notes"].split("\n")
    assert len(lines) == 2
    assert lines[0].endswith(": on site")
    assert lines[1].endswith(": done")
    assert updated["status"] == "completed"


def test_reschedule_patches_event(store: Datastore, logger: JsonlLogger) -> None:
    svc = FakeCalendarService()
    calendar = CalendarAdapter(svc, logger)
    job = _scheduled(store, calendar)

    updated = update_job_status(
        store,
        None,
        job_id=job["id"],
        new_status="rescheduled",
        calendar=calendar,
        new_date="2025-05-10",
        time_zone="America/Chicago",
    )

    assert updated["scheduled_date"] == "2025-05-10"
    assert updated["scheduled_time"] == "09:30"
    (event_id, patch) = svc.patched[0]
    assert event_id == "evt-1"
    assert patch["start"] == {"dateTime": "2025-05-10T09:30:00", "timeZone": "America/Chicago"}
    assert patch["end"]["dateTime"] == "2025-05-10T11:30:00"


def test_cancel_patches_event_status(store: Datastore, logger: JsonlLogger) -> None:
    svc = FakeCalendarService()
    calendar = CalendarAdapter(svc, logger)
    job = _scheduled(store, calendar)

    update_job_status(store, None, job_id=job["id"], new_status="cancelled", calendar=calendar)

    assert svc.patched == [("evt-1", {"status": "cancelled"})]


def test_confirmed_status_emails_customer(store: Datastore, logger: JsonlLogger) -> None:
    gmail = FakeGmailService()
    job = _scheduled(store, CalendarAdapter(FakeCalendarService(), logger))

    update_job_status(
        store,
        GmailAdapter(gmail, logger),
        job_id=job["id"],
        new_status="confirmed",
        business_name="Sparkle",
        sender="office@sparkle.example",
        logger=logger,
    )

    (sent,) = gmail.sent
    msg = message_from_bytes(base64.urlsafe_b64decode(sent["raw"]), policy=default_policy)
    assert msg["To"] == "alice@example.com"
    assert msg["Subject"] == "Job Confirmed: Window Cleaning Service"
    assert "office@sparkle.example" in msg["From"]
    html = msg.get_body(preferencelist=("html",)).get_content()
    assert "Saturday, May 3, 2025" in html
    assert "customer_email_sent" in [e["event"] for e in _events(logger)]


def test_send_failure_is_logged_not_raised(store: Datastore, logger: JsonlLogger) -> None:
    gmail = FakeGmailService()
    gmail.send_error = RuntimeError("quota")
    job = _scheduled(store, CalendarAdapter(FakeCalendarService(), logger))

    updated = update_job_status(
        store, GmailAdapter(gmail, logger), job_id=job["id"], new_status="completed", logger=logger
    )

    assert updated["status"] == "completed"
    assert list_scheduled_jobs(store, "completed")[0]["id"] == job["id"]
    failed = [e for e in _events(logger) if e["event"] == "customer_email_failed"]
    assert failed and failed[0]["level"] == "ERROR"


def test_no_email_for_quiet_status_or_opt_out(store: Datastore, logger: JsonlLogger) -> None:
    gmail = FakeGmailService()
    mail = GmailAdapter(gmail, logger)
    job = _scheduled(store, CalendarAdapter(FakeCalendarService(), logger))

    update_job_status(store, mail, job_id=job["id"], new_status="in_progress")
    update_job_status(store, mail, job_id=job["id"], new_status="completed", notify_customer=False)

    assert gmail.sent == []


def test_missing_customer_email_is_skipped(store: Datastore, logger: JsonlLogger) -> None:
    gmail = FakeGmailService()
    svc = FakeCalendarService()
    req = _request(store, body="Address: 12 Oak Ln", message_id="m9")
    job = schedule_job(
        store,
        CalendarAdapter(svc, logger),
        job_request_id=req["id"],
        scheduled_date="2025-05-03",
        scheduled_time="08:00",
        estimated_duration=1,
    )

    update_job_status(
        store, GmailAdapter(gmail, logger), job_id=job["id"], new_status="confirmed", logger=logger
    )

    assert gmail.sent == []
    assert svc.inserted[0]["summary"] == "Window Cleaning - Customer"
    assert "customer_email_skipped" in [e["event"] for e in _events(logger)]


# --- customer email templates --------------------------------------------------


def test_render_status_email_escapes_and_signs_off() -> None:
    email = render_status_email(
        "rescheduled",
        customer_name="<Bob>",
        business_name="Shine & Co",
        scheduled_date="2025-05-10",
        scheduled_time="14:00",
    )

    assert email is not None
    assert email.subject == "Job Rescheduled: Window Cleaning Service"
    assert "&lt;Bob&gt;" in email.html
    assert "Saturday, May 10, 2025" in email.html
    assert email.html.endswith("<p>Best regards,<br>Shine &amp; Co Team</p>")


def test_render_status_email_quiet_statuses() -> None:
    assert render_status_email("in_progress", customer_name="A", business_name="B") is None
    assert format_long_date("next week") == "next week"


def test_schedule_job_rejects_unknown_initial_status(store: Datastore, logger: JsonlLogger) -> None:
    svc = FakeCalendarService()

    with pytest.raises(ValidationError) as e:
        _scheduled(store, CalendarAdapter(svc, logger), status="booked")

    assert e.value.field == "status"
    assert svc.inserted == []
    assert store.scheduled_jobs.list() == []


def test_schedule_job_accepts_update_status_at_creation(store: Datastore, logger: JsonlLogger) -> None:
    job = _scheduled(store, CalendarAdapter(FakeCalendarService(), logger), status="confirmed")

    assert job["status"] == "confirmed"
