from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from typing import Any

from wc_dispatch.calendar_adapter import CalendarAdapter
from wc_dispatch.config import DEFAULT_BUSINESS_NAME, DEFAULT_TIMEZONE
from wc_dispatch.customer_emails import render_status_email
from wc_dispatch.exceptions import ValidationError
from wc_dispatch.gmail_adapter import GmailAdapter
from wc_dispatch.logger import JsonlLogger
from wc_dispatch.notifications import create_notification
from wc_dispatch.parsing.contracts import Extraction, RawEmail
from wc_dispatch.store import Datastore, iso_now, newest_first

JOB_STATUSES = ("scheduled", "in-progress", "completed", "cancelled")
REQUEST_STATUSES = ("pending", "scheduled", "dismissed")
SCHEDULED_JOB_STATUSES = (
    "pending",
    "confirmed",
    "in_progress",
    "completed",
    "cancelled",
    "rescheduled",
)
# "scheduled" is the status a job is created with; updates use the six above
SCHEDULE_STATUSES = ("scheduled", *SCHEDULED_JOB_STATUSES)

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def _blank(v: Any) -> bool:
    return v is None or (isinstance(v, str) and not v.strip())


def _parse_date(value: str, field: str) -> date:
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as exc:
        raise ValidationError(f"{field} must be YYYY-MM-DD, got {value!r}", field=field) from exc


def _parse_time(value: str, field: str) -> tuple[int, int]:
    m = _TIME_RE.match(str(value).strip())
    if not m:
        raise ValidationError(f"{field} must be HH:MM (24h), got {value!r}", field=field)
    return int(m.group(1)), int(m.group(2))


def _parse_duration(value: Any) -> float:
    try:
        hours = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError("estimated_duration must be a number of hours", field="estimated_duration") from exc
    if hours <= 0:
        raise ValidationError("estimated_duration must be positive", field="estimated_duration")
    return hours


def _event_window(scheduled_date: str, scheduled_time: str, duration_h: float) -> tuple[datetime, datetime]:
    d = _parse_date(scheduled_date, "scheduled_date")
    hh, mm = _parse_time(scheduled_time, "scheduled_time")
    start = datetime(d.year, d.month, d.day, hh, mm)
    return start, start + timedelta(hours=duration_h)


# --- teams -------------------------------------------------------------------


def list_teams(store: Datastore) -> list[dict[str, Any]]:
    return sorted(store.teams.list(), key=lambda t: str(t.get("name") or "").lower())


def add_team(store: Datastore, *, name: str, members: list[str] | None = None) -> dict[str, Any]:
    if _blank(name):
        raise ValidationError("Team name is required", field="name")
    cleaned = [m.strip() for m in members or [] if m and m.strip()]
    return store.teams.insert({"name": name, "members": cleaned})


# --- team jobs ---------------------------------------------------------------


def create_job(
    store: Datastore,
    *,
    team_id: str,
    job_name: str,
    date: str,
    status: str = "scheduled",
) -> dict[str, Any]:
    if _blank(team_id) or _blank(job_name) or _blank(date):
        raise ValidationError("Team, job name, and date are required fields")
    if status not in JOB_STATUSES:
        raise ValidationError(f"Invalid job status: {status}", field="status")
    _parse_date(date, "date")

    team = store.teams.get(team_id)
    job = store.jobs.insert(
        {
            "team_id": team_id,
            "job_name": job_name,
            "date": date,
            "status": status,
            "created_at": iso_now(),
        }
    )
    create_notification(store, f"{job['job_name']} scheduled for {team.get('name')}")
    return job


def list_jobs(store: Datastore, *, team_id: str | None = None) -> list[dict[str, Any]]:
    rows = store.jobs.list()
    if team_id:
        rows = [r for r in rows if r.get("team_id") == team_id]
    return sorted(rows, key=lambda r: str(r.get("date") or ""))


# --- job requests ------------------------------------------------------------


def create_job_request(store: Datastore, raw_email: RawEmail, extraction: Extraction) -> dict[str, Any]:
    f = extraction.fields
    return store.job_requests.insert(
        {
            "email_id": raw_email.id,
            "customer_name": f.customer_name,
            "customer_email": f.email,
            "phone": f.phone,
            "service_type": f.service,
            "address": f.address,
            "requested_date": f.requested_date,
            "alternative_dates": list(f.alternative_dates),
            "special_instructions": f.notes,
            "needs_estimate": f.needs_estimate,
            "urgency": extraction.urgency,
            "request_type": extraction.request_type,
            "confidence_score": extraction.confidence,
            "status": "pending",
            "email_subject": raw_email.subject,
            "email_body": raw_email.body_text,
            "created_at": iso_now(),
        }
    )


def list_job_requests(store: Datastore, status: str | None = None) -> list[dict[str, Any]]:
    if status is not None and status not in REQUEST_STATUSES:
        raise ValidationError(f"Invalid request status: {status}", field="status")
    rows = newest_first(store.job_requests.list())
    if status is not None:
        rows = [r for r in rows if r.get("status") == status]
    return rows


def dismiss_job_request(store: Datastore, job_request_id: str) -> dict[str, Any]:
    return store.job_requests.update(job_request_id, {"status": "dismissed"})


# --- calendar-backed jobs ----------------------------------------------------


def _event_description(request: dict[str, Any], assigned_staff: str | None, job_details: str | None) -> str:
    lines = [
        f"Service: {request.get('service_type') or 'Not specified'}",
        f"Customer: {request.get('customer_name') or 'Unknown'}",
        f"Email: {request.get('customer_email') or 'Unknown'}",
        f"Special Instructions: {request.get('special_instructions') or 'None'}",
        f"Estimated Size: {request.get('estimated_size') or 'Not specified'}",
        f"Assigned Staff: {assigned_staff or 'TBD'}",
        f"Additional Details: {job_details or 'None'}",
    ]
    return "\n".join(lines)


def schedule_job(
    store: Datastore,
    calendar: CalendarAdapter,
    *,
    job_request_id: str,
    scheduled_date: str,
    scheduled_time: str,
    estimated_duration: Any,
    assigned_staff: str | None = None,
    job_details: str | None = None,
    status: str = "scheduled",
    time_zone: str = DEFAULT_TIMEZONE,
    logger: JsonlLogger | None = None,
) -> dict[str, Any]:
    """Put a pending job request on the calendar and record the scheduled job.

    The event is created first; if Calendar rejects it nothing is written to
    the datastore. Staff are invited only when ``assigned_staff`` is an email.
    """
    if _blank(job_request_id) or _blank(scheduled_date) or _blank(scheduled_time) or _blank(
        estimated_duration
    ):
        raise ValidationError("Missing required job information")
    if status not in SCHEDULE_STATUSES:
        raise ValidationError(f"Invalid job status: {status}", field="status")

    duration_h = _parse_duration(estimated_duration)
    start, end = _event_window(scheduled_date, scheduled_time, duration_h)
    request = store.job_requests.get(job_request_id)
    customer = request.get("customer_name") or "Customer"

    attendees = [assigned_staff] if assigned_staff and "@" in assigned_staff else []
    event = calendar.create_event(
        summary=f"Window Cleaning - {customer}",
        location=request.get("address"),
        description=_event_description(request, assigned_staff, job_details),
        start=start,
        end=end,
        time_zone=time_zone,
        attendees=attendees,
    )

    now = iso_now()
    job = store.scheduled_jobs.insert(
        {
            "job_request_id": job_request_id,
            "scheduled_date": scheduled_date,
            "scheduled_time": scheduled_time,
            "estimated_duration": duration_h,
            "assigned_staff": assigned_staff,
            "calendar_event_id": event.get("id"),
            "status": status,
            "job_details": job_details,
            "notes": "",
            "created_at": now,
            "updated_at": now,
        }
    )
    store.job_requests.update(job_request_id, {"status": "scheduled"})
    create_notification(store, f"Window cleaning for {customer} scheduled on {scheduled_date} at {scheduled_time}")

    if logger:
        logger.info(
            "job_scheduled",
            job_id=job["id"],
            job_request_id=job_request_id,
            calendar_event_id=job.get("calendar_event_id"),
        )
    return job


def list_scheduled_jobs(store: Datastore, status: str | None = None) -> list[dict[str, Any]]:
    rows = store.scheduled_jobs.list()
    if status is not None:
        rows = [r for r in rows if r.get("status") == status]
    return sorted(rows, key=lambda r: (str(r.get("scheduled_date") or ""), str(r.get("scheduled_time") or "")))


def _append_note(existing: str | None, notes: str, ts: str) -> str | None:
    if not notes:
        return existing
    prefix = f"{existing}\n" if existing else ""
    return f"{prefix}{ts}: {notes}"


def update_job_status(
    store: Datastore,
    mail: GmailAdapter | None,
    *,
    job_id: str,
    new_status: str,
    notes: str = "",
    notify_customer: bool = True,
    calendar: CalendarAdapter | None = None,
    new_date: str | None = None,
    new_time: str | None = None,
    time_zone: str = DEFAULT_TIMEZONE,
    business_name: str = DEFAULT_BUSINESS_NAME,
    sender: str | None = None,
    logger: JsonlLogger | None = None,
) -> dict[str, Any]:
    if _blank(job_id) or _blank(new_status):
        raise ValidationError("Missing required information")
    if new_status not in SCHEDULED_JOB_STATUSES:
        raise ValidationError("Invalid status value", field="new_status")

    job = store.scheduled_jobs.get(job_id)
    request = store.job_requests.get(str(job.get("job_request_id")))
    now = iso_now()

    changes: dict[str, Any] = {
        "status": new_status,
        "notes": _append_note(job.get("notes"), notes, now),
        "updated_at": now,
    }

    event_id = job.get("calendar_event_id")
    if new_status == "rescheduled" and (new_date or new_time):
        scheduled_date = new_date or str(job.get("scheduled_date"))
        scheduled_time = new_time or str(job.get("scheduled_time"))
        start, end = _event_window(scheduled_date, scheduled_time, float(job.get("estimated_duration") or 1))
        changes["scheduled_date"] = scheduled_date
        changes["scheduled_time"] = scheduled_time
        if calendar and event_id:
            calendar.update_event(
                str(event_id),
                {
                    "start": {"dateTime": start.isoformat(timespec="seconds"), "timeZone": time_zone},
                    "end": {"dateTime": end.isoformat(timespec="seconds"), "timeZone": time_zone},
                },
            )
    elif new_status == "cancelled" and calendar and event_id:
        calendar.update_event(str(event_id), {"status": "cancelled"})

    updated = store.scheduled_jobs.update(job_id, changes)

    if notify_customer and mail is not None:
        _notify_customer(
            mail,
            request,
            updated,
            business_name=business_name,
            sender=sender,
            logger=logger,
        )
    return updated


def _notify_customer(
    mail: GmailAdapter,
    request: dict[str, Any],
    job: dict[str, Any],
    *,
    business_name: str,
    sender: str | None,
    logger: JsonlLogger | None,
) -> None:
    status = str(job.get("status"))
    email = render_status_email(
        status,
        customer_name=str(request.get("customer_name") or ""),
        business_name=business_name,
        scheduled_date=str(job.get("scheduled_date") or ""),
        scheduled_time=str(job.get("scheduled_time") or ""),
    )
    if email is None:
        return

    to = request.get("customer_email")
    if not to:
        if logger:
            logger.warning("customer_email_skipped", job_id=job.get("id"), reason="no customer email")
        return

    from_header = f'"{business_name}" <{sender}>' if sender else None
    try:
        mail.send_html(to=str(to), subject=email.subject, html=email.html, sender=from_header)
    except Exception as exc:
        # status change is already stored
        if logger:
            logger.error(
                "customer_email_failed",
                job_id=job.get("id"),
                status=status,
                error=str(exc),
                error_type=type(exc).__name__,
            )
        return

    if logger:
        logger.info("customer_email_sent", job_id=job.get("id"), status=status)
