from __future__ import annotations

import html
from dataclasses import dataclass
from datetime import date

NOTIFY_STATUSES = ("confirmed", "completed", "cancelled", "rescheduled")


@dataclass(frozen=True)
class StatusEmail:
    subject: str
    html: str


def format_long_date(value: str) -> str:
    """``2025-05-03`` -> ``Saturday, May 3, 2025``; anything else passes through."""
    try:
        d = date.fromisoformat(value)
    except (TypeError, ValueError):
        return value
    return f"{d.strftime('%A, %B')} {d.day}, {d.year}"


def render_status_email(
    status: str,
    *,
    customer_name: str,
    business_name: str,
    scheduled_date: str = "",
    scheduled_time: str = "",
) -> StatusEmail | None:
    """Customer-facing HTML for a job status change; None when the status sends nothing."""
    if status not in NOTIFY_STATUSES:
        return None

    name = html.escape(customer_name or "Customer")
    biz = html.escape(business_name)
    when_date = html.escape(format_long_date(scheduled_date))
    when_time = html.escape(scheduled_time)
    sign_off = f"<p>Best regards,<br>{biz} Team</p>"

    if status == "confirmed":
        body = (
            "<h2>Your Window Cleaning Service is Confirmed</h2>"
            f"<p>Dear {name},</p>"
            "<p>We're pleased to confirm your window cleaning service has been scheduled for "
            f"<strong>{when_date}</strong> at <strong>{when_time}</strong>.</p>"
            "<p>Our team will arrive within a 30-minute window of the scheduled time. "
            "We'll contact you if there are any changes to the schedule.</p>"
            "<p>If you need to make any changes to your appointment, please contact us "
            "at least 24 hours in advance.</p>"
            f"<p>Thank you for choosing {biz}!</p>"
        )
    elif status == "completed":
        body = (
            "<h2>Your Window Cleaning Service is Complete</h2>"
            f"<p>Dear {name},</p>"
            "<p>We're pleased to inform you that your window cleaning service has been completed.</p>"
            f"<p>Thank you for choosing {biz}. We hope you're satisfied with our service!</p>"
            "<p>If you have a moment, we would appreciate your feedback or a review of our service.</p>"
        )
    elif status == "cancelled":
        body = (
            "<h2>Your Window Cleaning Service Has Been Cancelled</h2>"
            f"<p>Dear {name},</p>"
            "<p>We're writing to confirm that your window cleaning service has been cancelled "
            "as requested.</p>"
            "<p>If you'd like to reschedule, please don't hesitate to contact us.</p>"
            f"<p>Thank you for considering {biz}.</p>"
        )
    else:
        body = (
            "<h2>Your Window Cleaning Service Has Been Rescheduled</h2>"
            f"<p>Dear {name},</p>"
            "<p>We're writing to confirm that your window cleaning service has been rescheduled to "
            f"<strong>{when_date}</strong> at <strong>{when_time}</strong>.</p>"
            "<p>If this new time does not work for you, please contact us as soon as possible.</p>"
            f"<p>Thank you for your flexibility and for choosing {biz}.</p>"
        )

    subject = f"Job {status.capitalize()}: Window Cleaning Service"
    return StatusEmail(subject=subject, html=body + sign_off)
