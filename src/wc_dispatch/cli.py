import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any

from openai import OpenAIError

from wc_dispatch import estimates, notifications, overrides, scheduling
from wc_dispatch.calendar_adapter import CalendarAdapter
from wc_dispatch.clients import ApiName, ClientFactoryError, build_service, settings_from_env
from wc_dispatch.config import EXTRACTOR_VALUES, AppConfig, ConfigError, load_config
from wc_dispatch.engine import run_workflow
from wc_dispatch.exceptions import (
    APIRetryExhausted,
    ExtractionUnavailable,
    RecordNotFound,
    ValidationError,
)
from wc_dispatch.gmail_adapter import GmailAdapter
from wc_dispatch.intake import parse_message
from wc_dispatch.logger import JsonlLogger
from wc_dispatch.parsing import Extractor, build_extractor
from wc_dispatch.parsing.contracts import Extraction, MessageHeaders
from wc_dispatch.run_context import RunContext
from wc_dispatch.store import Datastore, open_datastore
from wc_dispatch.workflows import build as build_workflow
from wc_dispatch.workflows.email_intake import IntakeDeps

_USER_ERRORS = (
    ConfigError,
    ClientFactoryError,
    ValidationError,
    RecordNotFound,
    ExtractionUnavailable,
    APIRetryExhausted,
    OpenAIError,
)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="wcd", description="Window-cleaning dispatch back office")
    sub = p.add_subparsers(dest="cmd", required=True)

    cfg = sub.add_parser("config", help="Print resolved config (secrets redacted)")
    cfg.add_argument("--profile", choices=["local", "dev", "prod"], help="Override WCD_PROFILE")

    parse = sub.add_parser("parse", help="Extract scheduling fields from one email body")
    parse.add_argument("--file", help="Read the body from a file (default: stdin)")
    parse.add_argument("--subject", default="", help="Subject header")
    parse.add_argument("--from", dest="sender", default="", help='From header, e.g. "Jane <j@x.com>"')
    parse.add_argument("--strategy", choices=list(EXTRACTOR_VALUES), help="Override WCD_EXTRACTOR")

    emails = sub.add_parser("emails", help="Inspect the business inbox")
    emails_sub = emails.add_subparsers(dest="emails_cmd", required=True)
    e_list = emails_sub.add_parser("list", help="List unread messages, newest first")
    e_list.add_argument("--max", type=int, default=10)
    e_parse = emails_sub.add_parser("parse", help="Fetch one message and extract its fields")
    e_parse.add_argument("message_id")
    e_parse.add_argument("--strategy", choices=list(EXTRACTOR_VALUES))

    intake = sub.add_parser("intake", help="Run the email_intake workflow")
    intake.add_argument("--max", type=int, default=10, help="Max unread messages to pull")
    intake.add_argument("--query", help="Gmail search query (default: unread inbox)")
    intake.add_argument("--strategy", choices=list(EXTRACTOR_VALUES))

    requests = sub.add_parser("requests", help="Job requests created from email")
    requests_sub = requests.add_subparsers(dest="requests_cmd", required=True)
    r_list = requests_sub.add_parser("list")
    r_list.add_argument("--status", choices=list(scheduling.REQUEST_STATUSES))
    r_dismiss = requests_sub.add_parser("dismiss")
    r_dismiss.add_argument("request_id")

    est = sub.add_parser("estimates", help="Estimate entry")
    est_sub = est.add_subparsers(dest="estimates_cmd", required=True)
    est_add = est_sub.add_parser("add")
    est_add.add_argument("--name", required=True)
    est_add.add_argument("--address", required=True)
    est_add.add_argument("--amount", required=True)
    est_add.add_argument("--details", default="")
    est_sub.add_parser("list")
    est_show = est_sub.add_parser("show")
    est_show.add_argument("estimate_id")
    est_update = est_sub.add_parser("update")
    est_update.add_argument("estimate_id")
    est_update.add_argument(
        "--set",
        dest="updates",
        action="append",
        default=[],
        metavar="FIELD=VALUE",
        help="Repeatable; fields: " + ", ".join(estimates.EDITABLE_FIELDS),
    )

    teams = sub.add_parser("teams", help="Cleaning crews")
    teams_sub = teams.add_subparsers(dest="teams_cmd", required=True)
    t_add = teams_sub.add_parser("add")
    t_add.add_argument("name")
    t_add.add_argument("--member", dest="members", action="append", default=[])
    teams_sub.add_parser("list")

    jobs = sub.add_parser("jobs", help="Team jobs and calendar-backed scheduled jobs")
    jobs_sub = jobs.add_subparsers(dest="jobs_cmd", required=True)
    j_add = jobs_sub.add_parser("add", help="Assign a job to a team")
    j_add.add_argument("--team", dest="team_id", required=True)
    j_add.add_argument("--name", dest="job_name", required=True)
    j_add.add_argument("--date", required=True, help="YYYY-MM-DD")
    j_add.add_argument("--status", default="scheduled", choices=list(scheduling.JOB_STATUSES))
    j_list = jobs_sub.add_parser("list")
    j_list.add_argument("--team", dest="team_id")
    j_list.add_argument("--scheduled", action="store_true", help="List calendar-backed jobs")
    j_sched = jobs_sub.add_parser("schedule", help="Put a job request on the calendar")
    j_sched.add_argument("request_id")
    j_sched.add_argument("--date", required=True, help="YYYY-MM-DD")
    j_sched.add_argument("--time", required=True, help="HH:MM (24h)")
    j_sched.add_argument("--duration", required=True, help="Hours")
    j_sched.add_argument("--staff", help="Staff email (invited to the event)")
    j_sched.add_argument("--details")
    j_status = jobs_sub.add_parser("status", help="Change a scheduled job's status")
    j_status.add_argument("job_id")
    j_status.add_argument("new_status", choices=list(scheduling.SCHEDULED_JOB_STATUSES))
    j_status.add_argument("--notes", default="")
    j_status.add_argument("--no-notify", action="store_true")
    j_status.add_argument("--date", dest="new_date")
    j_status.add_argument("--time", dest="new_time")

    notes = sub.add_parser("notifications", help="Dashboard notifications")
    notes_sub = notes.add_subparsers(dest="notifications_cmd", required=True)
    n_add = notes_sub.add_parser("add")
    n_add.add_argument("message")
    n_list = notes_sub.add_parser("list")
    n_list.add_argument("--unread", action="store_true")
    n_read = notes_sub.add_parser("read")
    n_read.add_argument("notification_id")

    ovr = sub.add_parser("override", help="Manual override actions")
    ovr_sub = ovr.add_subparsers(dest="override_cmd", required=True)
    o_trig = ovr_sub.add_parser("trigger")
    o_trig.add_argument("action", choices=list(overrides.OVERRIDE_ACTIONS))
    o_trig.add_argument("--target")
    o_trig.add_argument("--note", default="")
    ovr_sub.add_parser("history")

    return p


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _extraction_view(extraction: Extraction) -> dict[str, Any]:
    if extraction.strategy == "llm":
        view = extraction.to_llm_dict()
    else:
        view = {**extraction.fields.summary(), "confidence": extraction.confidence}
    return {**view, "urgency": extraction.urgency, "request_type": extraction.request_type}


def _parse_updates(pairs: list[str]) -> dict[str, str]:
    updates: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ValidationError(f"Expected FIELD=VALUE, got {pair!r}")
        updates[key.strip()] = value
    return updates


class _Runtime:
    """Per-command handles; nothing is built until a command asks for it."""

    def __init__(self, cfg: AppConfig) -> None:
        self.cfg = cfg
        self.log = JsonlLogger(path=cfg.runs_dir / "wcd.jsonl", component="cli", min_level=cfg.log_level)
        self._store: Datastore | None = None

    def service(self, api: ApiName) -> Any:
        return build_service(cfg=self.cfg, api=api, settings=settings_from_env())

    def store(self) -> Datastore:
        if self._store is None:
            sheets = self.service("sheets") if self.cfg.spreadsheet_id else None
            self._store = open_datastore(self.cfg, sheets)
        return self._store

    def mail(self, log: JsonlLogger | None = None, run_id: str = "") -> GmailAdapter:
        return GmailAdapter(self.service("gmail"), log or self.log.child("gmail"), run_id=run_id)

    def calendar(self) -> CalendarAdapter:
        return CalendarAdapter(self.service("calendar"), self.log.child("calendar"), self.cfg.calendar_id)

    def extractor(self, strategy: str | None = None) -> Extractor:
        return build_extractor(self.cfg, logger=self.log, strategy=strategy)


def _read_body(path: str | None) -> str:
    if path:
        return Path(path).read_text(encoding="utf-8")
    return sys.stdin.read()


def _cmd_parse(rt: _Runtime, args: argparse.Namespace) -> None:
    extractor = rt.extractor(args.strategy)
    headers = MessageHeaders(subject=args.subject, sender=args.sender)
    extraction = extractor.extract(_read_body(args.file), headers)
    rt.log.info("cli_parse", strategy=extraction.strategy, confidence=extraction.confidence)
    _print_json(_extraction_view(extraction))


def _cmd_emails(rt: _Runtime, args: argparse.Namespace) -> None:
    mail = rt.mail()
    if args.emails_cmd == "list":
        for e in mail.list_unread(max_results=args.max):
            print(f"{e.id}\t{e.received_at}\t{e.sender}\t{e.subject}")
        return

    raw = mail.get_raw_email(args.message_id)
    extraction = parse_message(rt.extractor(args.strategy), raw, logger=rt.log)
    _print_json({"message_id": raw.id, "subject": raw.subject, **_extraction_view(extraction)})


def _cmd_intake(rt: _Runtime, args: argparse.Namespace) -> None:
    ctx = RunContext.create(rt.cfg.runs_dir)
    log = JsonlLogger(path=ctx.logs_path, component="engine", min_level=rt.cfg.log_level)
    deps = IntakeDeps(
        store=rt.store(),
        extractor=build_extractor(rt.cfg, logger=log, strategy=args.strategy),
        mail_factory=lambda step_log, run_id: rt.mail(step_log, run_id),
    )
    workflow = build_workflow("email_intake", {"max_messages": args.max, "query": args.query}, deps=deps)
    result = run_workflow(workflow=workflow, ctx=ctx, log=log)

    print(f"status={'OK' if result.ok else 'FAILED'}")
    print(f"run_id={result.run_id}")
    print(f"run_dir={ctx.run_dir}")
    stored = (result.outputs or {}).get("extract_and_store") or {}
    for key in ("stored", "duplicates", "skipped"):
        if key in stored:
            print(f"{key}={stored[key]}")
    if not result.ok:
        raise SystemExit(f"failed_step={result.failed_step} error={result.error}")


def _cmd_requests(rt: _Runtime, args: argparse.Namespace) -> None:
    store = rt.store()
    if args.requests_cmd == "list":
        _print_json(scheduling.list_job_requests(store, status=args.status))
    else:
        _print_json(scheduling.dismiss_job_request(store, args.request_id))


def _cmd_estimates(rt: _Runtime, args: argparse.Namespace) -> None:
    store = rt.store()
    if args.estimates_cmd == "add":
        _print_json(
            estimates.create_estimate(
                store, name=args.name, address=args.address, amount=args.amount, details=args.details
            )
        )
    elif args.estimates_cmd == "list":
        _print_json(estimates.list_estimates(store))
    elif args.estimates_cmd == "show":
        _print_json(estimates.get_estimate(store, args.estimate_id))
    else:
        _print_json(estimates.update_estimate(store, args.estimate_id, _parse_updates(args.updates)))


def _cmd_teams(rt: _Runtime, args: argparse.Namespace) -> None:
    store = rt.store()
    if args.teams_cmd == "add":
        _print_json(scheduling.add_team(store, name=args.name, members=args.members))
    else:
        _print_json(scheduling.list_teams(store))


def _cmd_jobs(rt: _Runtime, args: argparse.Namespace) -> None:
    store = rt.store()
    cfg = rt.cfg
    if args.jobs_cmd == "add":
        _print_json(
            scheduling.create_job(
                store, team_id=args.team_id, job_name=args.job_name, date=args.date, status=args.status
            )
        )
    elif args.jobs_cmd == "list":
        if args.scheduled:
            _print_json(scheduling.list_scheduled_jobs(store))
        else:
            _print_json(scheduling.list_jobs(store, team_id=args.team_id))
    elif args.jobs_cmd == "schedule":
        _print_json(
            scheduling.schedule_job(
                store,
                rt.calendar(),
                job_request_id=args.request_id,
                scheduled_date=args.date,
                scheduled_time=args.time,
                estimated_duration=args.duration,
                assigned_staff=args.staff,
                job_details=args.details,
                time_zone=cfg.timezone,
                logger=rt.log,
            )
        )
    else:
        needs_calendar = args.new_status in {"cancelled", "rescheduled"}
        _print_json(
            scheduling.update_job_status(
                store,
                None if args.no_notify else rt.mail(),
                job_id=args.job_id,
                new_status=args.new_status,
                notes=args.notes,
                notify_customer=not args.no_notify,
                calendar=rt.calendar() if needs_calendar else None,
                new_date=args.new_date,
                new_time=args.new_time,
                time_zone=cfg.timezone,
                business_name=cfg.business_name,
                sender=cfg.sender_email,
                logger=rt.log,
            )
        )


def _cmd_notifications(rt: _Runtime, args: argparse.Namespace) -> None:
    store = rt.store()
    if args.notifications_cmd == "add":
        _print_json(notifications.create_notification(store, args.message))
    elif args.notifications_cmd == "list":
        _print_json(notifications.list_notifications(store, unread_only=args.unread))
    else:
        _print_json(notifications.mark_read(store, args.notification_id))


def _cmd_override(rt: _Runtime, args: argparse.Namespace) -> None:
    store = rt.store()
    if args.override_cmd == "trigger":
        _print_json(overrides.trigger_override(store, args.action, target_id=args.target, note=args.note))
    else:
        _print_json(overrides.override_history(store))


_COMMANDS = {
    "parse": _cmd_parse,
    "emails": _cmd_emails,
    "intake": _cmd_intake,
    "requests": _cmd_requests,
    "estimates": _cmd_estimates,
    "teams": _cmd_teams,
    "jobs": _cmd_jobs,
    "notifications": _cmd_notifications,
    "override": _cmd_override,
}


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "config" and args.profile:
        os.environ["WCD_PROFILE"] = args.profile
    try:
        cfg = load_config()
    except ConfigError as e:
        raise SystemExit(str(e)) from e

    if args.cmd == "config":
        for k, v in cfg.to_safe_dict().items():
            print(f"{k}={v}")
        return

    rt = _Runtime(cfg)
    try:
        _COMMANDS[args.cmd](rt, args)
    except _USER_ERRORS as e:
        rt.log.error("cli_error", cmd=args.cmd, error_type=type(e).__name__, error=str(e))
        raise SystemExit(str(e)) from e
    except RuntimeError as e:
        # collaborator failures (Gmail/Calendar/Sheets) arrive wrapped with context
        rt.log.error("cli_error", cmd=args.cmd, error_type=type(e).__name__, error=str(e))
        raise SystemExit(str(e)) from e
