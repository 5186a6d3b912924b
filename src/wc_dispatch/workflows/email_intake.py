from __future__ import annotations

from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any

from wc_dispatch.contracts import RunState, Step, StepResult, Workflow
from wc_dispatch.gmail_adapter import UNREAD_QUERY, GmailAdapter
from wc_dispatch.intake import store_extractions
from wc_dispatch.logger import JsonlLogger
from wc_dispatch.parsing import Extractor
from wc_dispatch.parsing.contracts import RawEmail
from wc_dispatch.run_context import RunContext
from wc_dispatch.store import Datastore
from wc_dispatch.workflows import register as _register

NAME = "email_intake"
MAX_MESSAGES_LIMIT = 500

MailFactory = Callable[[JsonlLogger, str], GmailAdapter]


@dataclass(frozen=True)
class IntakeDeps:
    store: Datastore
    extractor: Extractor
    mail_factory: MailFactory


def _as_int(value: Any, default: int) -> int:
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return int(value.strip())
        except ValueError:
            return default
    return default


def get_workflow(options: dict[str, Any], *, deps: IntakeDeps) -> Workflow:
    def validate_config(ctx: RunContext, state: RunState, log: JsonlLogger) -> StepResult:
        query = str(options.get("query") or UNREAD_QUERY).strip()
        max_messages = _as_int(options.get("max_messages"), 10)
        if not 1 <= max_messages <= MAX_MESSAGES_LIMIT:
            return StepResult.failure(
                f"Invalid config: max_messages must be 1..{MAX_MESSAGES_LIMIT}, got {max_messages}"
            )

        state.data["query"] = query
        state.data["max_messages"] = max_messages
        state.data["strategy"] = deps.extractor.name
        log.info(
            "config_valid",
            workflow=NAME,
            query=query,
            max_messages=max_messages,
            strategy=deps.extractor.name,
        )
        return StepResult.success(max_messages=max_messages, strategy=deps.extractor.name)

    def collect_intake(ctx: RunContext, state: RunState, log: JsonlLogger) -> StepResult:
        mail = deps.mail_factory(log, ctx.run_id)
        emails = mail.list_unread(
            max_results=int(state.data["max_messages"]), query=str(state.data["query"])
        )
        items = [asdict(e) for e in emails]
        state.data["emails"] = items

        empty_bodies = sum(1 for e in emails if not e.body_text.strip())
        log.info("gmail_intake_summary", run_id=ctx.run_id, fetched=len(emails), empty_bodies=empty_bodies)

        ctx.write_artifact(
            "intake_items",
            [
                {
                    "message_id": e.id,
                    "subject": e.subject,
                    "from": e.sender,
                    "received_at": e.received_at,
                    "body_preview_120": e.body_text[:120],
                }
                for e in emails
            ],
            metadata={"count": len(emails)},
        )
        return StepResult.success(fetched=len(emails), empty_bodies=empty_bodies)

    def extract_and_store(ctx: RunContext, state: RunState, log: JsonlLogger) -> StepResult:
        emails = [RawEmail(**item) for item in state.data.get("emails") or []]
        result = store_extractions(deps.store, emails, deps.extractor, logger=log)

        summary = result.to_jsonable()
        ctx.write_artifact(
            "extractions",
            {"run_id": ctx.run_id, "strategy": deps.extractor.name, **summary},
            metadata={"stored": result.stored, "skipped": len(result.skipped)},
        )
        return StepResult.success(
            stored=result.stored,
            duplicates=result.duplicates,
            skipped=len(result.skipped),
        )

    steps = [
        Step(name="validate_config", fn=validate_config),
        Step(name="collect_intake", fn=collect_intake),
        Step(name="extract_and_store", fn=extract_and_store),
    ]
    return Workflow(name=NAME, steps=steps)


_register(NAME, get_workflow)
