from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from openai import OpenAIError

from wc_dispatch.exceptions import APIRetryExhausted, ExtractionUnavailable
from wc_dispatch.gmail_adapter import GmailAdapter
from wc_dispatch.logger import JsonlLogger
from wc_dispatch.parsing import Extractor
from wc_dispatch.parsing.contracts import Extraction, RawEmail
from wc_dispatch.retry import RetryConfig, with_retries
from wc_dispatch.scheduling import create_job_request
from wc_dispatch.store import Datastore


@dataclass
class IntakeResult:
    fetched: int = 0
    stored: int = 0
    duplicates: int = 0
    skipped: list[dict[str, str]] = field(default_factory=list)
    request_ids: list[str] = field(default_factory=list)

    def to_jsonable(self) -> dict[str, Any]:
        return {
            "fetched": self.fetched,
            "stored": self.stored,
            "duplicates": self.duplicates,
            "skipped": len(self.skipped),
            "skip_reasons": list(self.skipped),
            "request_ids": list(self.request_ids),
        }


def parse_message(
    extractor: Extractor,
    raw_email: RawEmail,
    *,
    logger: JsonlLogger | None = None,
    retry_cfg: RetryConfig | None = None,
) -> Extraction:
    """Run one extraction; with a logger, 429/5xx from the completion API are retried."""
    if logger is None:
        return extractor.extract(raw_email.body_text, raw_email.headers)

    return with_retries(
        lambda: extractor.extract(raw_email.body_text, raw_email.headers),
        operation=f"extract.{extractor.name}",
        logger=logger,
        cfg=retry_cfg or RetryConfig(),
        context={"message_id": raw_email.id},
    )


def ingested_email_ids(store: Datastore) -> set[str]:
    return {str(r["email_id"]) for r in store.job_requests.list() if r.get("email_id")}


def store_extractions(
    store: Datastore,
    emails: list[RawEmail],
    extractor: Extractor,
    *,
    logger: JsonlLogger | None = None,
    retry_cfg: RetryConfig | None = None,
) -> IntakeResult:
    result = IntakeResult(fetched=len(emails))
    seen = ingested_email_ids(store)

    for raw in emails:
        if raw.id in seen:
            result.duplicates += 1
            continue

        try:
            extraction = parse_message(extractor, raw, logger=logger, retry_cfg=retry_cfg)
        except (ExtractionUnavailable, APIRetryExhausted, OpenAIError) as exc:
            result.skipped.append({"message_id": raw.id, "reason": str(exc)})
            if logger:
                logger.warning(
                    "intake_extract_failed",
                    message_id=raw.id,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
            continue

        request = create_job_request(store, raw, extraction)
        seen.add(raw.id)
        result.stored += 1
        result.request_ids.append(str(request["id"]))
        if logger:
            logger.info(
                "intake_stored",
                message_id=raw.id,
                job_request_id=request["id"],
                strategy=extraction.strategy,
                confidence=extraction.confidence,
            )

    return result


def ingest_unread(
    store: Datastore,
    mail: GmailAdapter,
    extractor: Extractor,
    max_results: int = 10,
    *,
    logger: JsonlLogger | None = None,
) -> IntakeResult:
    emails = mail.list_unread(max_results=max_results)
    return store_extractions(store, emails, extractor, logger=logger)
