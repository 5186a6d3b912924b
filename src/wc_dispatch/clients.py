from __future__ import annotations

import json
import os
import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal, Protocol, cast

import httplib2
from google.auth.transport.requests import Request
from google.oauth2 import credentials as oauth_credentials
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from openai import OpenAI

from wc_dispatch.config import AppConfig


class GmailService(Protocol):
    def users(self) -> Any: ...


class CalendarService(Protocol):
    def events(self) -> Any: ...


class SheetsService(Protocol):
    def spreadsheets(self) -> Any: ...


# ---- Scopes (single source of truth) ----
GMAIL_READONLY_SCOPE = "https://www.googleapis.com/auth/gmail.readonly"
GMAIL_SEND_SCOPE = "https://www.googleapis.com/auth/gmail.send"
CALENDAR_EVENTS_SCOPE = "https://www.googleapis.com/auth/calendar.events"
SHEETS_SCOPE = "https://www.googleapis.com/auth/spreadsheets"

ApiName = Literal["gmail", "calendar", "sheets"]

_API_VERSIONS: dict[str, str] = {"gmail": "v1", "calendar": "v3", "sheets": "v4"}


class ClientFactoryError(RuntimeError):
    pass


@dataclass(frozen=True)
class RetryPolicy:
    """
    Simple exponential backoff with jitter.
    - Retries on 429 + selected 5xx
    - Optional 403 rate limit reasons (Google APIs sometimes use 403 for rate limits)
    """

    max_retries: int = 5
    initial_backoff_s: float = 0.5
    max_backoff_s: float = 8.0
    jitter_ratio: float = 0.2  # +/-20%


@dataclass(frozen=True)
class ClientSettings:
    timeout_s: int = 30
    retry: RetryPolicy = RetryPolicy()


def _int_env(env: dict[str, str], key: str, default: int) -> int:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ClientFactoryError(f"Invalid int env {key}={raw!r}") from e


def _float_env(env: dict[str, str], key: str, default: float) -> float:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ClientFactoryError(f"Invalid float env {key}={raw!r}") from e


def settings_from_env(env: dict[str, str] | None = None) -> ClientSettings:
    e = dict(os.environ) if env is None else env

    return ClientSettings(
        timeout_s=_int_env(e, "WCD_HTTP_TIMEOUT_S", 30),
        retry=RetryPolicy(
            max_retries=_int_env(e, "WCD_HTTP_MAX_RETRIES", 5),
            initial_backoff_s=_float_env(e, "WCD_HTTP_INITIAL_BACKOFF_S", 0.5),
            max_backoff_s=_float_env(e, "WCD_HTTP_MAX_BACKOFF_S", 8.0),
            jitter_ratio=_float_env(e, "WCD_HTTP_JITTER_RATIO", 0.2),
        ),
    )


def scopes_for_api(*, api: ApiName, use_service_account: bool) -> list[str]:
    if api == "gmail":
        return [GMAIL_READONLY_SCOPE, GMAIL_SEND_SCOPE]
    if api == "calendar":
        return [CALENDAR_EVENTS_SCOPE]
    if api == "sheets":
        # same scope either way; the SA just needs the spreadsheet shared with it
        return [SHEETS_SCOPE]
    raise ClientFactoryError(f"Unknown api: {api}")


def _service_account_creds(sa_path: str, scopes: list[str]) -> object:
    p = Path(sa_path)
    if not p.exists():
        raise ClientFactoryError(f"Service Account JSON not found: {p}")
    return service_account.Credentials.from_service_account_file(  # type: ignore[no-untyped-call]
        str(p), scopes=scopes
    )


def _oauth_user_creds(cfg: AppConfig, scopes: list[str]) -> object:
    ga = cfg.google_auth
    missing = [
        k
        for k, v in {
            "GOOGLE_CLIENT_ID": ga.client_id,
            "GOOGLE_CLIENT_SECRET": ga.client_secret,
            "GOOGLE_REFRESH_TOKEN": ga.refresh_token,
        }.items()
        if not v
    ]
    if missing:
        raise ClientFactoryError(
            "OAuth user creds not configured.\n"
            f"Missing: {', '.join(missing)}\n"
            "Fix: set the refresh token and client credentials in .env (local/dev)\n"
            "or your deployment env (prod).\n"
        )

    creds = oauth_credentials.Credentials(  # type: ignore[no-untyped-call]
        token=None,
        refresh_token=ga.refresh_token,
        token_uri="https://oauth2.googleapis.com/token",
        client_id=ga.client_id,
        client_secret=ga.client_secret,
        scopes=scopes,
    )
    creds.refresh(Request())  # fail fast
    return creds


def _extract_rate_limit_reason(e: HttpError) -> str | None:
    """
    Google APIs may return rate limit signals in 403 bodies:
      reason: rateLimitExceeded / userRateLimitExceeded
    """
    try:
        if not hasattr(e, "content"):
            return None
        raw = e.content.decode("utf-8", errors="ignore")
        data = json.loads(raw)
        err = data.get("error", {})
        errors = err.get("errors", [])
        if errors and isinstance(errors, list) and isinstance(errors[0], dict):
            return str(errors[0].get("reason") or "")
    except (AttributeError, UnicodeDecodeError, ValueError):
        return None
    return None


def is_retryable_http_error(e: HttpError) -> bool:
    status = getattr(e.resp, "status", None)
    if status in {429, 500, 502, 503, 504}:
        return True
    if status == 403:
        reason = _extract_rate_limit_reason(e)
        if reason in {"rateLimitExceeded", "userRateLimitExceeded"}:
            return True
    return False


class _ExecRequest(Protocol):
    def execute(self, http: Any | None = None, num_retries: int = 0) -> Any: ...


class _RetryingRequest:
    def __init__(self, inner: _ExecRequest, retry_policy: RetryPolicy) -> None:
        self._inner = inner
        self._policy = retry_policy

    def execute(self, http: Any | None = None, num_retries: int = 0) -> Any:
        policy = self._policy
        attempt = 0
        backoff = policy.initial_backoff_s

        while True:
            try:
                # underlying request does 0 internal retries; this loop owns retry
                return self._inner.execute(http=http, num_retries=0)
            except HttpError as e:
                attempt += 1
                if attempt > policy.max_retries or not is_retryable_http_error(e):
                    raise

                jitter = 1.0 + random.uniform(-policy.jitter_ratio, policy.jitter_ratio)
                sleep_s = min(policy.max_backoff_s, backoff) * jitter
                time.sleep(max(0.0, sleep_s))
                backoff *= 2.0


def _request_builder(retry_policy: RetryPolicy) -> Callable[..., Any]:
    def builder(
        http: Any,
        postproc: Any,
        uri: str,
        method: str = "GET",
        body: Any = None,
        headers: Any = None,
        methodId: str | None = None,
        resumable: Any = None,
    ) -> Any:
        from googleapiclient.http import HttpRequest

        inner = HttpRequest(
            http=http,
            postproc=postproc,
            uri=uri,
            method=method,
            body=body,
            headers=headers,
            methodId=methodId,
            resumable=resumable,
        )
        return _RetryingRequest(inner, retry_policy)

    return builder


def build_service(
    *, cfg: AppConfig, api: ApiName, settings: ClientSettings
) -> GmailService | CalendarService | SheetsService:
    use_sa = api == "sheets" and bool(cfg.google_auth.service_account_json)
    scopes = scopes_for_api(api=api, use_service_account=use_sa)

    if use_sa:
        creds = _service_account_creds(cfg.google_auth.service_account_json or "", scopes)
    else:
        # Gmail + Calendar act as the business mailbox owner
        creds = _oauth_user_creds(cfg, scopes)

    from google_auth_httplib2 import AuthorizedHttp  # local import keeps module load clean

    http = AuthorizedHttp(creds, http=httplib2.Http(timeout=settings.timeout_s))

    svc = build(
        api,
        _API_VERSIONS[api],
        http=http,
        cache_discovery=False,
        requestBuilder=_request_builder(settings.retry),
    )
    if api == "gmail":
        return cast(GmailService, svc)
    if api == "calendar":
        return cast(CalendarService, svc)
    return cast(SheetsService, svc)


def build_openai_client(cfg: AppConfig) -> OpenAI:
    if not cfg.openai.api_key:
        raise ClientFactoryError(
            "OPENAI_API_KEY is not configured.\n"
            "Fix: set OPENAI_API_KEY in .env (local/dev) or your deployment env (prod),\n"
            "or use the regex extractor (WCD_EXTRACTOR=regex / --strategy regex).\n"
        )
    # retries happen in the caller via retry.with_retries, not inside the SDK
    return OpenAI(api_key=cfg.openai.api_key, timeout=cfg.openai.timeout_s, max_retries=0)
