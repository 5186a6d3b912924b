from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path


class ConfigError(RuntimeError):
    pass


PROFILE_VALUES = ("local", "dev", "prod")
EXTRACTOR_VALUES = ("regex", "llm")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

DEFAULT_OPENAI_MODEL = "gpt-4-turbo"
DEFAULT_TIMEZONE = "America/New_York"
DEFAULT_BUSINESS_NAME = "Parker's Window Cleaning"


def _read_dotenv_file(path: Path) -> dict[str, str]:
    """
    Minimal dotenv reader:
    - supports KEY=VALUE
    - ignores empty lines + comments starting with #
    - does not expand variables
    """
    data: dict[str, str] = {}
    if not path.exists():
        return data

    for raw in path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        k, v = line.split("=", 1)
        key = k.strip()
        val = v.strip().strip('"').strip("'")
        if key:
            data[key] = val
    return data


def _merge_env(base: Mapping[str, str], overlay: Mapping[str, str]) -> dict[str, str]:
    merged = dict(base)
    merged.update({k: v for k, v in overlay.items() if v is not None})
    return merged


def _get_profile(env: Mapping[str, str]) -> str:
    profile = (env.get("WCD_PROFILE") or "local").strip().lower()
    if profile not in PROFILE_VALUES:
        raise ConfigError(
            f"Invalid WCD_PROFILE='{profile}'. Expected one of: {', '.join(PROFILE_VALUES)}"
        )
    return profile


def _as_bool(v: str | None, default: bool = False) -> bool:
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _optional(env: Mapping[str, str], key: str) -> str | None:
    return (env.get(key) or "").strip() or None


@dataclass(frozen=True)
class GoogleAuthConfig:
    # Gmail + Calendar always use the OAuth user (refresh token).
    # Sheets may use a service account when GOOGLE_SERVICE_ACCOUNT_JSON is set.
    service_account_json: str | None
    client_id: str | None
    client_secret: str | None
    refresh_token: str | None

    @property
    def has_oauth(self) -> bool:
        return bool(self.client_id and self.client_secret and self.refresh_token)

    def validate(self, *, profile: str) -> None:
        if profile == "prod" and not self.has_oauth:
            raise ConfigError(
                "Prod auth is not configured.\n"
                "Gmail and Calendar need an OAuth user:\n"
                "  - GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, GOOGLE_REFRESH_TOKEN\n"
            )


@dataclass(frozen=True)
class OpenAIConfig:
    api_key: str | None
    model: str
    timeout_s: float

    def validate(self, *, profile: str, extractor: str) -> None:
        if profile == "prod" and extractor == "llm" and not self.api_key:
            raise ConfigError(
                "WCD_EXTRACTOR=llm but OPENAI_API_KEY is missing.\n"
                "Fix: set OPENAI_API_KEY or switch WCD_EXTRACTOR=regex\n"
            )


@dataclass(frozen=True)
class AppConfig:
    profile: str
    debug: bool
    log_level: str
    runs_dir: Path
    data_dir: Path
    spreadsheet_id: str | None
    calendar_id: str
    timezone: str
    business_name: str
    sender_email: str | None
    extractor: str
    google_auth: GoogleAuthConfig
    openai: OpenAIConfig

    def to_safe_dict(self) -> dict[str, str]:
        def red(v: str | None) -> str:
            if not v:
                return ""
            # show only prefix/suffix to prove it's set without leaking it
            s = v.strip()
            if len(s) <= 8:
                return "********"
            return f"{s[:3]}...{s[-3:]}"

        return {
            "WCD_PROFILE": self.profile,
            "WCD_DEBUG": str(self.debug),
            "WCD_LOG_LEVEL": self.log_level,
            "WCD_RUNS_DIR": str(self.runs_dir),
            "WCD_DATA_DIR": str(self.data_dir),
            "WCD_SPREADSHEET_ID": self.spreadsheet_id or "",
            "WCD_CALENDAR_ID": self.calendar_id,
            "WCD_TIMEZONE": self.timezone,
            "WCD_BUSINESS_NAME": self.business_name,
            "WCD_SENDER_EMAIL": self.sender_email or "",
            "WCD_EXTRACTOR": self.extractor,
            "OPENAI_MODEL": self.openai.model,
            "OPENAI_API_KEY": red(self.openai.api_key),
            "GOOGLE_SERVICE_ACCOUNT_JSON": self.google_auth.service_account_json or "",
            "GOOGLE_CLIENT_ID": red(self.google_auth.client_id),
            "GOOGLE_CLIENT_SECRET": red(self.google_auth.client_secret),
            "GOOGLE_REFRESH_TOKEN": red(self.google_auth.refresh_token),
        }


def load_config(
    *,
    env: Mapping[str, str] | None = None,
    base_dir: Path | None = None,
) -> AppConfig:
    """
    Loads config with profile support.

    Priority:
      1) OS env
      2) .env (if exists)
      3) .env.<profile> (if exists) overrides .env

    NOTE: dotenv files only populate *missing* env vars (OS env is never overwritten).
    """
    env0: Mapping[str, str] = os.environ if env is None else env
    profile = _get_profile(env0)

    root = base_dir or Path.cwd()

    dotenv_base = _read_dotenv_file(root / ".env")
    dotenv_profile = _read_dotenv_file(root / f".env.{profile}")

    merged = dict(env0)
    for k, v in _merge_env(dotenv_base, dotenv_profile).items():
        merged.setdefault(k, v)

    debug = _as_bool(merged.get("WCD_DEBUG"), default=(profile != "prod"))
    log_level = (
        (merged.get("WCD_LOG_LEVEL") or ("INFO" if profile == "prod" else "DEBUG")).strip().upper()
    )
    if log_level not in LOG_LEVELS:
        raise ConfigError(
            f"Invalid WCD_LOG_LEVEL='{log_level}'. Expected one of: {', '.join(LOG_LEVELS)}"
        )

    extractor = (merged.get("WCD_EXTRACTOR") or "regex").strip().lower()
    if extractor not in EXTRACTOR_VALUES:
        raise ConfigError(
            f"Invalid WCD_EXTRACTOR='{extractor}'. Expected one of: {', '.join(EXTRACTOR_VALUES)}"
        )

    timeout_raw = (merged.get("OPENAI_TIMEOUT_S") or "").strip()
    try:
        openai_timeout_s = float(timeout_raw) if timeout_raw else 60.0
    except ValueError as e:
        raise ConfigError(f"Invalid OPENAI_TIMEOUT_S={timeout_raw!r}") from e

    google_auth = GoogleAuthConfig(
        service_account_json=_optional(merged, "GOOGLE_SERVICE_ACCOUNT_JSON"),
        client_id=_optional(merged, "GOOGLE_CLIENT_ID"),
        client_secret=_optional(merged, "GOOGLE_CLIENT_SECRET"),
        refresh_token=_optional(merged, "GOOGLE_REFRESH_TOKEN"),
    )
    openai_cfg = OpenAIConfig(
        api_key=_optional(merged, "OPENAI_API_KEY"),
        model=_optional(merged, "OPENAI_MODEL") or DEFAULT_OPENAI_MODEL,
        timeout_s=openai_timeout_s,
    )

    google_auth.validate(profile=profile)
    openai_cfg.validate(profile=profile, extractor=extractor)

    if profile in {"local", "dev"}:
        example_path = root / ".env.example"
        if not example_path.exists():
            raise ConfigError("Missing .env.example. Add it so local/dev setup is obvious.")

    return AppConfig(
        profile=profile,
        debug=debug,
        log_level=log_level,
        runs_dir=Path((merged.get("WCD_RUNS_DIR") or "runs").strip()),
        data_dir=Path((merged.get("WCD_DATA_DIR") or "data").strip()),
        spreadsheet_id=_optional(merged, "WCD_SPREADSHEET_ID"),
        calendar_id=_optional(merged, "WCD_CALENDAR_ID") or "primary",
        timezone=_optional(merged, "WCD_TIMEZONE") or DEFAULT_TIMEZONE,
        business_name=_optional(merged, "WCD_BUSINESS_NAME") or DEFAULT_BUSINESS_NAME,
        sender_email=_optional(merged, "WCD_SENDER_EMAIL"),
        extractor=extractor,
        google_auth=google_auth,
        openai=openai_cfg,
    )
