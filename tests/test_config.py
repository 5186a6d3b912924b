from pathlib import Path

import pytest

from wc_dispatch.config import ConfigError, load_config


def test_default_profile_local(tmp_path: Path) -> None:
    # .env.example must exist for local/dev; create it.
    (tmp_path / ".env.example").write_text("WCD_PROFILE=local\n", encoding="utf-8")
    cfg = load_config(env={}, base_dir=tmp_path)
    assert cfg.profile == "local"
    assert cfg.runs_dir.name == "runs"
    assert cfg.data_dir.name == "data"
    assert cfg.extractor == "regex"
    assert cfg.calendar_id == "primary"
    assert cfg.timezone == "America/New_York"
    assert cfg.openai.model == "gpt-4-turbo"
    assert cfg.spreadsheet_id is None


def test_profile_invalid_rejected(tmp_path: Path) -> None:
    (tmp_path / ".env.example").write_text("WCD_PROFILE=local\n", encoding="utf-8")
    with pytest.raises(ConfigError) as e:
        load_config(env={"WCD_PROFILE": "nope"}, base_dir=tmp_path)
    assert "Invalid WCD_PROFILE" in str(e.value)


def test_local_requires_env_example(tmp_path: Path) -> None:
    with pytest.raises(ConfigError) as e:
        load_config(env={}, base_dir=tmp_path)
    assert ".env.example" in str(e.value)


def test_prod_requires_auth(tmp_path: Path) -> None:
    # prod doesn't require .env.example, but requires auth
    with pytest.raises(ConfigError) as e:
        load_config(env={"WCD_PROFILE": "prod"}, base_dir=tmp_path)
    assert "Prod auth is not configured" in str(e.value)


def test_prod_llm_requires_openai_key(tmp_path: Path) -> None:
    env = {
        "WCD_PROFILE": "prod",
        "WCD_EXTRACTOR": "llm",
        "GOOGLE_CLIENT_ID": "cid",
        "GOOGLE_CLIENT_SECRET": "secret",
        "GOOGLE_REFRESH_TOKEN": "refresh",
    }
    with pytest.raises(ConfigError) as e:
        load_config(env=env, base_dir=tmp_path)
    assert "OPENAI_API_KEY" in str(e.value)

    cfg = load_config(env={**env, "OPENAI_API_KEY": "sk-test-1234567890"}, base_dir=tmp_path)
    assert cfg.extractor == "llm"
    assert cfg.log_level == "INFO"


def test_invalid_extractor_rejected(tmp_path: Path) -> None:
    (tmp_path / ".env.example").write_text("", encoding="utf-8")
    with pytest.raises(ConfigError) as e:
        load_config(env={"WCD_EXTRACTOR": "magic"}, base_dir=tmp_path)
    assert "WCD_EXTRACTOR" in str(e.value)


def test_dotenv_profile_overrides(tmp_path: Path) -> None:
    (tmp_path / ".env.example").write_text("WCD_PROFILE=local\n", encoding="utf-8")
    (tmp_path / ".env").write_text("WCD_PROFILE=local\nWCD_LOG_LEVEL=DEBUG\n", encoding="utf-8")
    (tmp_path / ".env.dev").write_text("WCD_LOG_LEVEL=INFO\n", encoding="utf-8")

    cfg = load_config(env={"WCD_PROFILE": "dev"}, base_dir=tmp_path)
    assert cfg.profile == "dev"
    assert cfg.log_level == "INFO"


def test_os_env_wins_over_dotenv(tmp_path: Path) -> None:
    (tmp_path / ".env.example").write_text("", encoding="utf-8")
    (tmp_path / ".env").write_text("WCD_BUSINESS_NAME=From File\n", encoding="utf-8")

    cfg = load_config(env={"WCD_BUSINESS_NAME": "From Env"}, base_dir=tmp_path)
    assert cfg.business_name == "From Env"


def test_safe_dict_redacts_secrets(tmp_path: Path) -> None:
    (tmp_path / ".env.example").write_text("", encoding="utf-8")
    cfg = load_config(
        env={"OPENAI_API_KEY": "sk-abcdefghijklmnop", "GOOGLE_REFRESH_TOKEN": "short"},
        base_dir=tmp_path,
    )
    safe = cfg.to_safe_dict()

    assert "sk-abcdefghijklmnop" not in safe.values()
    assert safe["GOOGLE_REFRESH_TOKEN"] == "********"
