"""Tests for the settings persistence layer."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from cellwright.services.settings import Settings, SettingsStore, redact_secret


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "CELLWRIGHT_SETTINGS_PATH",
        "CELLWRIGHT_PROVIDER",
        "CELLWRIGHT_MODEL",
        "CELLWRIGHT_BASE_URL",
        "CELLWRIGHT_API_KEY",
        "CELLWRIGHT_ZAI_API_KEY",
        "CELLWRIGHT_CHATGPT_TOKEN",
        "CELLWRIGHT_CHATGPT_ACCOUNT_ID",
        "CELLWRIGHT_DEBUG_LOGGING",
        "CELLWRIGHT_REQUEST_TIMEOUT",
        "CELLWRIGHT_FLEX_REQUEST_TIMEOUT",
        "CELLWRIGHT_TOOL_TIMEOUT",
        "CELLWRIGHT_MAX_AGENT_STEPS",
    ):
        monkeypatch.delenv(name, raising=False)


def test_load_returns_defaults_when_file_missing(tmp_path: Path) -> None:
    settings = SettingsStore(tmp_path / "settings.json").load()

    assert settings == Settings()
    assert settings.max_agent_steps == 15
    assert settings.retry_delays == [0.5, 1.0, 2.0]


def test_save_and_load_roundtrip_without_secrets(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    original = Settings(
        provider="zai",
        model="GLM-4.7",
        api_key="sk-super-secret",
        zai_api_key="zai-secret",
        request_timeout=60.0,
        default_headers={"X-Test": "1"},
        metadata={"env": "dev"},
    )

    SettingsStore(path).save(original)
    stored = json.loads(path.read_text(encoding="utf-8"))
    reloaded = SettingsStore(path).load()

    assert "api_key" not in stored
    assert "zai_api_key" not in stored
    assert stored["version"] == 1
    assert reloaded.provider == "zai"
    assert reloaded.model == "GLM-4.7"
    assert reloaded.api_key == ""
    assert reloaded.default_headers == {"X-Test": "1"}


def test_secrets_in_file_are_ignored(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"api_key": "sk-leaked", "model": "gpt-5"}), encoding="utf-8")

    settings = SettingsStore(path).load()

    assert settings.api_key == ""
    assert settings.model == "gpt-5"


def test_invalid_json_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")

    assert SettingsStore(path).load() == Settings()


def test_environment_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CELLWRIGHT_PROVIDER", "ZAI")
    monkeypatch.setenv("CELLWRIGHT_ZAI_API_KEY", "zai-key")
    monkeypatch.setenv("CELLWRIGHT_MAX_AGENT_STEPS", "7")
    monkeypatch.setenv("CELLWRIGHT_REQUEST_TIMEOUT", "30")
    monkeypatch.setenv("CELLWRIGHT_DEBUG_LOGGING", "yes")
    monkeypatch.setenv("CELLWRIGHT_TOOL_TIMEOUT", "soon")

    settings = SettingsStore(tmp_path / "settings.json").load()

    assert settings.provider == "zai"
    assert settings.zai_api_key == "zai-key"
    assert settings.max_agent_steps == 7
    assert settings.request_timeout == 30.0
    assert settings.debug_logging is True
    assert settings.tool_timeout == 60.0


def test_cli_overrides_merge_metadata(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    SettingsStore(path).save(Settings(metadata={"a": 1}))

    settings = SettingsStore(path).load(overrides={"metadata": {"b": 2}, "model": "gpt-5-nano", "unknown": 1})

    assert settings.metadata == {"a": 1, "b": 2}
    assert settings.model == "gpt-5-nano"


def test_environment_wins_over_cli(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CELLWRIGHT_MODEL", "gpt-5")

    settings = SettingsStore(tmp_path / "settings.json").load(overrides={"model": "gpt-5-mini"})

    assert settings.model == "gpt-5"


def test_settings_path_from_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    target = tmp_path / "custom.json"
    monkeypatch.setenv("CELLWRIGHT_SETTINGS_PATH", str(target))

    assert SettingsStore().path == target


def test_normalize_clamps_invalid_values(tmp_path: Path) -> None:
    settings = SettingsStore(tmp_path / "settings.json").load(
        overrides={"max_agent_steps": 0, "retry_delays": [-1, 2]}
    )

    assert settings.max_agent_steps == 1
    assert settings.retry_delays == [0.0, 2.0]


@pytest.mark.parametrize(
    ("value", "expected"),
    [("", ""), ("abc", "***"), ("sk-123456", "sk*****56")],
)
def test_redact_secret(value: str, expected: str) -> None:
    assert redact_secret(value) == expected
