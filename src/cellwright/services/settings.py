"""Settings dataclass and JSON persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

__all__ = [
    "Settings",
    "SettingsStore",
    "SECRET_FIELDS",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".cellwright"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_PATH_ENV = "CELLWRIGHT_SETTINGS_PATH"
_SETTINGS_VERSION = 1
_ENV_OVERRIDES: Mapping[str, str] = {
    "CELLWRIGHT_PROVIDER": "provider",
    "CELLWRIGHT_MODEL": "model",
    "CELLWRIGHT_BASE_URL": "base_url",
    "CELLWRIGHT_API_KEY": "api_key",
    "CELLWRIGHT_ZAI_API_KEY": "zai_api_key",
    "CELLWRIGHT_CHATGPT_TOKEN": "chatgpt_token",
    "CELLWRIGHT_CHATGPT_ACCOUNT_ID": "chatgpt_account_id",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "CELLWRIGHT_DEBUG_LOGGING": "debug_logging",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "CELLWRIGHT_REQUEST_TIMEOUT": "request_timeout",
    "CELLWRIGHT_FLEX_REQUEST_TIMEOUT": "flex_request_timeout",
    "CELLWRIGHT_TOOL_TIMEOUT": "tool_timeout",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "CELLWRIGHT_MAX_AGENT_STEPS": "max_agent_steps",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}

SECRET_FIELDS: frozenset[str] = frozenset({"api_key", "zai_api_key", "chatgpt_token"})


@dataclass(slots=True)
class Settings:
    """User-configurable runtime settings.

    Credentials live here only for the lifetime of the process; they are never
    written by :class:`SettingsStore`.
    """

    provider: str = "openai"
    model: str = ""
    base_url: str | None = None
    api_key: str = ""
    zai_api_key: str = ""
    chatgpt_token: str = ""
    chatgpt_account_id: str | None = None
    request_timeout: float = 120.0
    flex_request_timeout: float = 900.0
    max_agent_steps: int = 15
    tool_timeout: float | None = 60.0
    retry_delays: list[float] = field(default_factory=lambda: [0.5, 1.0, 2.0])
    default_headers: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    debug_logging: bool = False


class SettingsStore:
    """Load and persist :class:`Settings` as JSON on disk."""

    def __init__(self, path: Path | None = None) -> None:
        env_path = os.environ.get(_SETTINGS_PATH_ENV)
        self._path = Path(path or env_path or _DEFAULT_SETTINGS_PATH).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, applying CLI/environment overrides when present."""

        payload = self._read_payload()
        settings = Settings()
        if payload:
            data = _filter_fields(payload)
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
            if payload.get("version") != _SETTINGS_VERSION:
                LOGGER.debug("Settings file %s has version %s", self._path, payload.get("version"))

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")

        settings = self._apply_env_overrides(settings)
        settings = _normalize(settings)
        LOGGER.debug(
            "Settings loaded from %s: provider=%s model=%s api_key=%s",
            self._path,
            settings.provider,
            settings.model or "<default>",
            redact_secret(settings.api_key or settings.zai_api_key or settings.chatgpt_token),
        )
        return settings

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        payload = self._serialize(settings)
        body = json.dumps(payload, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _serialize(self, settings: Settings) -> Dict[str, Any]:
        data = asdict(settings)
        for secret in SECRET_FIELDS:
            data.pop(secret, None)
        data["version"] = _SETTINGS_VERSION
        return data

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            text = self._path.read_text(encoding="utf-8")
            payload = json.loads(text)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Settings file %s does not contain an object", self._path)
            return {}
        return payload

    def _apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> Settings:
        allowed = {field.name for field in fields(Settings)}
        filtered: Dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in allowed or value is None:
                continue
            filtered[key] = value
        metadata_override = filtered.get("metadata")
        if isinstance(metadata_override, Mapping):
            merged_metadata = dict(settings.metadata or {})
            merged_metadata.update(metadata_override)
            filtered["metadata"] = merged_metadata
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _INT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = int(value, 10)
            except ValueError:
                LOGGER.warning(
                    "Environment override %s=%s is not a valid integer",
                    env_name,
                    value,
                )
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning(
                    "Environment override %s=%s is not a valid float", env_name, value
                )
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {field.name for field in fields(Settings)} - SECRET_FIELDS
    result: Dict[str, Any] = {}
    for key, value in payload.items():
        if key not in allowed:
            continue
        result[key] = value
    return result


def _normalize(settings: Settings) -> Settings:
    provider = (settings.provider or "openai").strip().lower()
    steps = settings.max_agent_steps
    if steps < 1:
        LOGGER.warning("max_agent_steps=%s is invalid; using 1", steps)
        steps = 1
    delays = [max(0.0, float(value)) for value in settings.retry_delays or []]
    return replace(settings, provider=provider, max_agent_steps=steps, retry_delays=delays)


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
