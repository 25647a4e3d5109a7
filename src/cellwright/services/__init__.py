"""Service layer: configuration and persistence helpers."""

from .settings import Settings, SettingsStore, redact_secret

__all__ = ["Settings", "SettingsStore", "redact_secret"]
