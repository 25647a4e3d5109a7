"""Provider connection settings, credential resolution and SDK client factory."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping, Protocol, runtime_checkable

import httpx
from openai import AsyncOpenAI

from ..services.settings import Settings, redact_secret
from .errors import ClientRequestError, UnknownProviderError
from .models import PROVIDER_PROTOCOLS, WireProtocol, default_model_for

__all__ = [
    "OPENAI_BASE_URL",
    "CHATGPT_BASE_URL",
    "ZAI_BASE_URL",
    "Credentials",
    "CredentialSource",
    "SettingsCredentialSource",
    "ProviderConfig",
    "resolve_provider_config",
    "build_async_client",
]

LOGGER = logging.getLogger(__name__)

OPENAI_BASE_URL = "https://api.openai.com/v1"
CHATGPT_BASE_URL = "https://chatgpt.com/backend-api/codex"
ZAI_BASE_URL = "https://api.z.ai/api/coding/paas/v4"
_ZAI_SOURCE_HEADER = "X-ZAI-Source"
_CHATGPT_ACCOUNT_HEADER = "ChatGPT-Account-Id"
_DEFAULT_BASE_URLS: Mapping[str, str] = {
    "openai": OPENAI_BASE_URL,
    "chatgpt-plus": CHATGPT_BASE_URL,
    "zai": ZAI_BASE_URL,
}


@dataclass(slots=True, frozen=True)
class Credentials:
    """API key or bearer token for one provider, plus any extra auth headers."""

    api_key: str
    base_url: str | None = None
    headers: Mapping[str, str] = field(default_factory=dict)


@runtime_checkable
class CredentialSource(Protocol):
    def __call__(self, provider: str) -> Credentials | None:
        ...


class SettingsCredentialSource:
    """Credential source reading keys held by a :class:`Settings` instance."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def __call__(self, provider: str) -> Credentials | None:
        settings = self._settings
        base_url = settings.base_url if settings.provider == provider else None
        if provider == "openai" and settings.api_key:
            return Credentials(settings.api_key, base_url=base_url)
        if provider == "zai" and settings.zai_api_key:
            return Credentials(settings.zai_api_key, base_url=base_url)
        if provider == "chatgpt-plus" and settings.chatgpt_token:
            headers = {}
            if settings.chatgpt_account_id:
                headers[_CHATGPT_ACCOUNT_HEADER] = settings.chatgpt_account_id
            return Credentials(settings.chatgpt_token, base_url=base_url, headers=headers)
        return None


@dataclass(slots=True, frozen=True)
class ProviderConfig:
    """Immutable connection details for one provider adapter."""

    provider: str
    protocol: WireProtocol
    model: str
    base_url: str
    api_key: str = field(repr=False)
    default_headers: Mapping[str, str] = field(default_factory=dict)
    request_timeout: float = 120.0

    def describe(self) -> str:
        return f"{self.provider}:{self.model} via {self.base_url} (key={redact_secret(self.api_key)})"


def resolve_provider_config(
    provider: str,
    model: str | None,
    credentials: CredentialSource,
    *,
    request_timeout: float = 120.0,
    extra_headers: Mapping[str, str] | None = None,
) -> ProviderConfig:
    """Combine provider defaults with the active credentials.

    Raises:
        UnknownProviderError: If ``provider`` is not one of the supported backends.
        ClientRequestError: If no credential is available for ``provider``.
    """

    protocol = PROVIDER_PROTOCOLS.get(provider)
    if protocol is None:
        raise UnknownProviderError(provider)
    creds = credentials(provider)
    if creds is None or not creds.api_key:
        raise ClientRequestError(f"No API key configured for provider '{provider}'")

    headers: dict[str, str] = dict(extra_headers or {})
    if provider == "zai":
        headers.setdefault(_ZAI_SOURCE_HEADER, "cellwright")
    headers.update(creds.headers)
    config = ProviderConfig(
        provider=provider,
        protocol=protocol,
        model=model or default_model_for(provider),
        base_url=creds.base_url or _DEFAULT_BASE_URLS[provider],
        api_key=creds.api_key,
        default_headers=headers,
        request_timeout=request_timeout,
    )
    LOGGER.debug("Resolved provider config %s", config.describe())
    return config


def build_async_client(config: ProviderConfig) -> AsyncOpenAI:
    """Create the SDK client; retries stay disabled because the core owns them."""

    return AsyncOpenAI(
        api_key=config.api_key,
        base_url=config.base_url,
        default_headers=dict(config.default_headers) or None,
        timeout=httpx.Timeout(config.request_timeout),
        max_retries=0,
    )
