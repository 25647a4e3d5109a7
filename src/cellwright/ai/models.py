"""Model catalog and capability lookup."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Mapping, Protocol, Sequence, runtime_checkable

__all__ = [
    "ProviderId",
    "WireProtocol",
    "ModelCapabilities",
    "ModelDefinition",
    "ModelCapabilityLookup",
    "MODEL_CATALOG",
    "DEFAULT_MODELS",
    "PROVIDER_PROTOCOLS",
    "get_model",
    "get_model_capabilities",
    "models_for_provider",
    "default_model_for",
]

ProviderId = Literal["openai", "chatgpt-plus", "zai"]
WireProtocol = Literal["event-stream", "delta-chunk"]


@dataclass(slots=True, frozen=True)
class ModelCapabilities:
    """Feature flags a model declares; unknown models get none of the native extras."""

    supports_tools: bool = True
    supports_reasoning: bool = False
    supports_web_search: bool = False
    supports_code_exec: bool = False
    supports_file_search: bool = False
    supports_images: bool = False


@dataclass(slots=True, frozen=True)
class ModelDefinition:
    id: str
    name: str
    provider: ProviderId
    capabilities: ModelCapabilities


@runtime_checkable
class ModelCapabilityLookup(Protocol):
    """Resolve a model id to the capabilities it declares."""

    def __call__(self, model_id: str) -> ModelCapabilities:
        ...


_FULL = ModelCapabilities(
    supports_reasoning=True,
    supports_web_search=True,
    supports_code_exec=True,
    supports_file_search=True,
    supports_images=True,
)
_CODEX = ModelCapabilities(supports_reasoning=True, supports_web_search=True, supports_images=True)
_GLM = ModelCapabilities(supports_reasoning=True, supports_web_search=True)

MODEL_CATALOG: tuple[ModelDefinition, ...] = (
    ModelDefinition("gpt-5", "GPT-5", "openai", _FULL),
    ModelDefinition("gpt-5-mini", "GPT-5 Mini", "openai", _FULL),
    ModelDefinition("gpt-5-nano", "GPT-5 Nano", "openai", _FULL),
    ModelDefinition("gpt-5.1-codex-max", "GPT-5.1 Codex Max", "chatgpt-plus", _CODEX),
    ModelDefinition("gpt-5.1-codex", "GPT-5.1 Codex", "chatgpt-plus", _CODEX),
    ModelDefinition("gpt-5.1-codex-mini", "GPT-5.1 Codex Mini", "chatgpt-plus", _CODEX),
    ModelDefinition("GLM-4.7", "GLM 4.7", "zai", _GLM),
    ModelDefinition("GLM-4.5-air", "GLM 4.5 Air", "zai", _GLM),
)

DEFAULT_MODELS: Mapping[str, str] = {
    "openai": "gpt-5",
    "chatgpt-plus": "gpt-5.1-codex-max",
    "zai": "GLM-4.7",
}

PROVIDER_PROTOCOLS: Mapping[str, WireProtocol] = {
    "openai": "event-stream",
    "chatgpt-plus": "event-stream",
    "zai": "delta-chunk",
}

_BY_ID: Mapping[str, ModelDefinition] = {model.id.lower(): model for model in MODEL_CATALOG}
_NO_CAPABILITIES = ModelCapabilities()


def get_model(model_id: str | None) -> ModelDefinition | None:
    if not model_id:
        return None
    return _BY_ID.get(model_id.strip().lower())


def get_model_capabilities(model_id: str) -> ModelCapabilities:
    """Default :class:`ModelCapabilityLookup` backed by :data:`MODEL_CATALOG`."""

    model = get_model(model_id)
    return model.capabilities if model is not None else _NO_CAPABILITIES


def models_for_provider(provider: str) -> Sequence[ModelDefinition]:
    return tuple(model for model in MODEL_CATALOG if model.provider == provider)


def default_model_for(provider: str) -> str:
    try:
        return DEFAULT_MODELS[provider]
    except KeyError:
        raise KeyError(f"Unknown provider '{provider}'") from None
