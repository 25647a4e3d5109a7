"""Inbound agent surface: chat, cancel and status."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Protocol, Sequence, runtime_checkable

from ...services.settings import Settings
from ...utils.logging import conversation_context
from ..adapters import OptimizationConfig, ProviderAdapter, ReasoningConfig, create_adapter
from ..client import CredentialSource, ProviderConfig, SettingsCredentialSource, resolve_provider_config
from ..errors import AccessDeniedError, OperationCancelledError, classify_error, sanitize_error_message
from ..events import ErrorEvent
from ..models import (
    DEFAULT_MODELS,
    MODEL_CATALOG,
    ModelCapabilityLookup,
    get_model_capabilities,
)
from ..retry import RETRY_DELAYS
from ..tools.native import NativeToolsConfig
from ..tools.registry import ToolRegistry, create_default_registry
from ..tools.router import AgentMode, ToolRouter
from ..tools.selector import decide
from ..tools.types import ToolExecutorFn
from .controller import AgentTurn, EventSink, LoopConfig, LoopOutcome, LoopState, StepLoopController
from .prompts import build_instructions
from .sessions import Session, SessionRegistry

__all__ = [
    "ChatRequest",
    "KnowledgeBase",
    "KnowledgeBaseLookup",
    "OwnershipCheck",
    "AgentService",
]

LOGGER = logging.getLogger(__name__)

AdapterFactory = Callable[[ProviderConfig], ProviderAdapter]


@dataclass(slots=True, frozen=True)
class KnowledgeBase:
    vector_store_id: str
    file_names: Sequence[str] = ()


@runtime_checkable
class KnowledgeBaseLookup(Protocol):
    def __call__(self, conversation_id: str) -> "KnowledgeBase | None | Awaitable[KnowledgeBase | None]":
        ...


@runtime_checkable
class OwnershipCheck(Protocol):
    def __call__(self, conversation_id: str, caller_id: str) -> "bool | Awaitable[bool]":
        ...


@dataclass(slots=True, frozen=True)
class ChatRequest:
    """One inbound agent request."""

    conversation_id: str
    prompt: str
    mode: AgentMode = "agent"
    provider: str | None = None
    model_id: str | None = None
    prior_messages: Sequence[Mapping[str, Any]] = ()
    images: Sequence[str] = ()
    reasoning: ReasoningConfig | None = None
    native_tools: NativeToolsConfig = field(default_factory=NativeToolsConfig)
    previous_response_id: str | None = None
    optimization: OptimizationConfig = field(default_factory=OptimizationConfig)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "ChatRequest":
        """Build a request from the camelCase payload the UI sends."""

        reasoning = payload.get("reasoningConfig")
        optimization = payload.get("optimizationConfig") or {}
        history = [
            {"role": message["role"], "content": message["content"]}
            for message in payload.get("messages") or ()
            if message.get("role") in ("user", "assistant")
        ]
        return cls(
            conversation_id=str(payload["chatId"]),
            prompt=str(payload.get("prompt", "")),
            mode="plan" if payload.get("mode") == "plan" else "agent",
            provider=payload.get("provider"),
            model_id=payload.get("modelId"),
            prior_messages=history,
            images=tuple(_image_urls(payload.get("images") or ())),
            reasoning=ReasoningConfig(
                effort=reasoning.get("effort", "medium"), summary=reasoning.get("summary", "auto")
            )
            if isinstance(reasoning, Mapping)
            else None,
            native_tools=NativeToolsConfig.from_mapping(payload.get("nativeTools")),
            previous_response_id=payload.get("previousResponseId"),
            optimization=OptimizationConfig(
                max_output_tokens=optimization.get("maxOutputTokens"),
                truncation=optimization.get("truncation", "auto"),
                prompt_cache_key=optimization.get("promptCacheKey"),
                prompt_cache_retention=optimization.get("promptCacheRetention"),
                use_flex=bool(optimization.get("useFlex", False)),
            ),
        )


def _image_urls(images: Sequence[Any]) -> list[str]:
    urls = []
    for image in images:
        if isinstance(image, str):
            urls.append(image)
        elif isinstance(image, Mapping) and image.get("data"):
            urls.append(f"data:{image.get('mediaType', 'image/png')};base64,{image['data']}")
    return urls


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class AgentService:
    """Entry point wiring sessions, tools, adapters and the step loop.

    Example:
        service = AgentService(settings=settings, tool_executor=executor)
        await service.chat(ChatRequest("c1", "Create a budget"), caller_id="u1", sink=print)
        service.cancel("c1")
    """

    def __init__(
        self,
        *,
        settings: Settings,
        tool_executor: ToolExecutorFn,
        ownership_check: OwnershipCheck | None = None,
        credentials: CredentialSource | None = None,
        capability_lookup: ModelCapabilityLookup = get_model_capabilities,
        knowledge_base: KnowledgeBaseLookup | None = None,
        registry: ToolRegistry | None = None,
        adapter_factory: AdapterFactory | None = None,
        sessions: SessionRegistry | None = None,
    ) -> None:
        self._settings = settings
        self._ownership_check = ownership_check
        self._credentials = credentials or SettingsCredentialSource(settings)
        self._capabilities = capability_lookup
        self._knowledge_base = knowledge_base
        self._router = ToolRouter(registry or create_default_registry(tool_executor), tool_timeout=settings.tool_timeout)
        self._adapter_factory = adapter_factory or self._default_adapter
        self._sessions = sessions or SessionRegistry()
        self._tasks: set[asyncio.Task[LoopOutcome]] = set()
        self._loop_config = LoopConfig(
            max_steps=settings.max_agent_steps,
            request_timeout=settings.request_timeout,
            flex_request_timeout=settings.flex_request_timeout,
        )

    @property
    def sessions(self) -> SessionRegistry:
        return self._sessions

    # ------------------------------------------------------------------
    # Inbound operations
    # ------------------------------------------------------------------

    async def chat(self, request: ChatRequest, *, caller_id: str, sink: EventSink) -> dict[str, bool]:
        """Accept a request and run it in the background.

        Ownership is checked and the session registered before this returns,
        so a ``cancel`` issued right after the acknowledgement takes effect.

        Raises:
            AccessDeniedError: If the caller does not own the conversation.
        """

        session = await self._open_session(request, caller_id)
        task = asyncio.create_task(
            self._drive(session, request, caller_id, sink), name=f"agent:{request.conversation_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return {"accepted": True}

    async def run(self, request: ChatRequest, *, caller_id: str, sink: EventSink) -> LoopOutcome:
        """Run a request to completion in the current task."""

        session = await self._open_session(request, caller_id)
        return await self._drive(session, request, caller_id, sink)

    def cancel(self, conversation_id: str) -> dict[str, bool]:
        return {"success": self._sessions.cancel(conversation_id)}

    def status(self, model_id: str | None = None, native_tools: NativeToolsConfig | None = None) -> dict[str, Any]:
        """Report providers, models and the tool names available for ``model_id``."""

        model = model_id or self._settings.model or DEFAULT_MODELS.get(self._settings.provider, "")
        capabilities = self._capabilities(model)
        config = native_tools or NativeToolsConfig()
        tools = self._router.registry.list_names()
        tools = [name for name in tools if name != "ExitPlanMode"]
        if capabilities.supports_web_search and not config.web_search_disabled:
            tools.append("web_search")
        if capabilities.supports_code_exec and config.code_interpreter is not None:
            tools.append("code_interpreter")
        if capabilities.supports_file_search and config.file_search is not None:
            tools.append("file_search")
        return {
            "provider": self._settings.provider,
            "model": model,
            "providers": sorted(DEFAULT_MODELS),
            "models": [{"id": item.id, "name": item.name, "provider": item.provider} for item in MODEL_CATALOG],
            "tools": tools,
            "active_sessions": self._sessions.active_ids(),
        }

    async def wait_idle(self) -> list[LoopOutcome]:
        """Wait for every background session started by :meth:`chat`."""

        if not self._tasks:
            return []
        results = await asyncio.gather(*list(self._tasks), return_exceptions=True)
        return [result for result in results if isinstance(result, LoopOutcome)]

    async def aclose(self) -> None:
        """Cancel every active session and wait for background tasks to settle."""

        cancelled = self._sessions.cancel_all()
        if cancelled:
            LOGGER.info("Cancelled %d active session(s) on shutdown", cancelled)
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def _open_session(self, request: ChatRequest, caller_id: str) -> Session:
        if self._ownership_check is not None:
            owned = await _resolve(self._ownership_check(request.conversation_id, caller_id))
            if not owned:
                LOGGER.warning("Caller %s denied access to conversation %s", caller_id, request.conversation_id)
                raise AccessDeniedError(request.conversation_id)
        return self._sessions.register(request.conversation_id)

    async def _drive(self, session: Session, request: ChatRequest, caller_id: str, sink: EventSink) -> LoopOutcome:
        with conversation_context(request.conversation_id):
            return await self._drive_session(session, request, caller_id, sink)

    async def _drive_session(
        self, session: Session, request: ChatRequest, caller_id: str, sink: EventSink
    ) -> LoopOutcome:
        adapter: ProviderAdapter | None = None
        try:
            try:
                adapter, turn = await self._prepare(session, request, caller_id)
            except OperationCancelledError:
                return LoopOutcome(LoopState.CANCELLED)
            except Exception as exc:
                message = sanitize_error_message(exc)
                LOGGER.error(
                    "Session %s failed during setup [%s]: %s",
                    request.conversation_id,
                    classify_error(exc).value,
                    message,
                )
                if session.token.cancelled:
                    return LoopOutcome(LoopState.CANCELLED)
                result = sink(ErrorEvent(message))
                if inspect.isawaitable(result):
                    await result
                return LoopOutcome(LoopState.FAILED, error=message)
            controller = StepLoopController(adapter, self._router, config=self._loop_config)
            return await controller.run(session, turn, sink)
        finally:
            self._sessions.unregister(request.conversation_id, session)
            if adapter is not None:
                await adapter.aclose()

    async def _prepare(
        self, session: Session, request: ChatRequest, caller_id: str
    ) -> tuple[ProviderAdapter, AgentTurn]:
        provider = (request.provider or self._settings.provider).lower()
        model = request.model_id
        if not model and provider == self._settings.provider:
            model = self._settings.model or None
        config = resolve_provider_config(
            provider,
            model,
            self._credentials,
            request_timeout=self._settings.request_timeout,
            extra_headers=self._settings.default_headers,
        )
        capabilities = self._capabilities(config.model)

        knowledge_base: KnowledgeBase | None = None
        if self._knowledge_base is not None and request.mode == "agent" and capabilities.supports_file_search:
            knowledge_base = await _resolve(self._knowledge_base(request.conversation_id))
        session.token.raise_if_cancelled()

        file_names = list(knowledge_base.file_names) if knowledge_base else []
        decision = decide(request.prompt, file_names, knowledge_base is not None)
        native = request.native_tools
        if knowledge_base is not None:
            native = native.with_file_search(knowledge_base.vector_store_id, 10)
        LOGGER.info(
            "Retrieval decision for %s: force_restricted=%s web_search=%s/%s",
            request.conversation_id,
            decision.force_restricted_retrieval,
            decision.web_search.enabled,
            decision.web_search.context_size,
        )

        tool_set = self._router.build_tool_set(
            request.mode,
            capabilities,
            decision,
            provider=provider,
            native_config=native,
        )
        turn = AgentTurn(
            conversation_id=request.conversation_id,
            caller_id=caller_id,
            prompt=request.prompt,
            instructions=build_instructions(request.mode, knowledge_base_files=file_names),
            tool_set=tool_set,
            history=tuple(request.prior_messages),
            images=tuple(request.images) if capabilities.supports_images else (),
            reasoning=request.reasoning if capabilities.supports_reasoning else None,
            optimization=request.optimization,
            previous_response_id=request.previous_response_id,
        )
        return self._adapter_factory(config), turn

    def _default_adapter(self, config: ProviderConfig) -> ProviderAdapter:
        delays = tuple(self._settings.retry_delays) if self._settings.retry_delays is not None else RETRY_DELAYS
        return create_adapter(config, retry_delays=delays)

    def _task_done(self, task: asyncio.Task[LoopOutcome]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            LOGGER.error("Agent task %s crashed", task.get_name(), exc_info=error)
