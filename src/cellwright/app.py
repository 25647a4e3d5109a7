"""Command-line entry point running one agent request against a dry-run executor."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, get_args, get_origin, get_type_hints

from .ai.adapters import OptimizationConfig
from .ai.errors import AgentError
from .ai.events import StreamEvent
from .ai.orchestration import AgentService, ChatRequest, LoopOutcome, LoopState
from .ai.tools.native import CodeInterpreterConfig, NativeToolsConfig
from .ai.tools.types import ToolContext
from .services.settings import SECRET_FIELDS, Settings, SettingsStore, redact_secret
from .utils import logging as logging_utils

_LOGGER = logging.getLogger(__name__)
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}


def configure_logging(settings: Settings, *, debug: bool = False, force: bool = False) -> None:
    path = logging_utils.setup_from_settings(settings.debug_logging, debug=debug, force=force)
    _LOGGER.debug("Logging to %s (debug=%s)", path, debug or settings.debug_logging)


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except (OSError, ValueError) as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        return Settings()


class DryRunToolExecutor:
    """Executor that records each call and echoes its arguments back."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, Dict[str, Any]]] = []

    def __call__(
        self,
        name: str,
        args: Mapping[str, Any],
        conversation_id: str,
        caller_id: str,
        context: ToolContext | None = None,
    ) -> Dict[str, Any]:
        self.calls.append((name, dict(args)))
        _LOGGER.info("Dry run: %s(%s) for %s", name, json.dumps(dict(args), sort_keys=True), conversation_id)
        return {"success": True, "tool": name, "echo": dict(args), "dryRun": True}


# -----------------------------------------------------------------------------
# CLI parsing
# -----------------------------------------------------------------------------


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="cellwright",
        description="Run one agent request and print canonical events as JSON lines.",
    )
    parser.add_argument("prompt", nargs="?", help="User prompt to send to the agent.")
    parser.add_argument("--conversation", default="cli", help="Conversation identifier (default: cli).")
    parser.add_argument("--mode", choices=("agent", "plan"), default="agent")
    parser.add_argument("--provider", help="Provider id: openai, chatgpt-plus or zai.")
    parser.add_argument("--model", help="Model id; defaults to the provider's default model.")
    parser.add_argument("--no-web-search", action="store_true", help="Never offer native web search.")
    parser.add_argument("--code-interpreter", action="store_true", help="Enable the code interpreter.")
    parser.add_argument("--flex", action="store_true", help="Request the flex service tier.")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument("--status", action="store_true", help="Print providers, models and tools, then exit.")
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.cellwright/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    return parser.parse_args(argv)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        annotation = type_hints.get(key, fields[key].type)
        overrides[key] = _coerce_value(annotation, raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    target = _resolve_annotation(annotation)
    normalized = raw_value.strip()

    if normalized.lower() in {"none", "null"} and type(None) in get_args(annotation):
        return None
    if target is str or target is Any:
        return normalized
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    if target in (list, dict):
        try:
            value = json.loads(normalized or ("[]" if target is list else "{}"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Override must be valid JSON ({target.__name__})") from exc
        if not isinstance(value, target):
            raise ValueError(f"Override must be a JSON {target.__name__}")
        return value
    return normalized


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin in {list, dict}:
        return origin
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return _resolve_annotation(args[0])


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(settings: Settings, store: SettingsStore, stream: Any = None) -> None:
    payload: Dict[str, Any] = {}
    for name in Settings.__dataclass_fields__:  # type: ignore[attr-defined]
        value = getattr(settings, name)
        payload[name] = redact_secret(value) if name in SECRET_FIELDS else value
    document = {"path": str(store.path), "settings": payload}
    print(json.dumps(document, indent=2, sort_keys=True), file=stream or sys.stdout)


def _build_request(args: argparse.Namespace) -> ChatRequest:
    return ChatRequest(
        conversation_id=args.conversation,
        prompt=args.prompt,
        mode=args.mode,
        provider=args.provider,
        model_id=args.model,
        native_tools=NativeToolsConfig(
            code_interpreter=CodeInterpreterConfig() if args.code_interpreter else None,
            web_search_disabled=args.no_web_search,
        ),
        optimization=OptimizationConfig(use_flex=args.flex),
    )


def _print_event(event: StreamEvent) -> None:
    print(json.dumps(event.to_dict(), default=str), flush=True)


async def _run_once(service: AgentService, request: ChatRequest) -> LoopOutcome:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, service.cancel, request.conversation_id)
    except (NotImplementedError, RuntimeError):
        _LOGGER.debug("SIGINT handler unavailable; Ctrl+C will abort without a clean cancel")
    try:
        return await service.run(request, caller_id="cli", sink=_print_event)
    finally:
        await service.aclose()


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point used by ``cellwright``; returns the process exit code."""

    args = _parse_cli_args(argv)
    try:
        overrides = _coerce_cli_overrides(args.overrides)
    except ValueError as exc:
        print(f"cellwright: {exc}", file=sys.stderr)
        return 2

    store = SettingsStore(Path(args.settings_path) if args.settings_path else None)
    settings = load_settings(store=store, overrides=overrides)
    configure_logging(settings, debug=args.debug)

    if args.dump_settings:
        _dump_settings(settings, store)
        return 0

    service = AgentService(settings=settings, tool_executor=DryRunToolExecutor())
    if args.status:
        print(json.dumps(service.status(args.model), indent=2))
        return 0
    if not args.prompt:
        print("cellwright: a prompt is required", file=sys.stderr)
        return 2

    try:
        outcome = asyncio.run(_run_once(service, _build_request(args)))
    except AgentError as exc:
        print(f"cellwright: {exc}", file=sys.stderr)
        return 1
    _LOGGER.info("Run finished: %s (%d steps)", outcome.state.value, outcome.total_steps)
    return 0 if outcome.state is LoopState.DONE else 1


if __name__ == "__main__":  # pragma: no cover - CLI entry
    sys.exit(main())
