"""Command-line entry points for the editor bridge host and client."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
import threading
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .bridge.client import BridgeClient
from .bridge.dispatcher import RequestDispatcher
from .bridge.executor import ThreadedMainLoop
from .bridge.handlers import ProjectHandlers
from .bridge.server import BridgeServer
from .core.errors import BridgeError
from .core.events import EventBus
from .diagnostics.aggregator import DiagnosticsAggregator
from .diagnostics.models import Severity
from .diagnostics.sources import default_sources
from .project.workspace import ProjectWorkspace
from .refresh.coordinator import RefreshCoordinator
from .refresh.markers import MarkerWriter
from .services.settings import BridgeSettings, SettingsStore
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_LOGGER = logging.getLogger(__name__)
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2


@dataclass(slots=True)
class HostRuntime:
    """Everything :func:`build_host` wires together for one project."""

    settings: BridgeSettings
    workspace: ProjectWorkspace
    bus: EventBus
    coordinator: RefreshCoordinator
    aggregator: DiagnosticsAggregator
    main_loop: ThreadedMainLoop
    server: BridgeServer

    def start(self) -> tuple[str, int]:
        self.main_loop.start()
        return self.server.start()

    def stop(self) -> None:
        self.server.stop()
        self.main_loop.stop()
        self.coordinator.close()


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    """Configure structured logging for the process."""

    level = logging.DEBUG if debug else logging.INFO
    logging_utils.setup_logging(level, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> BridgeSettings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        settings = active_store.load(overrides=overrides)
    except (OSError, ValueError) as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        settings = BridgeSettings()
    return settings


def build_aggregator(settings: BridgeSettings, workspace: ProjectWorkspace, **kwargs: Any) -> DiagnosticsAggregator:
    sources = default_sources(log_path=settings.editor_log_path, tail_lines=settings.log_tail_lines)
    return DiagnosticsAggregator(
        workspace.root,
        sources,
        cache_ttl=settings.diagnostics_cache_ttl,
        context_lines=settings.context_lines,
        poll_delay=settings.diagnostics_poll_delay,
        **kwargs,
    )


def build_host(settings: BridgeSettings, project: Path | str) -> HostRuntime:
    """Wire the workspace, refresh coordinator, diagnostics and bridge server."""

    workspace = ProjectWorkspace(project)
    bus = EventBus()
    coordinator = RefreshCoordinator(
        MarkerWriter(workspace.temp_dir),
        idle_timeout=settings.batch_idle_timeout,
        lock_expiry=settings.lock_expiry,
        bus=bus,
    )
    aggregator = build_aggregator(
        settings,
        workspace,
        recompile=lambda: coordinator.request_refresh(
            force_recompile=True, recompile_scripts=True, reason="diagnostics"
        ),
    )
    aggregator.attach(bus)
    handlers = ProjectHandlers(workspace, coordinator, aggregator)
    main_loop = ThreadedMainLoop()
    dispatcher = RequestDispatcher(
        handlers.handler_table(),
        main_loop.executor,
        main_thread_timeout=settings.main_thread_timeout,
    )
    server = BridgeServer(
        dispatcher,
        host=settings.host,
        port=settings.port,
        worker_pool_size=settings.worker_pool_size,
        bus=bus,
    )
    return HostRuntime(
        settings=settings,
        workspace=workspace,
        bus=bus,
        coordinator=coordinator,
        aggregator=aggregator,
        main_loop=main_loop,
        server=server,
    )


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the `editorbridge` console script."""

    parser = _build_parser()
    args = parser.parse_args(argv)

    debug = bool(args.debug) or _env_flag("EDITORBRIDGE_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("EDITORBRIDGE_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        return EXIT_USAGE

    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return EXIT_OK

    if settings.debug_logging and not debug:
        configure_logging(True, force=True)

    if args.command is None:
        parser.print_help(sys.stderr)
        return EXIT_USAGE
    if args.command == "serve":
        return _run_serve(settings, args)
    if args.command == "call":
        return _run_call(settings, args)
    return _run_diagnostics(settings, args)


def _run_serve(settings: BridgeSettings, args: argparse.Namespace, *, stop: threading.Event | None = None) -> int:
    project = args.project or settings.project_path
    if not project:
        print("serve requires --project or a project_path setting", file=sys.stderr)
        return EXIT_USAGE
    if not Path(project).is_dir():
        print(f"Project folder not found: {project}", file=sys.stderr)
        return EXIT_USAGE
    runtime = build_host(settings, project)
    try:
        host, port = runtime.start()
    except OSError as exc:
        _LOGGER.error("Unable to start bridge on %s:%d: %s", settings.host, settings.port, exc)
        runtime.stop()
        return EXIT_FAILURE
    _LOGGER.info("Serving %s on %s:%d", runtime.workspace.name, host, port)
    waiter = stop or threading.Event()
    try:
        while not waiter.wait(0.5):
            pass
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
        _LOGGER.info("Shutdown requested by user.")
    finally:
        runtime.stop()
    return EXIT_OK


def _run_call(settings: BridgeSettings, args: argparse.Namespace, *, stream: TextIO | None = None) -> int:
    destination = stream or sys.stdout
    try:
        params = json.loads(args.params) if args.params else {}
    except json.JSONDecodeError as exc:
        print(f"--params must be a JSON object: {exc}", file=sys.stderr)
        return EXIT_USAGE
    if not isinstance(params, dict):
        print("--params must be a JSON object", file=sys.stderr)
        return EXIT_USAGE

    async def _invoke() -> Any:
        async with BridgeClient(settings) as client:
            return await client.call(args.method, params, timeout=args.timeout)

    try:
        result = asyncio.run(_invoke())
    except BridgeError as exc:
        json.dump({"error": exc.to_dict()}, destination, indent=2)
        destination.write("\n")
        return EXIT_FAILURE
    json.dump({"result": result}, destination, indent=2)
    destination.write("\n")
    return EXIT_OK


def _run_diagnostics(settings: BridgeSettings, args: argparse.Namespace, *, stream: TextIO | None = None) -> int:
    """Read diagnostics straight from the project's artifacts, without a running host."""

    destination = stream or sys.stdout
    project = args.project or settings.project_path
    if not project or not Path(project).is_dir():
        print("diagnostics requires an existing --project folder", file=sys.stderr)
        return EXIT_USAGE
    workspace = ProjectWorkspace(project)
    aggregator = build_aggregator(settings, workspace)
    records = aggregator.collect(fresh=True, include_warnings=not args.errors_only)
    payload = {
        "diagnostics": [record.to_dict() for record in records],
        "errorCount": sum(1 for record in records if record.severity is Severity.ERROR),
        "status": aggregator.status().to_dict(),
    }
    json.dump(payload, destination, indent=2)
    destination.write("\n")
    return EXIT_FAILURE if payload["errorCount"] else EXIT_OK


def _env_flag(name: str, *, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    return default


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="editorbridge",
        add_help=True,
        description="Run the editor bridge host, call it, or inspect project diagnostics.",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.editorbridge/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")

    commands = parser.add_subparsers(dest="command")
    serve = commands.add_parser("serve", help="Host the bridge for a project folder.")
    serve.add_argument("--project", metavar="PATH", help="Project root to serve.")

    call = commands.add_parser("call", help="Invoke one bridge method and print the JSON result.")
    call.add_argument("method", help="Catalog method name, e.g. script/read.")
    call.add_argument("--params", metavar="JSON", help="Method parameters as a JSON object.")
    call.add_argument("--timeout", type=float, default=None, help="Seconds to wait for the response.")

    diagnostics = commands.add_parser("diagnostics", help="Print compiler diagnostics for a project.")
    diagnostics.add_argument("--project", metavar="PATH", help="Project root to inspect.")
    diagnostics.add_argument("--errors-only", action="store_true", help="Drop warnings from the output.")
    return parser


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = BridgeSettings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(BridgeSettings)
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

    if normalized.lower() in {"none", "null"} and _is_optional(annotation):
        return None
    if target is str or target is Any:
        return normalized
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    return normalized


def _is_optional(annotation: Any) -> bool:
    return type(None) in get_args(annotation)


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return args[0]


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: BridgeSettings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    payload = asdict(settings)
    metadata = {
        "path": str(store.path),
        "client_timeout": settings.client_timeout,
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    json.dump({"settings": payload, "meta": metadata}, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("EDITORBRIDGE_"))


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
