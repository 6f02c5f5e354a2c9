"""Settings dataclass and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

__all__ = ["BridgeSettings", "SettingsStore", "DEFAULT_PORT"]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".editorbridge"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
DEFAULT_PORT = 23456
_ENV_OVERRIDES: Mapping[str, str] = {
    "EDITORBRIDGE_HOST": "host",
    "EDITORBRIDGE_PROJECT_PATH": "project_path",
    "EDITORBRIDGE_EDITOR_LOG": "editor_log_path",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "EDITORBRIDGE_DEBUG_LOGGING": "debug_logging",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "EDITORBRIDGE_CONNECT_TIMEOUT": "connect_timeout",
    "EDITORBRIDGE_MAIN_THREAD_TIMEOUT": "main_thread_timeout",
    "EDITORBRIDGE_BATCH_IDLE_TIMEOUT": "batch_idle_timeout",
    "EDITORBRIDGE_LOCK_EXPIRY": "lock_expiry",
    "EDITORBRIDGE_DIAGNOSTICS_CACHE_TTL": "diagnostics_cache_ttl",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "EDITORBRIDGE_PORT": "port",
    "EDITORBRIDGE_CONNECT_RETRIES": "connect_retries",
    "EDITORBRIDGE_WORKER_POOL_SIZE": "worker_pool_size",
    "EDITORBRIDGE_LOG_TAIL_LINES": "log_tail_lines",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}


@dataclass(slots=True)
class BridgeSettings:
    """Tunables shared by the bridge host, the client and the CLI."""

    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    project_path: str | None = None
    connect_timeout: float = 3.0
    connect_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    # The host may be busy or unfocused; main-thread calls get a generous deadline.
    main_thread_timeout: float = 30.0
    client_timeout_margin: float = 5.0
    worker_pool_size: int = 4
    batch_idle_timeout: float = 5.0
    lock_expiry: float = 1.0
    diagnostics_cache_ttl: float = 5.0
    diagnostics_poll_delay: float = 2.0
    log_tail_lines: int = 1_000
    context_lines: int = 2
    editor_log_path: str | None = None
    debug_logging: bool = False

    @property
    def client_timeout(self) -> float:
        """Deadline the client waits for a response before giving up."""

        return self.main_thread_timeout + self.client_timeout_margin


class SettingsStore:
    """Persistence adapter for :class:`BridgeSettings`."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH

    @property
    def path(self) -> Path:
        """Return the resolved path backing this store."""

        return self._path

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> BridgeSettings:
        """Load settings from disk, applying CLI/environment overrides when present."""

        payload = self._read_payload()
        settings = BridgeSettings()
        if payload:
            data = _filter_fields(payload)
            try:
                settings = BridgeSettings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = BridgeSettings()
            LOGGER.debug("Settings loaded from %s (%d fields)", self._path, len(data))

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")

        return self._apply_env_overrides(settings)

    def save(self, settings: BridgeSettings) -> Path:
        """Persist settings to disk with atomic file writes."""

        payload = asdict(settings)
        payload["version"] = _SETTINGS_VERSION
        body = json.dumps(payload, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

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
            LOGGER.warning("Settings file %s does not contain a JSON object", self._path)
            return {}
        return payload

    def _apply_overrides(
        self,
        settings: BridgeSettings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> BridgeSettings:
        allowed = {field.name for field in fields(BridgeSettings)}
        filtered: Dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in allowed or value is None:
                continue
            filtered[key] = value
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: BridgeSettings) -> BridgeSettings:
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
    allowed = {field.name for field in fields(BridgeSettings)}
    return {key: value for key, value in payload.items() if key in allowed}
