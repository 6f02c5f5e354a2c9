"""Service layer helpers (settings persistence)."""

from .settings import DEFAULT_PORT, BridgeSettings, SettingsStore

__all__ = ["BridgeSettings", "DEFAULT_PORT", "SettingsStore"]
