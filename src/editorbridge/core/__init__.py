"""Core error taxonomy and event stream shared across the bridge."""

from .errors import BridgeError, ErrorCode, error_from_payload
from .events import Event, EventBus

__all__ = ["BridgeError", "ErrorCode", "Event", "EventBus", "error_from_payload"]
