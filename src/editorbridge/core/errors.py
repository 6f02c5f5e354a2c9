"""Standardized error types for the editor bridge.

Every failure that crosses the wire carries a stable ``error_code`` so that
clients can branch on the kind of failure instead of parsing messages.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Mapping


# -----------------------------------------------------------------------------
# Error Code Constants
# -----------------------------------------------------------------------------

class ErrorCode:
    """Constants for the error kinds reported by the bridge."""

    # Transport errors
    CONNECTION = "connection_error"
    CONNECTION_CLOSED = "connection_closed"
    TIMEOUT = "timeout"
    PROTOCOL = "protocol_error"

    # Patch errors
    LOCATOR = "locator"
    CONTEXT_MISMATCH = "context_mismatch"

    # Project errors
    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"

    # Diagnostics errors
    PARSE = "parse"

    # Request errors
    INVALID_PARAMETER = "invalid_parameter"
    METHOD_NOT_FOUND = "method_not_found"
    INTERNAL_ERROR = "internal_error"


# -----------------------------------------------------------------------------
# Base Error Class
# -----------------------------------------------------------------------------

@dataclass
class BridgeError(Exception):
    """Base exception class for all bridge errors.

    Attributes:
        error_code: Machine-readable error identifier.
        message: Human-readable error description.
        details: Additional structured error information.
        suggestion: Actionable guidance for recovery.
    """

    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""

    # True when the operation may still complete after the error was raised
    ambiguous: ClassVar[bool] = False

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the ``error`` member of a bridge response."""
        result: dict[str, Any] = {
            "kind": self.error_code,
            "message": self.message,
            "ambiguous": self.ambiguous,
        }
        if self.details:
            result["details"] = dict(self.details)
        if self.suggestion:
            result["suggestion"] = self.suggestion
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


# -----------------------------------------------------------------------------
# Transport Errors
# -----------------------------------------------------------------------------

@dataclass
class BridgeConnectionError(BridgeError):
    """No listener is reachable at the configured address."""

    error_code: str = field(default=ErrorCode.CONNECTION)
    message: str = field(default="Unable to reach the host bridge")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Make sure the host editor is running, then retry")


@dataclass
class ConnectionClosedError(BridgeError):
    """The connection dropped while a request was outstanding."""

    error_code: str = field(default=ErrorCode.CONNECTION_CLOSED)
    message: str = field(default="Connection to the host bridge was closed")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Reconnect and check whether the operation took effect")


@dataclass
class BridgeTimeoutError(BridgeError):
    """A call exceeded its deadline. The host may still complete it later."""

    error_code: str = field(default=ErrorCode.TIMEOUT)
    message: str = field(default="Request timed out; the host may be busy or unfocused")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Verify the project state before retrying")

    ambiguous: ClassVar[bool] = True


@dataclass
class ProtocolError(BridgeError):
    """A message on the wire could not be decoded."""

    error_code: str = field(default=ErrorCode.PROTOCOL)
    message: str = field(default="Malformed bridge message")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")


# -----------------------------------------------------------------------------
# Patch Errors
# -----------------------------------------------------------------------------

@dataclass
class LocatorError(BridgeError):
    """A patch target could not be resolved to exactly one line range."""

    error_code: str = field(default=ErrorCode.LOCATOR)
    message: str = field(default="Patch target not found")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Read the file again and adjust the locator")

    @property
    def reason(self) -> str | None:
        return self.details.get("reason")


@dataclass
class ContextMismatchError(BridgeError):
    """Lines around a resolved region did not match the expected context."""

    error_code: str = field(default=ErrorCode.CONTEXT_MISMATCH)
    message: str = field(default="Patch context does not match the file")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Read the file again and refresh the context lines")

    @property
    def expected(self) -> str | None:
        return self.details.get("expected")

    @property
    def actual(self) -> str | None:
        return self.details.get("actual")


# -----------------------------------------------------------------------------
# Project Errors
# -----------------------------------------------------------------------------

@dataclass
class NotFoundError(BridgeError):
    """A file or folder does not exist."""

    error_code: str = field(default=ErrorCode.NOT_FOUND)
    message: str = field(default="Path not found")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")

    @classmethod
    def for_path(cls, path: str, *, kind: str = "file") -> "NotFoundError":
        return cls(message=f"{kind.capitalize()} not found: {path}", details={"path": path, "kind": kind})


@dataclass
class AlreadyExistsError(BridgeError):
    """The target of a create/move operation already exists."""

    error_code: str = field(default=ErrorCode.ALREADY_EXISTS)
    message: str = field(default="Path already exists")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Pick another name or pass overwrite=true where supported")


@dataclass
class ParseError(BridgeError):
    """A diagnostics source could not be parsed."""

    error_code: str = field(default=ErrorCode.PARSE)
    message: str = field(default="Unable to parse diagnostics source")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")


# -----------------------------------------------------------------------------
# Request Errors
# -----------------------------------------------------------------------------

@dataclass
class InvalidParameterError(BridgeError):
    """Request parameters failed validation."""

    error_code: str = field(default=ErrorCode.INVALID_PARAMETER)
    message: str = field(default="Invalid parameters")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")


@dataclass
class MethodNotFoundError(BridgeError):
    """The requested method is not in the catalog."""

    error_code: str = field(default=ErrorCode.METHOD_NOT_FOUND)
    message: str = field(default="Unknown method")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")


@dataclass
class InternalBridgeError(BridgeError):
    """An unexpected failure inside a handler."""

    error_code: str = field(default=ErrorCode.INTERNAL_ERROR)
    message: str = field(default="Internal error")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")


_ERRORS_BY_CODE: dict[str, type[BridgeError]] = {
    ErrorCode.CONNECTION: BridgeConnectionError,
    ErrorCode.CONNECTION_CLOSED: ConnectionClosedError,
    ErrorCode.TIMEOUT: BridgeTimeoutError,
    ErrorCode.PROTOCOL: ProtocolError,
    ErrorCode.LOCATOR: LocatorError,
    ErrorCode.CONTEXT_MISMATCH: ContextMismatchError,
    ErrorCode.NOT_FOUND: NotFoundError,
    ErrorCode.ALREADY_EXISTS: AlreadyExistsError,
    ErrorCode.PARSE: ParseError,
    ErrorCode.INVALID_PARAMETER: InvalidParameterError,
    ErrorCode.METHOD_NOT_FOUND: MethodNotFoundError,
    ErrorCode.INTERNAL_ERROR: InternalBridgeError,
}


def error_from_payload(payload: Mapping[str, Any] | None) -> BridgeError:
    """Rebuild a :class:`BridgeError` subclass from a response ``error`` member."""

    if not isinstance(payload, Mapping):
        return InternalBridgeError(message=f"Malformed error payload: {payload!r}")
    kind = str(payload.get("kind") or ErrorCode.INTERNAL_ERROR)
    message = str(payload.get("message") or "")
    details = payload.get("details")
    details = dict(details) if isinstance(details, Mapping) else {}
    suggestion = str(payload.get("suggestion") or "")
    error_cls = _ERRORS_BY_CODE.get(kind)
    if error_cls is None:
        return BridgeError(error_code=kind, message=message, details=details, suggestion=suggestion)
    error = error_cls(details=details)
    if message:
        error.message = message
        Exception.__init__(error, message)
    if suggestion:
        error.suggestion = suggestion
    return error


__all__ = [
    "ErrorCode",
    "BridgeError",
    "BridgeConnectionError",
    "ConnectionClosedError",
    "BridgeTimeoutError",
    "ProtocolError",
    "LocatorError",
    "ContextMismatchError",
    "NotFoundError",
    "AlreadyExistsError",
    "ParseError",
    "InvalidParameterError",
    "MethodNotFoundError",
    "InternalBridgeError",
    "error_from_payload",
]
