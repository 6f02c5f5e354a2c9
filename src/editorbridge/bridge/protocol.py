"""Newline-delimited JSON framing for bridge requests, responses and events."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Union

from ..core.errors import BridgeError, ProtocolError

__all__ = [
    "BridgeRequest",
    "BridgeResponse",
    "BridgeEvent",
    "Message",
    "encode_message",
    "decode_message",
    "MAX_LINE_BYTES",
]

MAX_LINE_BYTES = 16 * 1024 * 1024


@dataclass(slots=True)
class BridgeRequest:
    id: int
    method: str
    params: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "method": self.method, "params": self.params}


@dataclass(slots=True)
class BridgeResponse:
    """A reply to one request: exactly one of ``result`` / ``error`` is meaningful."""

    id: int | None
    result: Any = None
    error: dict[str, Any] | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, request_id: int | None, result: Any) -> "BridgeResponse":
        return cls(id=request_id, result=result)

    @classmethod
    def failure(cls, request_id: int | None, error: BridgeError) -> "BridgeResponse":
        return cls(id=request_id, error=error.to_dict())

    def to_dict(self) -> dict[str, Any]:
        if self.error is not None:
            return {"id": self.id, "error": self.error}
        return {"id": self.id, "result": self.result}


@dataclass(slots=True)
class BridgeEvent:
    """Unsolicited notification; carries no id and expects no reply."""

    event: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.event, "data": self.data}


Message = Union[BridgeRequest, BridgeResponse, BridgeEvent]


def encode_message(message: Message) -> bytes:
    """Serialize ``message`` as one UTF-8 JSON line."""

    body = json.dumps(message.to_dict(), ensure_ascii=False, separators=(",", ":"), default=str)
    return body.encode("utf-8") + b"\n"


def decode_message(line: bytes | str) -> Message:
    """Parse one line into a request, response or event.

    Raises :class:`ProtocolError` for anything that is not one of the three
    shapes. A message with an ``event`` key and no ``id`` is an event even if
    it also has other members.
    """

    text = line.decode("utf-8", errors="replace") if isinstance(line, bytes) else line
    text = text.strip()
    if not text:
        raise ProtocolError(message="Empty message")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ProtocolError(message=f"Message is not valid JSON: {exc}", details={"line": text[:200]}) from exc
    if not isinstance(payload, Mapping):
        raise ProtocolError(message="Message must be a JSON object", details={"line": text[:200]})

    request_id = payload.get("id")
    if "event" in payload and request_id is None:
        data = payload.get("data")
        return BridgeEvent(event=str(payload["event"]), data=dict(data) if isinstance(data, Mapping) else {})
    if request_id is not None and not isinstance(request_id, int):
        raise ProtocolError(message="Message id must be an integer", details={"id": request_id})
    if "method" in payload:
        if request_id is None:
            raise ProtocolError(message="Request is missing its id", details={"method": payload.get("method")})
        params = payload.get("params")
        if params is None:
            params = {}
        if not isinstance(params, Mapping):
            raise ProtocolError(
                message="Request params must be a JSON object",
                details={"id": request_id, "method": payload.get("method")},
            )
        return BridgeRequest(id=request_id, method=str(payload["method"]), params=dict(params))
    if "error" in payload:
        error = payload.get("error")
        if not isinstance(error, Mapping):
            error = {"kind": "internal_error", "message": str(error)}
        return BridgeResponse(id=request_id, error=dict(error))
    if "result" in payload:
        return BridgeResponse(id=request_id, result=payload.get("result"))
    raise ProtocolError(message="Unrecognized message shape", details={"keys": sorted(payload)})
