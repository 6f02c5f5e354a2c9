"""Request/response bridge between tooling processes and the host's main loop."""

from .catalog import CATALOG, Affinity, MethodParams, MethodSpec, get_method, parse_params
from .client import BridgeClient
from .dispatcher import RequestDispatcher
from .executor import MainLoopExecutor, ThreadedMainLoop
from .handlers import ProjectHandlers
from .protocol import BridgeEvent, BridgeRequest, BridgeResponse, decode_message, encode_message
from .server import BridgeServer

__all__ = [
    "Affinity",
    "BridgeClient",
    "BridgeEvent",
    "BridgeRequest",
    "BridgeResponse",
    "BridgeServer",
    "CATALOG",
    "MainLoopExecutor",
    "MethodParams",
    "MethodSpec",
    "ProjectHandlers",
    "RequestDispatcher",
    "ThreadedMainLoop",
    "decode_message",
    "encode_message",
    "get_method",
    "parse_params",
]
