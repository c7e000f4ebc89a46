"""WebSocket bridge between the Chronicle app (Host) and the agent process."""

from chronicle.bridge.connection import BridgeConnection, ConnectionState, reconnect_delay
from chronicle.bridge.correlator import PendingRequest, RequestCorrelator
from chronicle.bridge.host import HostServer, HostState
from chronicle.bridge.protocol import (
    Method,
    PushEvent,
    PushFrame,
    RequestFrame,
    ResponseFrame,
    decode_frame,
    encode_frame,
)
from chronicle.bridge.push_queue import PushQueue

__all__ = [
    "BridgeConnection",
    "ConnectionState",
    "reconnect_delay",
    "PendingRequest",
    "RequestCorrelator",
    "HostServer",
    "HostState",
    "Method",
    "PushEvent",
    "PushFrame",
    "RequestFrame",
    "ResponseFrame",
    "decode_frame",
    "encode_frame",
    "PushQueue",
]
