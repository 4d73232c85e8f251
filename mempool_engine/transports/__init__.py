"""Transports: thin handles to a single RPC endpoint."""

from .base import CancelFn, DataCallback, ErrorCallback, RawPayload, StreamingTransport, Transport
from .factory import TransportFactory
from .http import Web3HttpTransport
from .websocket import WebSocketTransport

__all__ = [
    "CancelFn",
    "DataCallback",
    "ErrorCallback",
    "RawPayload",
    "StreamingTransport",
    "Transport",
    "TransportFactory",
    "Web3HttpTransport",
    "WebSocketTransport",
]
