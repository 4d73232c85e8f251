"""
Transport factory.

Maps an endpoint's configured TransportKind to a concrete transport class and
keeps one instance per URL so health probes and watchers share connections.

File: mempool_engine/transports/factory.py
"""

import logging
from typing import Dict, Optional, Type

from ..chains import Endpoint, TransportKind
from ..config import MempoolEngineConfig
from .base import Transport
from .http import Web3HttpTransport
from .websocket import WebSocketTransport

logger = logging.getLogger(__name__)


class TransportFactory:
    """Builds and caches transports per endpoint URL."""

    transport_classes: Dict[TransportKind, Type[Transport]] = {
        TransportKind.HTTP: Web3HttpTransport,
        TransportKind.WEBSOCKET: WebSocketTransport,
    }

    def __init__(self, config: Optional[MempoolEngineConfig] = None):
        self.config = config or MempoolEngineConfig()
        self._transports: Dict[str, Transport] = {}

    def get_transport(self, endpoint: Endpoint) -> Transport:
        """
        Get the shared transport for an endpoint, creating it on first use.

        Args:
            endpoint: Endpoint to connect to

        Returns:
            Transport matching the endpoint's transport kind
        """
        transport = self._transports.get(endpoint.url)
        if transport is None:
            transport = self._create(endpoint)
            self._transports[endpoint.url] = transport
            logger.debug(f"Created {transport!r}")
        return transport

    def _create(self, endpoint: Endpoint) -> Transport:
        if endpoint.transport_kind == TransportKind.WEBSOCKET:
            return WebSocketTransport(
                endpoint,
                request_timeout=self.config.request_timeout,
                reconnect_delay=self.config.websocket_reconnect_delay,
                max_reconnect_delay=self.config.websocket_max_reconnect_delay,
                ping_interval=self.config.websocket_ping_interval,
            )
        transport_class = self.transport_classes[endpoint.transport_kind]
        return transport_class(endpoint, timeout_seconds=self.config.request_timeout)

    async def close_all(self) -> None:
        """Close every cached transport. Individual failures are logged."""
        transports, self._transports = list(self._transports.values()), {}
        for transport in transports:
            try:
                await transport.close()
            except Exception as e:
                logger.warning(f"⚠️ Failed to close {transport!r}: {e}")
