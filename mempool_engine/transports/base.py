"""
Transport capability interfaces.

A transport is a thin handle to one RPC endpoint. Every transport answers
point queries; only streaming transports can push pending transactions.
Which implementation an endpoint gets is decided by its configured
TransportKind, never by probing the object at runtime.

File: mempool_engine/transports/base.py
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..chains import Endpoint

# Raw payload as delivered by a node: tx hashes or transaction-like mappings
RawPayload = List[Any]
DataCallback = Callable[[RawPayload], None]
ErrorCallback = Callable[[BaseException], None]
CancelFn = Callable[[], None]


class Transport(ABC):
    """Point queries against a single endpoint."""

    supports_streaming = False

    def __init__(self, endpoint: Endpoint):
        self.endpoint = endpoint

    @property
    def url(self) -> str:
        return self.endpoint.url

    @abstractmethod
    async def get_latest_block_number(self) -> int:
        """Latest block number known to the node."""

    @abstractmethod
    async def get_transaction_by_hash(self, tx_hash: str) -> Optional[Mapping[str, Any]]:
        """Full transaction for a hash, or None if the node doesn't know it."""

    @abstractmethod
    async def get_pending_block_with_transactions(self) -> Dict[str, Any]:
        """The pending block as {"transactions": [...]} with full transaction objects."""

    async def close(self) -> None:
        """Release network resources."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.url!r})"


class StreamingTransport(Transport):
    """Transport that can push pending transactions as they arrive."""

    supports_streaming = True

    @abstractmethod
    def watch_pending_transactions(
        self,
        on_data: DataCallback,
        on_error: ErrorCallback,
    ) -> CancelFn:
        """
        Start delivering pending transactions.

        Delivery order from the underlying connection is preserved. Failures
        are reported through on_error and never end the watch on their own;
        only the returned cancel function does.

        Args:
            on_data: Called with each batch of raw payload entries
            on_error: Called with every connection or protocol error

        Returns:
            Synchronous cancel function
        """
