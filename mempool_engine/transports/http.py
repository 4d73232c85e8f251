"""
HTTP transport backed by web3's async client.

Polling-capable only: the controller drives the poll interval and calls
get_pending_block_with_transactions() on each tick.

File: mempool_engine/transports/http.py
"""

import logging
from typing import Any, Dict, Mapping, Optional

import aiohttp
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import TransactionNotFound

from ..chains import Endpoint
from .base import Transport

logger = logging.getLogger(__name__)


class Web3HttpTransport(Transport):
    """JSON-RPC over HTTP through AsyncWeb3."""

    def __init__(self, endpoint: Endpoint, timeout_seconds: float = 10.0):
        super().__init__(endpoint)
        self.timeout_seconds = timeout_seconds
        self._web3 = AsyncWeb3(
            AsyncHTTPProvider(
                endpoint.url,
                request_kwargs={"timeout": aiohttp.ClientTimeout(total=timeout_seconds)},
            )
        )

    async def get_latest_block_number(self) -> int:
        return int(await self._web3.eth.block_number)

    async def get_transaction_by_hash(self, tx_hash: str) -> Optional[Mapping[str, Any]]:
        try:
            transaction = await self._web3.eth.get_transaction(tx_hash)
        except TransactionNotFound:
            return None
        return dict(transaction) if transaction else None

    async def get_pending_block_with_transactions(self) -> Dict[str, Any]:
        block = await self._web3.eth.get_block("pending", full_transactions=True)
        transactions = block.get("transactions", []) if block else []
        return {
            "transactions": [
                dict(tx) if isinstance(tx, Mapping) else tx for tx in transactions
            ]
        }

    async def close(self) -> None:
        try:
            await self._web3.provider.disconnect()
        except Exception as e:
            logger.debug(f"Error closing HTTP provider {self.url}: {e}")
