"""
WebSocket transport.

Streams pending transactions through eth_subscribe("newPendingTransactions")
and pipelines point queries over a shared request connection. The watcher keeps
reconnecting with capped exponential backoff until it is cancelled.

File: mempool_engine/transports/websocket.py
"""

import asyncio
import itertools
import json
import logging
from typing import Any, Dict, List, Mapping, Optional

import websockets

from ..chains import Endpoint
from ..exceptions import RpcError
from ..utils import to_non_negative_int
from .base import CancelFn, DataCallback, ErrorCallback, StreamingTransport

logger = logging.getLogger(__name__)

MAX_MESSAGE_SIZE = 4 * 1024 * 1024


class WebSocketTransport(StreamingTransport):
    """JSON-RPC over a WebSocket connection."""

    def __init__(
        self,
        endpoint: Endpoint,
        request_timeout: float = 10.0,
        reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 60.0,
        ping_interval: float = 20.0,
    ):
        super().__init__(endpoint)
        self.request_timeout = request_timeout
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self.ping_interval = ping_interval

        self._request_ids = itertools.count(1)
        self._request_conn = None
        self._reader_task: Optional[asyncio.Task] = None
        self._pending: Dict[int, asyncio.Future] = {}
        self._connect_lock = asyncio.Lock()
        self._send_lock = asyncio.Lock()
        self._watch_tasks: List[asyncio.Task] = []

    # =========================================================================
    # CONNECTION HANDLING
    # =========================================================================

    async def _connect(self):
        return await websockets.connect(
            self.url,
            open_timeout=self.request_timeout,
            ping_interval=self.ping_interval,
            ping_timeout=self.request_timeout,
            close_timeout=self.request_timeout,
            max_size=MAX_MESSAGE_SIZE,
        )

    def _build_request(self, method: str, params: List[Any]) -> Dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": next(self._request_ids),
            "method": method,
            "params": params,
        }

    async def _await_response(self, connection, request_id: int) -> Dict[str, Any]:
        """Read until the reply for request_id arrives, skipping notifications."""
        while True:
            raw_message = await asyncio.wait_for(connection.recv(), timeout=self.request_timeout)
            message = json.loads(raw_message)
            if message.get("id") == request_id:
                return message

    async def _ensure_request_connection(self):
        """Open the shared request connection and its reply reader on first use."""
        async with self._connect_lock:
            if self._request_conn is None:
                connection = await self._connect()
                self._request_conn = connection
                self._reader_task = asyncio.create_task(self._read_replies(connection))
                logger.debug(f"Opened request connection to {self.url}")
            return self._request_conn

    async def _read_replies(self, connection) -> None:
        """Route every reply on the request connection to the caller waiting on its id."""
        error: BaseException = ConnectionError(f"Request connection to {self.url} closed")
        try:
            async for raw_message in connection:
                try:
                    message = json.loads(raw_message)
                except (TypeError, ValueError):
                    logger.debug(f"Ignoring non-JSON reply from {self.url}")
                    continue
                if not isinstance(message, dict):
                    continue

                future = self._pending.pop(message.get("id"), None)
                if future is not None and not future.done():
                    future.set_result(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"⚠️ Request connection to {self.url} failed: {e}")
            error = e
        finally:
            if self._request_conn is connection:
                self._request_conn = None
                self._reader_task = None
                self._fail_pending(error)

    def _fail_pending(self, error: BaseException) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(error)

    async def _call(self, method: str, params: List[Any]) -> Any:
        """
        Send one JSON-RPC request over the shared request connection.

        Requests are pipelined: the lock only covers the send, and the reader
        task hands each reply to the caller waiting on its id. A failed send
        drops the connection; the next call reconnects.
        """
        connection = await self._ensure_request_connection()
        request = self._build_request(method, params)
        future = asyncio.get_running_loop().create_future()
        self._pending[request["id"]] = future

        try:
            async with self._send_lock:
                await connection.send(json.dumps(request))
        except Exception:
            self._pending.pop(request["id"], None)
            await self._drop_request_connection()
            raise

        try:
            message = await asyncio.wait_for(future, timeout=self.request_timeout)
        finally:
            self._pending.pop(request["id"], None)

        if message.get("error") is not None:
            raise RpcError(method, message["error"])
        return message.get("result")

    async def _drop_request_connection(self) -> None:
        connection, self._request_conn = self._request_conn, None
        reader, self._reader_task = self._reader_task, None
        self._fail_pending(ConnectionError(f"Request connection to {self.url} dropped"))

        if reader is not None and not reader.done():
            reader.cancel()
        if connection is not None:
            try:
                await connection.close()
            except Exception as e:
                logger.debug(f"Error closing request connection to {self.url}: {e}")

    # =========================================================================
    # POINT QUERIES
    # =========================================================================

    async def get_latest_block_number(self) -> int:
        result = await self._call("eth_blockNumber", [])
        block_number = to_non_negative_int(result)
        if block_number is None:
            raise RpcError("eth_blockNumber", f"unexpected result {result!r}")
        return block_number

    async def get_transaction_by_hash(self, tx_hash: str) -> Optional[Mapping[str, Any]]:
        return await self._call("eth_getTransactionByHash", [tx_hash])

    async def get_pending_block_with_transactions(self) -> Dict[str, Any]:
        block = await self._call("eth_getBlockByNumber", ["pending", True])
        return {"transactions": (block or {}).get("transactions") or []}

    # =========================================================================
    # STREAMING
    # =========================================================================

    def watch_pending_transactions(
        self,
        on_data: DataCallback,
        on_error: ErrorCallback,
    ) -> CancelFn:
        task = asyncio.create_task(self._watch_loop(on_data, on_error))
        self._watch_tasks.append(task)

        def cancel() -> None:
            if not task.done():
                task.cancel()
            if task in self._watch_tasks:
                self._watch_tasks.remove(task)

        return cancel

    async def _watch_loop(self, on_data: DataCallback, on_error: ErrorCallback) -> None:
        """Maintain the subscription connection with auto-reconnection."""
        attempt = 0

        while True:
            try:
                websocket = await self._connect()
                try:
                    subscription_id = await self._subscribe(websocket)
                    attempt = 0
                    logger.info(f"✅ Subscribed to pending transactions on {self.url}")

                    async for raw_message in websocket:
                        payload = self._parse_notification(raw_message, subscription_id)
                        if payload:
                            on_data(payload)
                finally:
                    await websocket.close()

                logger.warning(f"WebSocket closed by {self.url}, reconnecting")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                attempt += 1
                logger.warning(f"⚠️ WebSocket error on {self.url} (attempt {attempt}): {e}")
                on_error(e)

            wait_time = min(self.reconnect_delay * (2 ** attempt), self.max_reconnect_delay)
            await asyncio.sleep(wait_time)

    async def _subscribe(self, websocket) -> str:
        request = self._build_request("eth_subscribe", ["newPendingTransactions"])
        await websocket.send(json.dumps(request))
        message = await self._await_response(websocket, request["id"])

        if message.get("error") is not None:
            raise RpcError("eth_subscribe", message["error"])
        return message.get("result")

    def _parse_notification(self, raw_message: Any, subscription_id: str) -> Optional[List[Any]]:
        """
        Extract the transaction payload from an eth_subscription notification.

        Returns None for anything that isn't a notification for our subscription.
        """
        try:
            message = json.loads(raw_message)
        except (TypeError, ValueError):
            logger.debug(f"Ignoring non-JSON message from {self.url}")
            return None

        if message.get("method") != "eth_subscription":
            return None

        params = message.get("params") or {}
        if subscription_id and params.get("subscription") != subscription_id:
            return None
        if "result" not in params:
            return None
        return [params["result"]]

    async def close(self) -> None:
        for task in list(self._watch_tasks):
            task.cancel()
        self._watch_tasks.clear()
        await self._drop_request_connection()
