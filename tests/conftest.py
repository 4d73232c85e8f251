"""
Shared fixtures for the mempool engine test suite.

Fake transports stand in for real nodes: they answer probes instantly (or
slowly, or not at all) and let tests push payloads into streaming watchers.

File: tests/conftest.py
"""

import asyncio
from typing import Any, Dict, List, Mapping, Optional

import pytest

from mempool_engine.chains import ChainRegistry, Endpoint, TransportKind
from mempool_engine.config import ChainConfig, MempoolEngineConfig
from mempool_engine.health import EndpointHealthManager
from mempool_engine.mempool.client import SubscriptionController
from mempool_engine.protocols.registry import ManualProtocolRegistry
from mempool_engine.transports.base import StreamingTransport, Transport

SENDER = "0x742d35cc6634c0532925a3b844bc454e4438f44e"
RECIPIENT = "0x1111111111111111111111111111111111111111"
UNISWAP_V2_ROUTER = "0x7a250d5630b4cf539739df2c5dacb4c659f2488d"
WETH = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"

HTTP_URLS = [
    "https://eth.llamarpc.com",
    "https://rpc.ankr.com/eth",
    "https://ethereum-rpc.publicnode.com",
]
WS_URLS = [
    "wss://eth.llamarpc.com",
    "wss://rpc.ankr.com/eth/ws",
    "wss://ethereum-rpc.publicnode.com",
]


# =============================================================================
# FAKES
# =============================================================================

class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport(Transport):
    """Polling-capable fake node."""

    def __init__(
        self,
        endpoint: Endpoint,
        block_number: int = 18_500_000,
        fail: bool = False,
        delay: float = 0.0,
    ):
        super().__init__(endpoint)
        self.block_number = block_number
        self.fail = fail
        self.delay = delay
        self.probe_calls = 0
        self.pending: List[Any] = []
        self.transactions: Dict[str, Mapping[str, Any]] = {}
        self.lookup_delay = 0.0
        self.lookup_calls: List[str] = []
        self.closed = False

    async def get_latest_block_number(self) -> int:
        self.probe_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError(f"{self.url} unreachable")
        return self.block_number

    async def get_transaction_by_hash(self, tx_hash: str) -> Optional[Mapping[str, Any]]:
        self.lookup_calls.append(tx_hash)
        if self.lookup_delay:
            await asyncio.sleep(self.lookup_delay)
        return self.transactions.get(tx_hash)

    async def get_pending_block_with_transactions(self) -> Dict[str, Any]:
        return {"transactions": list(self.pending)}

    async def close(self) -> None:
        self.closed = True


class FakeStreamingTransport(FakeTransport, StreamingTransport):
    """Streaming fake: tests push payloads with emit()."""

    def __init__(self, endpoint: Endpoint, watch_error: Optional[Exception] = None, **kwargs):
        super().__init__(endpoint, **kwargs)
        self.watch_error = watch_error
        self.on_data = None
        self.on_error = None
        self.watch_calls = 0
        self.cancel_calls = 0

    def watch_pending_transactions(self, on_data, on_error):
        self.watch_calls += 1
        if self.watch_error is not None:
            raise self.watch_error
        self.on_data = on_data
        self.on_error = on_error

        def cancel() -> None:
            self.cancel_calls += 1
            self.on_data = None

        return cancel

    @property
    def watching(self) -> bool:
        return self.on_data is not None

    def emit(self, payload: List[Any]) -> None:
        if self.on_data is not None:
            self.on_data(payload)


class FakeTransportFactory:
    """Hands out one fake per URL, healthy unless configured otherwise."""

    def __init__(self):
        self.transports: Dict[str, FakeTransport] = {}
        self.closed = False

    def add(self, url: str, **kwargs) -> FakeTransport:
        endpoint = Endpoint.from_url(url)
        if endpoint.transport_kind == TransportKind.WEBSOCKET:
            transport = FakeStreamingTransport(endpoint, **kwargs)
        else:
            transport = FakeTransport(endpoint, **kwargs)
        self.transports[url] = transport
        return transport

    def get_transport(self, endpoint: Endpoint) -> FakeTransport:
        transport = self.transports.get(endpoint.url)
        if transport is None:
            transport = self.add(endpoint.url)
        return transport

    async def close_all(self) -> None:
        self.closed = True
        for transport in self.transports.values():
            await transport.close()


# =============================================================================
# HELPERS
# =============================================================================

def make_raw_transaction(
    tx_hash: str = "0x" + "ab" * 32,
    value: int = 0,
    to: Optional[str] = RECIPIENT,
    data: str = "0x",
    sender: str = SENDER,
) -> Dict[str, Any]:
    """JSON-RPC shaped pending transaction."""
    return {
        "hash": tx_hash,
        "from": sender,
        "to": to,
        "value": hex(value),
        "gas": "0x5208",
        "gasPrice": "0x4a817c800",
        "nonce": "0x1",
        "input": data,
        "blockNumber": None,
        "type": "0x2",
    }


async def settle(rounds: int = 5, interval: float = 0.01) -> None:
    """Let background tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(interval)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def engine_config():
    """Fast configuration for tests."""
    return MempoolEngineConfig(
        client_count=2,
        polling_interval_ms=20,
        health_check_timeout=0.5,
    )


@pytest.fixture
def chain_registry():
    """Chain 1 with three providers, each reachable over HTTP and WebSocket."""
    return ChainRegistry([
        ChainConfig(
            chain_id=1,
            name="Ethereum",
            rpc_providers=list(HTTP_URLS),
            ws_providers=list(WS_URLS),
        )
    ])


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def transport_factory():
    return FakeTransportFactory()


@pytest.fixture
def health_manager(chain_registry, transport_factory, engine_config, fake_clock):
    return EndpointHealthManager(
        chain_registry, transport_factory, engine_config, clock=fake_clock
    )


@pytest.fixture
def protocol_registry():
    return ManualProtocolRegistry()


@pytest.fixture
def controller(chain_registry, protocol_registry, health_manager, transport_factory, engine_config):
    return SubscriptionController(
        chain_registry=chain_registry,
        protocol_registry=protocol_registry,
        health_manager=health_manager,
        transport_factory=transport_factory,
        config=engine_config,
    )
