"""
Chain registry and RPC endpoint descriptions.

Endpoints are created once per URL and shared by every subscription. Their
reliability score is only ever mutated by the EndpointHealthManager.

File: mempool_engine/chains.py
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlparse

from .config import ChainConfig

logger = logging.getLogger(__name__)

UNKNOWN_PROVIDER = "Unknown"

# Hostname substring -> provider label. First match wins.
KNOWN_PROVIDERS: Tuple[Tuple[str, str], ...] = (
    ("llamarpc", "LlamaNodes"),
    ("ankr", "Ankr"),
    ("alchemy", "Alchemy"),
    ("infura", "Infura"),
    ("quicknode", "QuickNode"),
    ("publicnode", "PublicNode"),
    ("pokt", "Pocket"),
    ("chainstack", "Chainstack"),
    ("blastapi", "BlastAPI"),
    ("gateway.tenderly", "Tenderly"),
    ("rpc.xdaichain", "xDai"),
    ("cloudflare-eth", "Cloudflare"),
)


class TransportKind(str, Enum):
    """How an endpoint is reached."""
    WEBSOCKET = "websocket"
    HTTP = "http"


def extract_provider_label(url: str) -> str:
    """
    Identify the node operator behind an RPC URL.

    Best-effort hostname match against KNOWN_PROVIDERS; anything unmatched
    lands in the single "Unknown" bucket.
    """
    try:
        hostname = urlparse(url).hostname or ""
    except ValueError:
        return UNKNOWN_PROVIDER

    for needle, label in KNOWN_PROVIDERS:
        if needle in hostname:
            return label
    return UNKNOWN_PROVIDER


def transport_kind_for_url(url: str) -> TransportKind:
    """ws:// and wss:// are streaming endpoints, everything else is HTTP."""
    scheme = urlparse(url).scheme.lower()
    return TransportKind.WEBSOCKET if scheme in ("ws", "wss") else TransportKind.HTTP


@dataclass
class Endpoint:
    """One RPC-reachable node."""
    url: str
    transport_kind: TransportKind
    provider_label: str = UNKNOWN_PROVIDER
    reliability: float = 0.5
    last_checked: Optional[float] = None

    @classmethod
    def from_url(cls, url: str) -> "Endpoint":
        """Build an endpoint, deriving transport kind and provider label from the URL."""
        return cls(
            url=url,
            transport_kind=transport_kind_for_url(url),
            provider_label=extract_provider_label(url),
        )

    @property
    def is_streaming(self) -> bool:
        return self.transport_kind == TransportKind.WEBSOCKET


@dataclass
class ChainInfo:
    """Chain metadata kept by the registry."""
    chain_id: int
    name: str
    native_token_symbol: str = "ETH"
    is_testnet: bool = False
    endpoints: List[Endpoint] = field(default_factory=list)


class ChainRegistry:
    """
    In-memory registry of supported chains and their RPC endpoints.

    Seeded from static ChainConfig entries; fetching chain metadata from a
    public chain list is left to callers, who can feed results in through
    add_chain()/add_endpoint().
    """

    def __init__(self, chain_configs: Optional[Iterable[ChainConfig]] = None):
        self._chains: Dict[int, ChainInfo] = {}
        for chain_config in chain_configs or []:
            self.add_chain(chain_config)

    def add_chain(self, chain_config: ChainConfig) -> ChainInfo:
        """Register a chain and its HTTP + WebSocket endpoints."""
        info = ChainInfo(
            chain_id=chain_config.chain_id,
            name=chain_config.name,
            native_token_symbol=chain_config.native_token_symbol,
            is_testnet=chain_config.is_testnet,
        )
        self._chains[chain_config.chain_id] = info

        for url in [*chain_config.rpc_providers, *chain_config.ws_providers]:
            self.add_endpoint(chain_config.chain_id, url)

        logger.info(
            f"Registered chain {info.name} ({info.chain_id}) with {len(info.endpoints)} endpoints"
        )
        return info

    def add_endpoint(self, chain_id: int, url: str) -> Endpoint:
        """Add an endpoint to a known chain; duplicates return the existing entry."""
        info = self._chains.get(chain_id)
        if info is None:
            raise KeyError(f"Chain {chain_id} is not registered")

        normalized = url.rstrip("/")
        for existing in info.endpoints:
            if existing.url == normalized:
                return existing

        endpoint = Endpoint.from_url(normalized)
        info.endpoints.append(endpoint)
        return endpoint

    def is_chain_supported(self, chain_id: int) -> bool:
        return chain_id in self._chains

    def get_chain(self, chain_id: int) -> Optional[ChainInfo]:
        return self._chains.get(chain_id)

    def get_chains(self) -> List[ChainInfo]:
        return list(self._chains.values())

    def get_rpc_endpoints(self, chain_id: int) -> List[Endpoint]:
        """All endpoints for a chain in registration order (empty if unknown)."""
        info = self._chains.get(chain_id)
        return list(info.endpoints) if info else []

    def get_endpoint(self, chain_id: int, url: str) -> Optional[Endpoint]:
        normalized = url.rstrip("/")
        for endpoint in self.get_rpc_endpoints(chain_id):
            if endpoint.url == normalized:
                return endpoint
        return None

    def get_rpc_endpoints_by_provider(self, chain_id: int) -> Dict[str, List[Endpoint]]:
        """
        Group a chain's endpoints by provider label.

        Groups keep the order in which their first endpoint was registered.
        """
        grouped: Dict[str, List[Endpoint]] = {}
        for endpoint in self.get_rpc_endpoints(chain_id):
            grouped.setdefault(endpoint.provider_label, []).append(endpoint)
        return grouped
