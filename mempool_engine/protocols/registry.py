"""
Protocol registry.

Resolves contract addresses to known protocols and contract interfaces, and
selectors to function signatures. ManualProtocolRegistry is the in-memory,
hand-curated implementation; network-backed registries plug in by
implementing ProtocolRegistry.

File: mempool_engine/protocols/registry.py
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from eth_utils import is_address

from .abis import (
    CURATED_ABIS,
    Abi,
    build_selector_table,
    build_signature,
    function_selector,
    iter_functions,
)

logger = logging.getLogger(__name__)


@dataclass
class ProtocolInfo:
    """A protocol contract deployed on one chain."""
    name: str
    category: str
    chain_id: int
    address: str
    website: Optional[str] = None
    symbol: Optional[str] = None

    def __post_init__(self):
        self.address = self.address.lower()


@dataclass
class ProtocolLookupResult:
    """Lookup hit with how much it can be trusted."""
    protocol: ProtocolInfo
    confidence: str  # 'high' | 'medium' | 'low'
    source: str  # 'manual' | 'community' | 'defiLlama'


@dataclass
class ContractInterface:
    """A named ABI."""
    name: str
    abi: Abi = field(default_factory=list)


class ProtocolRegistry(ABC):
    """Address and selector resolution consumed by the decoder."""

    @abstractmethod
    def lookup(self, address: str, chain_id: int) -> Optional[ProtocolLookupResult]:
        """Best-effort synchronous lookup of the protocol at an address."""

    @abstractmethod
    async def get_interface(self, address: str, chain_id: int) -> Optional[ContractInterface]:
        """Contract interface for an address, or None if unknown."""

    @abstractmethod
    async def get_function_signature(self, selector: str) -> Optional[str]:
        """Full signature ("name(type,...)") for a 0x-prefixed 4-byte selector."""


# =============================================================================
# CURATED DATA
# =============================================================================

# (name, category, chain_id, address, abi name, website)
MANUAL_PROTOCOLS: Tuple[Tuple[str, str, int, str, Optional[str], str], ...] = (
    # Ethereum
    ("Uniswap V2", "DEX", 1, "0x7a250d5630b4cf539739df2c5dacb4c659f2488d",
     "UniswapV2Router02", "https://app.uniswap.org"),
    ("Uniswap V3", "DEX", 1, "0x68b3465833fb72a70ecdf485e0e4c7bd8665fc45",
     "SwapRouter", "https://app.uniswap.org"),
    ("Uniswap V3", "DEX", 1, "0xe592427a0aece92de3edee1f18e0157c05861564",
     "SwapRouter", "https://app.uniswap.org"),
    ("Uniswap Universal Router", "DEX", 1, "0x3fc91a3afd70395cd496c647d5a6cc9d4b2b7fad",
     None, "https://app.uniswap.org"),
    ("1inch V5", "Aggregator", 1, "0x1111111254eeb25477b68fb85ed929f73a960582",
     "AggregationRouterV5", "https://1inch.io"),
    ("CowSwap", "DEX", 1, "0x9008d19f58aabd9ed0d60971565aa8510560ab41",
     None, "https://cowswap.exchange"),
    ("WETH", "Token", 1, "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2",
     "WETH9", "https://weth.io"),
    ("OpenSea Seaport", "NFT", 1, "0x00000000000000adc04c56bf30ac9d3c0aaf14dc",
     None, "https://opensea.io"),
    ("Aave V3 Pool", "Lending", 1, "0x87870bca3f3fd6335c3f4ce8392d69350b4fa4e2",
     None, "https://aave.com"),
    # Arbitrum One
    ("Uniswap V3", "DEX", 42161, "0x68b3465833fb72a70ecdf485e0e4c7bd8665fc45",
     "SwapRouter", "https://app.uniswap.org"),
    ("1inch V5", "Aggregator", 42161, "0x1111111254eeb25477b68fb85ed929f73a960582",
     "AggregationRouterV5", "https://1inch.io"),
    ("GMX Router", "Derivatives", 42161, "0xabbc5f99639c9b6bcb58544ddf04efa6802f4064",
     None, "https://gmx.io"),
    ("Camelot V2", "DEX", 42161, "0xc873fecbd354f5a56e00e710b90ef4201db2448d",
     "UniswapV2Router02", "https://camelot.exchange"),
    # Base
    ("Uniswap V3", "DEX", 8453, "0x2626664c2603336e57b271c5c0b26f421741e481",
     "SwapRouter", "https://app.uniswap.org"),
    ("Aerodrome Router", "DEX", 8453, "0xcf77a3ba9a5ca399b7c97c74d54e5b1beb874e43",
     None, "https://aerodrome.finance"),
    ("WETH", "Token", 8453, "0x4200000000000000000000000000000000000006",
     "WETH9", "https://weth.io"),
)


class ManualProtocolRegistry(ProtocolRegistry):
    """
    In-memory registry of hand-verified protocol addresses.

    Curated entries resolve with high confidence (source "manual"); entries
    added at runtime through add_protocol() resolve with medium confidence
    (source "community"). Function signatures come from every curated ABI
    plus anything registered through add_function_signature().
    """

    def __init__(self, include_curated: bool = True):
        self._protocols: Dict[Tuple[int, str], ProtocolInfo] = {}
        self._curated_keys = set()
        self._interfaces: Dict[Tuple[int, str], ContractInterface] = {}
        self._signatures: Dict[str, str] = {}

        if include_curated:
            self._load_curated()

    def _load_curated(self) -> None:
        for name, category, chain_id, address, abi_name, website in MANUAL_PROTOCOLS:
            info = ProtocolInfo(
                name=name,
                category=category,
                chain_id=chain_id,
                address=address,
                website=website,
            )
            key = (chain_id, info.address)
            self._protocols[key] = info
            self._curated_keys.add(key)
            if abi_name:
                self._interfaces[key] = ContractInterface(abi_name, CURATED_ABIS[abi_name])

        self._signatures.update(build_selector_table(CURATED_ABIS.values()))
        logger.debug(
            f"Loaded {len(self._protocols)} curated protocols and "
            f"{len(self._signatures)} function signatures"
        )

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    def lookup(self, address: str, chain_id: int) -> Optional[ProtocolLookupResult]:
        if not address:
            return None

        key = (chain_id, address.lower())
        info = self._protocols.get(key)
        if info is None:
            return None

        if key in self._curated_keys:
            return ProtocolLookupResult(protocol=info, confidence="high", source="manual")
        return ProtocolLookupResult(protocol=info, confidence="medium", source="community")

    async def get_interface(self, address: str, chain_id: int) -> Optional[ContractInterface]:
        if not address:
            return None
        return self._interfaces.get((chain_id, address.lower()))

    async def get_function_signature(self, selector: str) -> Optional[str]:
        if not selector:
            return None
        return self._signatures.get(selector.lower())

    def get_protocols_by_chain(self, chain_id: int) -> List[ProtocolInfo]:
        return [info for (cid, _), info in self._protocols.items() if cid == chain_id]

    def get_categories(self) -> List[str]:
        """Distinct protocol categories, sorted."""
        return sorted({info.category for info in self._protocols.values()})

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def add_protocol(
        self,
        info: ProtocolInfo,
        abi: Optional[Abi] = None,
        abi_name: Optional[str] = None,
    ) -> None:
        """
        Register a protocol address at runtime.

        Args:
            info: Protocol description (address is normalized to lowercase)
            abi: Optional contract ABI used for calldata decoding
            abi_name: Name reported for the ABI (defaults to the protocol name)

        Raises:
            ValueError: If the address is not a valid hex address
        """
        if not is_address(info.address):
            raise ValueError(f"Invalid protocol address: {info.address}")

        key = (info.chain_id, info.address)
        self._protocols[key] = info
        self._curated_keys.discard(key)

        if abi is not None:
            self._interfaces[key] = ContractInterface(abi_name or info.name, abi)
            for entry in iter_functions(abi):
                self._signatures.setdefault(function_selector(entry), build_signature(entry))

        logger.info(f"Registered protocol {info.name} at {info.address} on chain {info.chain_id}")

    def add_function_signature(self, selector: str, signature: str) -> None:
        """Register a selector -> signature mapping (overrides existing ones)."""
        self._signatures[selector.lower()] = signature

