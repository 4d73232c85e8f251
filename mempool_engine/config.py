"""
Mempool Engine Configuration

Tuning knobs for endpoint health management and subscriptions, plus the
static chain table that seeds the chain registry. Values can be overridden
through environment variables (a .env file is loaded when present).

File: mempool_engine/config.py
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


# =============================================================================
# HELPER FUNCTIONS FOR ENVIRONMENT VARIABLES
# =============================================================================

def get_env_int(key: str, default: str) -> int:
    """Safely convert environment variable to integer, handling float strings."""
    return int(float(os.getenv(key, default)))


def get_env_float(key: str, default: str) -> float:
    """Convert environment variable to float."""
    return float(os.getenv(key, default))


def get_env_bool(key: str, default: str) -> bool:
    """Convert environment variable to boolean."""
    value = os.getenv(key, default).lower()
    return value in ('true', '1', 'yes', 'on')


def get_env_list(key: str, default: str = '') -> list:
    """Convert environment variable to list, filtering empty values."""
    value = os.getenv(key, default)
    if not value:
        return []
    return [item.strip() for item in value.split(',') if item.strip()]


# =============================================================================
# CHAIN CONFIGURATION
# =============================================================================

@dataclass
class ChainConfig:
    """Static description of a chain and its public RPC endpoints."""
    chain_id: int
    name: str
    rpc_providers: List[str]
    ws_providers: List[str] = field(default_factory=list)
    native_token_symbol: str = "ETH"
    block_time_seconds: int = 12
    is_testnet: bool = False


# Predefined chain configurations
CHAIN_CONFIGS: Dict[int, ChainConfig] = {
    1: ChainConfig(
        chain_id=1,
        name="Ethereum",
        rpc_providers=[
            "https://eth.llamarpc.com",
            "https://rpc.ankr.com/eth",
            "https://ethereum-rpc.publicnode.com",
            "https://eth-mainnet.public.blastapi.io",
            "https://cloudflare-eth.com",
            "https://mainnet.gateway.tenderly.co",
        ],
        ws_providers=[
            "wss://ethereum-rpc.publicnode.com",
            "wss://eth.llamarpc.com",
            "wss://eth-mainnet.public.blastapi.io",
        ],
    ),
    8453: ChainConfig(
        chain_id=8453,
        name="Base",
        rpc_providers=[
            "https://mainnet.base.org",
            "https://base.llamarpc.com",
            "https://base-rpc.publicnode.com",
            "https://base.gateway.tenderly.co",
        ],
        ws_providers=[
            "wss://base-rpc.publicnode.com",
        ],
        block_time_seconds=2,
    ),
    42161: ChainConfig(
        chain_id=42161,
        name="Arbitrum One",
        rpc_providers=[
            "https://arb1.arbitrum.io/rpc",
            "https://arbitrum-one-rpc.publicnode.com",
            "https://rpc.ankr.com/arbitrum",
        ],
        ws_providers=[
            "wss://arbitrum-one-rpc.publicnode.com",
        ],
        block_time_seconds=1,
    ),
    11155111: ChainConfig(
        chain_id=11155111,
        name="Sepolia",
        rpc_providers=[
            "https://ethereum-sepolia-rpc.publicnode.com",
            "https://rpc.ankr.com/eth_sepolia",
            "https://sepolia.gateway.tenderly.co",
        ],
        ws_providers=[
            "wss://ethereum-sepolia-rpc.publicnode.com",
        ],
        is_testnet=True,
    ),
}

# Alchemy network slugs for chains Alchemy serves
ALCHEMY_NETWORKS: Dict[int, str] = {
    1: "eth-mainnet",
    8453: "base-mainnet",
    42161: "arb-mainnet",
    11155111: "eth-sepolia",
}


def get_chain_config(chain_id: int) -> Optional[ChainConfig]:
    """Get chain configuration by ID."""
    return CHAIN_CONFIGS.get(chain_id)


def load_chain_configs(chain_ids: Optional[List[int]] = None) -> Dict[int, ChainConfig]:
    """
    Build chain configurations with environment overrides applied.

    EXTRA_RPC_URLS_<chain_id> appends comma separated endpoints (ws:// and
    wss:// URLs go to the streaming list). ALCHEMY_API_KEY adds Alchemy HTTP
    and WebSocket endpoints where a network slug is known.

    Args:
        chain_ids: Restrict to these chains (None for every known chain)

    Returns:
        Dictionary of chain_id -> ChainConfig
    """
    selected = chain_ids if chain_ids else list(CHAIN_CONFIGS.keys())
    alchemy_key = os.getenv("ALCHEMY_API_KEY", "")
    configs: Dict[int, ChainConfig] = {}

    for chain_id in selected:
        base = CHAIN_CONFIGS.get(chain_id)
        if base is None:
            logger.warning(f"No static configuration for chain {chain_id}, skipping")
            continue

        rpc_providers = list(base.rpc_providers)
        ws_providers = list(base.ws_providers)

        for url in get_env_list(f"EXTRA_RPC_URLS_{chain_id}"):
            if url.startswith(("ws://", "wss://")):
                ws_providers.append(url)
            else:
                rpc_providers.append(url)

        network = ALCHEMY_NETWORKS.get(chain_id)
        if alchemy_key and network:
            rpc_providers.append(f"https://{network}.g.alchemy.com/v2/{alchemy_key}")
            ws_providers.append(f"wss://{network}.g.alchemy.com/v2/{alchemy_key}")

        configs[chain_id] = ChainConfig(
            chain_id=base.chain_id,
            name=base.name,
            rpc_providers=rpc_providers,
            ws_providers=ws_providers,
            native_token_symbol=base.native_token_symbol,
            block_time_seconds=base.block_time_seconds,
            is_testnet=base.is_testnet,
        )

    return configs


# =============================================================================
# ENGINE CONFIGURATION
# =============================================================================

@dataclass
class MempoolEngineConfig:
    """
    Tuning knobs for the health manager and the subscription controller.

    Time values ending in _ms are milliseconds, everything else is seconds.
    """

    # Subscription behaviour
    client_count: int = 3
    polling_interval_ms: int = 3000
    dedupe_ttl_ms: int = 60_000
    dedupe_max_entries: Optional[int] = None
    include_websocket: bool = True
    prefer_diverse: bool = True
    min_reliability: float = 0.3

    # Health management
    max_endpoints_per_chain: int = 5
    health_check_timeout: float = 5.0
    healthy_cache_ttl: float = 300.0
    unhealthy_cache_ttl: float = 60.0
    reliability_alpha: float = 0.1

    # Transports
    request_timeout: float = 10.0
    websocket_reconnect_delay: float = 1.0
    websocket_max_reconnect_delay: float = 60.0
    websocket_ping_interval: float = 20.0

    # General
    target_chains: List[int] = field(default_factory=lambda: [1])
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "MempoolEngineConfig":
        """Load configuration from environment variables."""
        config = cls(
            client_count=get_env_int("MEMPOOL_CLIENT_COUNT", "3"),
            polling_interval_ms=get_env_int("MEMPOOL_POLLING_INTERVAL_MS", "3000"),
            dedupe_ttl_ms=get_env_int("MEMPOOL_DEDUPE_TTL_MS", "60000"),
            dedupe_max_entries=get_env_int("MEMPOOL_DEDUPE_MAX_ENTRIES", "0") or None,
            include_websocket=get_env_bool("MEMPOOL_INCLUDE_WEBSOCKET", "true"),
            prefer_diverse=get_env_bool("MEMPOOL_PREFER_DIVERSE", "true"),
            min_reliability=get_env_float("MEMPOOL_MIN_RELIABILITY", "0.3"),
            max_endpoints_per_chain=get_env_int("MEMPOOL_MAX_ENDPOINTS_PER_CHAIN", "5"),
            health_check_timeout=get_env_float("MEMPOOL_HEALTH_CHECK_TIMEOUT", "5"),
            healthy_cache_ttl=get_env_float("MEMPOOL_HEALTHY_CACHE_TTL", "300"),
            unhealthy_cache_ttl=get_env_float("MEMPOOL_UNHEALTHY_CACHE_TTL", "60"),
            reliability_alpha=get_env_float("MEMPOOL_RELIABILITY_ALPHA", "0.1"),
            request_timeout=get_env_float("MEMPOOL_REQUEST_TIMEOUT", "10"),
            websocket_reconnect_delay=get_env_float("WEBSOCKET_RECONNECT_DELAY", "1"),
            websocket_max_reconnect_delay=get_env_float("WEBSOCKET_MAX_RECONNECT_DELAY", "60"),
            websocket_ping_interval=get_env_float("WEBSOCKET_PING_INTERVAL", "20"),
            target_chains=[int(cid) for cid in get_env_list("TARGET_CHAINS", "1")],
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """
        Reject inconsistent settings.

        Raises:
            ValueError: If any setting is out of range
        """
        errors = []

        if self.client_count < 1:
            errors.append("client_count must be at least 1")
        if self.polling_interval_ms <= 0:
            errors.append("polling_interval_ms must be positive")
        if self.dedupe_ttl_ms <= 0:
            errors.append("dedupe_ttl_ms must be positive")
        if self.dedupe_max_entries is not None and self.dedupe_max_entries < 1:
            errors.append("dedupe_max_entries must be positive when set")
        if not 0.0 <= self.min_reliability <= 1.0:
            errors.append("min_reliability must be within [0, 1]")
        if not 0.0 < self.reliability_alpha <= 1.0:
            errors.append("reliability_alpha must be within (0, 1]")
        if self.max_endpoints_per_chain < 1:
            errors.append("max_endpoints_per_chain must be at least 1")
        if self.health_check_timeout <= 0:
            errors.append("health_check_timeout must be positive")
        if self.unhealthy_cache_ttl <= 0:
            errors.append("unhealthy_cache_ttl must be positive")
        if self.unhealthy_cache_ttl >= self.healthy_cache_ttl:
            errors.append("unhealthy_cache_ttl must be shorter than healthy_cache_ttl")

        if errors:
            raise ValueError("Invalid mempool engine configuration: " + "; ".join(errors))
