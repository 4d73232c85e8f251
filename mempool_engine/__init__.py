"""
EVM Mempool Engine

Watches pending transactions on EVM chains across several node providers,
keeps the healthiest and most diverse endpoints attached, and delivers
deduplicated, decoded and filtered transactions to subscribers.

File: mempool_engine/__init__.py
"""

import logging
from typing import Optional

from .chains import ChainRegistry, Endpoint, TransportKind
from .config import MempoolEngineConfig, load_chain_configs
from .exceptions import (
    AttachError,
    DecodeFailure,
    EndpointSelectionError,
    MempoolEngineError,
    NoEndpointsError,
    NoHealthyEndpointsError,
    RpcError,
    TeardownError,
    UnsupportedChainError,
)
from .health import EndpointHealthManager, HealthRecord, update_reliability
from .mempool import (
    EnrichedTransaction,
    SubscriptionController,
    SubscriptionHandle,
    SubscriptionStatus,
    TransactionFilter,
    TransportPreference,
)
from .protocols import ManualProtocolRegistry, ProtocolRegistry
from .transports import TransportFactory
from .utils import setup_logging

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


def build_subscription_controller(
    config: Optional[MempoolEngineConfig] = None,
    protocol_registry: Optional[ProtocolRegistry] = None,
    chain_registry: Optional[ChainRegistry] = None,
) -> SubscriptionController:
    """
    Wire a controller with its collaborators.

    Args:
        config: Engine configuration (from the environment when omitted, which
            also configures logging at config.log_level)
        protocol_registry: Protocol resolution (curated in-memory registry by default)
        chain_registry: Chains and endpoints (seeded from config.target_chains by default)

    Returns:
        Ready to use SubscriptionController
    """
    if config is None:
        config = MempoolEngineConfig.from_env()
        setup_logging(config.log_level)
    config.validate()

    if chain_registry is None:
        chain_registry = ChainRegistry(load_chain_configs(config.target_chains).values())
    protocol_registry = protocol_registry or ManualProtocolRegistry()

    transport_factory = TransportFactory(config)
    health_manager = EndpointHealthManager(chain_registry, transport_factory, config)

    logger.info(
        f"Mempool engine ready for chains {[c.chain_id for c in chain_registry.get_chains()]}"
    )
    return SubscriptionController(
        chain_registry=chain_registry,
        protocol_registry=protocol_registry,
        health_manager=health_manager,
        transport_factory=transport_factory,
        config=config,
    )


__all__ = [
    "AttachError",
    "ChainRegistry",
    "DecodeFailure",
    "Endpoint",
    "EndpointHealthManager",
    "EndpointSelectionError",
    "EnrichedTransaction",
    "HealthRecord",
    "ManualProtocolRegistry",
    "MempoolEngineConfig",
    "MempoolEngineError",
    "NoEndpointsError",
    "NoHealthyEndpointsError",
    "ProtocolRegistry",
    "RpcError",
    "SubscriptionController",
    "SubscriptionHandle",
    "SubscriptionStatus",
    "TeardownError",
    "TransactionFilter",
    "TransportFactory",
    "TransportKind",
    "TransportPreference",
    "UnsupportedChainError",
    "build_subscription_controller",
    "update_reliability",
]
