"""
Package wiring tests.

File: tests/test_engine.py
"""

from unittest.mock import patch

import pytest

from conftest import HTTP_URLS
from mempool_engine import (
    ManualProtocolRegistry,
    MempoolEngineConfig,
    SubscriptionController,
    TransportFactory,
    build_subscription_controller,
)
from mempool_engine.chains import ChainRegistry
from mempool_engine.config import ChainConfig


class TestBuildSubscriptionController:
    """Test suite for the controller builder."""

    @pytest.mark.asyncio
    async def test_defaults_wire_curated_registry(self):
        config = MempoolEngineConfig(target_chains=[1, 8453])

        controller = build_subscription_controller(config)

        assert isinstance(controller, SubscriptionController)
        assert isinstance(controller.transport_factory, TransportFactory)
        assert isinstance(controller.decoder.protocol_registry, ManualProtocolRegistry)
        assert controller.chain_registry.is_chain_supported(8453)
        assert not controller.chain_registry.is_chain_supported(42161)
        assert controller.health_manager.config is config

    @pytest.mark.asyncio
    async def test_custom_registries(self):
        chain_registry = ChainRegistry([
            ChainConfig(chain_id=1, name="Ethereum", rpc_providers=list(HTTP_URLS))
        ])
        protocol_registry = ManualProtocolRegistry(include_curated=False)

        controller = build_subscription_controller(
            MempoolEngineConfig(), protocol_registry, chain_registry
        )

        assert controller.chain_registry is chain_registry
        assert controller.decoder.protocol_registry is protocol_registry

    def test_invalid_config_rejected(self):
        with pytest.raises(ValueError):
            build_subscription_controller(MempoolEngineConfig(client_count=0))

    def test_config_from_environment_sets_up_logging(self, monkeypatch):
        monkeypatch.setenv("TARGET_CHAINS", "42161")
        monkeypatch.setenv("LOG_LEVEL", "warning")

        with patch("mempool_engine.setup_logging") as setup_logging:
            controller = build_subscription_controller()

        setup_logging.assert_called_once_with("WARNING")
        assert controller.config.target_chains == [42161]
        assert controller.chain_registry.is_chain_supported(42161)
