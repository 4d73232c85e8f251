"""
Subscription controller tests.

Drive full subscriptions against fake transports: attachment and fallback,
the delivery pipeline, deduplication across providers and teardown.

File: tests/test_client.py
"""

import asyncio

import pytest

from conftest import (
    HTTP_URLS,
    RECIPIENT,
    WS_URLS,
    FakeClock,
    FakeStreamingTransport,
    make_raw_transaction,
    settle,
)
from mempool_engine.config import MempoolEngineConfig
from mempool_engine.exceptions import (
    AttachError,
    NoHealthyEndpointsError,
    UnsupportedChainError,
)
from mempool_engine.mempool.client import SubscriptionController
from mempool_engine.mempool.models import (
    EnrichedTransaction,
    SubscriptionStatus,
    TransportMode,
    TransportPreference,
)


def tx_hash(n: int) -> str:
    return "0x" + f"{n:064x}"


class Recorder:
    """Collects everything a subscription reports, in order."""

    def __init__(self):
        self.events = []

    @property
    def batches(self):
        return [payload for kind, payload in self.events if kind == "transactions"]

    @property
    def delivered(self):
        return [tx for batch in self.batches for tx in batch]

    @property
    def errors(self):
        return [payload for kind, payload in self.events if kind == "error"]

    @property
    def statuses(self):
        return [payload for kind, payload in self.events if kind == "status"]

    def on_transactions(self, transactions):
        self.events.append(("transactions", transactions))

    def on_error(self, error):
        self.events.append(("error", error))

    def on_status(self, status):
        self.events.append(("status", status))

    def callbacks(self):
        return {
            "on_transactions": self.on_transactions,
            "on_error": self.on_error,
            "on_status_change": self.on_status,
        }


# =============================================================================
# ATTACHMENT
# =============================================================================

class TestSubscriptionAttachment:
    """Test suite for endpoint attachment and status transitions."""

    @pytest.mark.asyncio
    async def test_streaming_subscription_goes_active(self, controller, transport_factory):
        recorder = Recorder()

        handle = controller.subscribe(1, **recorder.callbacks())
        await settle()

        assert handle.status == SubscriptionStatus.ACTIVE
        assert handle.transport_mode == TransportMode.STREAMING
        assert recorder.statuses == [SubscriptionStatus.CONNECTING, SubscriptionStatus.ACTIVE]
        watching = [
            t for t in transport_factory.transports.values()
            if isinstance(t, FakeStreamingTransport) and t.watching
        ]
        assert len(watching) == 2
        assert len({t.endpoint.provider_label for t in watching}) == 2

        await controller.close()

    @pytest.mark.asyncio
    async def test_streaming_failure_reports_before_fallback(self, controller, transport_factory):
        """Every streaming endpoint down: an error, then polling takes over."""
        for url in WS_URLS:
            transport_factory.add(url, fail=True)
        recorder = Recorder()

        handle = controller.subscribe(1, **recorder.callbacks())
        await settle()

        assert handle.status == SubscriptionStatus.FALLBACK
        assert handle.transport_mode == TransportMode.POLLING
        assert isinstance(recorder.errors[0], NoHealthyEndpointsError)

        kinds = [(kind, payload) for kind, payload in recorder.events]
        first_error = next(i for i, (kind, _) in enumerate(kinds) if kind == "error")
        fallback = kinds.index(("status", SubscriptionStatus.FALLBACK))
        assert first_error < fallback

        await controller.close()

    @pytest.mark.asyncio
    async def test_polling_preference_skips_streaming(self, controller, transport_factory):
        recorder = Recorder()

        handle = controller.subscribe(1, transport="polling", **recorder.callbacks())
        await settle()

        assert handle.status == SubscriptionStatus.FALLBACK
        assert recorder.errors == []
        assert not any(
            isinstance(t, FakeStreamingTransport) for t in transport_factory.transports.values()
        )

        await controller.close()

    @pytest.mark.asyncio
    async def test_strict_streaming_reports_then_polls(self, controller, transport_factory):
        for url in WS_URLS:
            transport_factory.add(url, fail=True)
        recorder = Recorder()

        handle = controller.subscribe(
            1, transport=TransportPreference.STREAMING, **recorder.callbacks()
        )
        await settle()

        messages = [str(error) for error in recorder.errors]
        assert any("Unable to establish streaming subscriptions" in m for m in messages)
        assert handle.status == SubscriptionStatus.FALLBACK

        await controller.close()

    @pytest.mark.asyncio
    async def test_streaming_disabled_goes_straight_to_polling(
        self, chain_registry, protocol_registry, health_manager, transport_factory
    ):
        config = MempoolEngineConfig(
            client_count=2, polling_interval_ms=20, include_websocket=False
        )
        controller = SubscriptionController(
            chain_registry, protocol_registry, health_manager, transport_factory, config
        )
        recorder = Recorder()

        handle = controller.subscribe(1, **recorder.callbacks())
        await settle()

        assert handle.status == SubscriptionStatus.FALLBACK
        assert recorder.errors == []

        await controller.close()

    @pytest.mark.asyncio
    async def test_nothing_attaches_closes_subscription(self, controller, transport_factory):
        for url in HTTP_URLS + WS_URLS:
            transport_factory.add(url, fail=True)
        recorder = Recorder()

        handle = controller.subscribe(1, **recorder.callbacks())
        await settle()

        assert handle.status == SubscriptionStatus.CLOSED
        assert recorder.statuses == [SubscriptionStatus.CONNECTING, SubscriptionStatus.CLOSED]
        assert isinstance(recorder.errors[-1], AttachError)
        assert "Failed to attach any RPC clients" in str(recorder.errors[-1])
        assert controller.get_subscription(handle.id) is None

    @pytest.mark.asyncio
    async def test_single_watch_failure_is_isolated(self, controller, transport_factory):
        transport_factory.add(WS_URLS[0], watch_error=RuntimeError("subscribe rejected"))
        recorder = Recorder()

        handle = controller.subscribe(1, **recorder.callbacks())
        await settle()

        assert handle.status == SubscriptionStatus.ACTIVE
        assert len(recorder.errors) == 1
        assert isinstance(recorder.errors[0], AttachError)
        assert recorder.errors[0].endpoint_url == WS_URLS[0]

        await controller.close()

    @pytest.mark.asyncio
    async def test_runtime_stream_error_keeps_subscription_active(self, controller, transport_factory):
        stream = transport_factory.add(WS_URLS[0])
        recorder = Recorder()

        handle = controller.subscribe(1, **recorder.callbacks())
        await settle()
        stream.on_error(ConnectionError("socket dropped"))

        assert handle.status == SubscriptionStatus.ACTIVE
        assert isinstance(recorder.errors[0], AttachError)
        assert recorder.errors[0].endpoint_url == WS_URLS[0]

        await controller.close()

    @pytest.mark.asyncio
    async def test_unsupported_chain_raises_synchronously(self, controller):
        with pytest.raises(UnsupportedChainError):
            controller.subscribe(999)

        assert controller.active_subscriptions == []

    @pytest.mark.asyncio
    async def test_on_status_replays_current_status(self, controller):
        handle = controller.subscribe(1)
        await settle()
        seen = []

        handle.on_status(seen.append)

        assert seen == [SubscriptionStatus.ACTIVE]

        await controller.close()


# =============================================================================
# DELIVERY PIPELINE
# =============================================================================

class TestSubscriptionDelivery:
    """Test suite for normalize, dedup, enrich, filter and deliver."""

    @pytest.mark.asyncio
    async def test_streamed_transaction_is_enriched_and_delivered(self, controller, transport_factory):
        stream = transport_factory.add(WS_URLS[0])
        recorder = Recorder()

        handle = controller.subscribe(1, **recorder.callbacks())
        await settle()
        stream.emit([make_raw_transaction(value=2 * 10**18)])
        await settle()

        assert len(recorder.batches) == 1
        tx = recorder.delivered[0]
        assert isinstance(tx, EnrichedTransaction)
        assert tx.summary == f"Transfer 2 to {RECIPIENT}"
        stats = handle.get_stats()
        assert stats.received == 1
        assert stats.last_activity_at is not None

        await controller.close()

    @pytest.mark.asyncio
    async def test_bare_hash_is_resolved_through_the_transport(self, controller, transport_factory):
        stream = transport_factory.add(WS_URLS[0])
        stream.transactions[tx_hash(1)] = make_raw_transaction(tx_hash=tx_hash(1), value=5)
        recorder = Recorder()

        controller.subscribe(1, **recorder.callbacks())
        await settle()
        stream.emit([tx_hash(1), tx_hash(2)])
        await settle()

        assert [tx.hash for tx in recorder.delivered] == [tx_hash(1)]

        await controller.close()

    @pytest.mark.asyncio
    async def test_duplicate_across_providers_delivered_once(self, controller, transport_factory):
        """Two providers see the same transaction 50ms apart."""
        first = transport_factory.add(WS_URLS[0])
        second = transport_factory.add(WS_URLS[1])
        recorder = Recorder()

        handle = controller.subscribe(1, **recorder.callbacks())
        await settle()
        raw = make_raw_transaction(tx_hash=tx_hash(7), value=1)
        first.emit([raw])
        await asyncio.sleep(0.05)
        second.emit([dict(raw)])
        await settle()

        stats = handle.get_stats()
        assert len(recorder.delivered) == 1
        assert stats.received == 1
        assert stats.dropped >= 1

        await controller.close()

    @pytest.mark.asyncio
    async def test_hash_announced_by_several_providers_is_looked_up_once(
        self, controller, transport_factory
    ):
        for url in WS_URLS:
            stream = transport_factory.add(url)
            stream.transactions[tx_hash(8)] = make_raw_transaction(tx_hash=tx_hash(8))
            stream.lookup_delay = 0.05
        recorder = Recorder()

        handle = controller.subscribe(1, **recorder.callbacks())
        await settle()
        streams = [
            t for t in transport_factory.transports.values()
            if isinstance(t, FakeStreamingTransport) and t.watching
        ]
        for stream in streams:
            stream.emit([tx_hash(8)])
        await settle(rounds=10)

        lookups = sum(len(t.lookup_calls) for t in transport_factory.transports.values())
        stats = handle.get_stats()
        assert len(streams) >= 2
        assert lookups == 1
        assert [tx.hash for tx in recorder.delivered] == [tx_hash(8)]
        assert stats.dropped == len(streams) - 1

        await controller.close()

    @pytest.mark.asyncio
    async def test_missed_lookup_releases_the_hash(self, controller, transport_factory):
        for url in WS_URLS:
            transport_factory.add(url)
        recorder = Recorder()

        handle = controller.subscribe(1, **recorder.callbacks())
        await settle()
        streams = [
            t for t in transport_factory.transports.values()
            if isinstance(t, FakeStreamingTransport) and t.watching
        ]
        streams[0].emit([tx_hash(4)])
        await settle()
        streams[1].transactions[tx_hash(4)] = make_raw_transaction(tx_hash=tx_hash(4))
        streams[1].emit([tx_hash(4)])
        await settle()

        assert [tx.hash for tx in recorder.delivered] == [tx_hash(4)]
        assert handle.get_stats().dropped == 0

        await controller.close()

    @pytest.mark.asyncio
    async def test_dedup_window_ignores_wall_clock_jumps(
        self, chain_registry, protocol_registry, health_manager, transport_factory, engine_config
    ):
        wall_clock, dedup_clock = FakeClock(), FakeClock()
        controller = SubscriptionController(
            chain_registry=chain_registry,
            protocol_registry=protocol_registry,
            health_manager=health_manager,
            transport_factory=transport_factory,
            config=engine_config,
            clock=wall_clock,
            dedup_clock=dedup_clock,
        )
        transport_factory.add(WS_URLS[0])
        recorder = Recorder()

        handle = controller.subscribe(1, **recorder.callbacks())
        await settle()
        stream = next(
            t for t in transport_factory.transports.values()
            if isinstance(t, FakeStreamingTransport) and t.watching
        )
        raw = make_raw_transaction(tx_hash=tx_hash(5))
        stream.emit([raw])
        await settle()

        wall_clock.advance(3_600)
        stream.emit([dict(raw)])
        await settle()
        assert len(recorder.delivered) == 1

        dedup_clock.advance(61)
        stream.emit([dict(raw)])
        await settle()
        assert len(recorder.delivered) == 2
        assert handle.get_stats().last_activity_at == wall_clock.now * 1000

        await controller.close()

    @pytest.mark.asyncio
    async def test_polling_delivers_each_transaction_once(self, controller, transport_factory):
        for url in HTTP_URLS:
            transport_factory.add(url).pending = [make_raw_transaction(tx_hash=tx_hash(3))]
        recorder = Recorder()

        handle = controller.subscribe(1, transport="polling", **recorder.callbacks())
        await settle(rounds=10)

        stats = handle.get_stats()
        assert [tx.hash for tx in recorder.delivered] == [tx_hash(3)]
        assert stats.received == 1
        assert stats.dropped >= 1

        await controller.close()

    @pytest.mark.asyncio
    async def test_value_filter(self, controller, transport_factory):
        stream = transport_factory.add(WS_URLS[0])
        recorder = Recorder()

        controller.subscribe(1, tx_filter={"min_value_wei": 10**18}, **recorder.callbacks())
        await settle()
        stream.emit([
            make_raw_transaction(tx_hash=tx_hash(1), value=10**17),
            make_raw_transaction(tx_hash=tx_hash(2), value=10**18),
            make_raw_transaction(tx_hash=tx_hash(3), value=2 * 10**18),
        ])
        await settle()

        assert [tx.value for tx in recorder.delivered] == [10**18, 2 * 10**18]

        await controller.close()

    @pytest.mark.asyncio
    async def test_fully_filtered_batch_is_not_delivered(self, controller, transport_factory):
        stream = transport_factory.add(WS_URLS[0])
        recorder = Recorder()

        handle = controller.subscribe(1, tx_filter={"methods": {"transfer"}}, **recorder.callbacks())
        await settle()
        stream.emit([make_raw_transaction(value=1)])
        await settle()

        assert recorder.batches == []
        assert handle.get_stats().received == 0

        await controller.close()

    @pytest.mark.asyncio
    async def test_handler_failure_does_not_break_subscription(self, controller, transport_factory):
        stream = transport_factory.add(WS_URLS[0])
        calls = []

        def broken_handler(transactions):
            calls.append(transactions)
            raise RuntimeError("consumer bug")

        handle = controller.subscribe(1, on_transactions=broken_handler)
        await settle()
        stream.emit([make_raw_transaction(tx_hash=tx_hash(1))])
        await settle()
        stream.emit([make_raw_transaction(tx_hash=tx_hash(2))])
        await settle()

        assert len(calls) == 2
        assert handle.status == SubscriptionStatus.ACTIVE

        await controller.close()


# =============================================================================
# TEARDOWN
# =============================================================================

class TestSubscriptionTeardown:
    """Test suite for unsubscribe and controller shutdown."""

    @pytest.mark.asyncio
    async def test_unsubscribe_is_idempotent(self, controller, transport_factory):
        stream = transport_factory.add(WS_URLS[0])
        recorder = Recorder()

        handle = controller.subscribe(1, **recorder.callbacks())
        await settle()
        handle.unsubscribe()
        handle.unsubscribe()

        assert handle.status == SubscriptionStatus.CLOSED
        assert recorder.statuses.count(SubscriptionStatus.CLOSED) == 1
        assert stream.cancel_calls == 1
        assert not stream.watching
        assert controller.get_subscription(handle.id) is None

    @pytest.mark.asyncio
    async def test_in_flight_batch_discarded_after_unsubscribe(self, controller, transport_factory):
        stream = transport_factory.add(WS_URLS[0])
        stream.transactions[tx_hash(9)] = make_raw_transaction(tx_hash=tx_hash(9))
        stream.lookup_delay = 0.05
        recorder = Recorder()

        handle = controller.subscribe(1, **recorder.callbacks())
        await settle()
        stream.emit([tx_hash(9)])
        await asyncio.sleep(0.01)
        handle.unsubscribe()
        await settle(rounds=10)

        assert recorder.batches == []
        assert handle.get_stats().received == 0

    @pytest.mark.asyncio
    async def test_unsubscribe_during_attach(self, controller, transport_factory):
        for url in WS_URLS:
            transport_factory.add(url, delay=0.05)
        recorder = Recorder()

        handle = controller.subscribe(1, **recorder.callbacks())
        await asyncio.sleep(0.01)
        handle.unsubscribe()
        await settle(rounds=10)

        assert handle.status == SubscriptionStatus.CLOSED
        assert recorder.statuses == [SubscriptionStatus.CONNECTING, SubscriptionStatus.CLOSED]
        assert not any(
            t.watching for t in transport_factory.transports.values()
            if isinstance(t, FakeStreamingTransport)
        )

    @pytest.mark.asyncio
    async def test_polling_stops_after_unsubscribe(self, controller, transport_factory):
        recorder = Recorder()

        handle = controller.subscribe(1, transport="polling", **recorder.callbacks())
        await settle()
        handle.unsubscribe()
        for transport in transport_factory.transports.values():
            transport.pending = [make_raw_transaction()]
        await settle(rounds=10)

        assert recorder.batches == []

    @pytest.mark.asyncio
    async def test_close_tears_everything_down(self, controller, transport_factory):
        first = controller.subscribe(1)
        second = controller.subscribe(1, transport="polling")
        await settle()

        await controller.close()

        assert first.status == SubscriptionStatus.CLOSED
        assert second.status == SubscriptionStatus.CLOSED
        assert controller.active_subscriptions == []
        assert transport_factory.closed is True
