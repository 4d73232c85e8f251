"""
Mempool Subscription Controller

Coordinates live pending-transaction subscriptions across several RPC
providers per chain. Each subscription attaches to a diverse set of healthy
endpoints, preferring streaming transports and falling back to interval
polling, then runs every payload through

    normalize -> deduplicate -> decode/enrich -> filter -> deliver

Status moves connecting -> active | fallback -> closed, where active means at
least one streaming watcher is attached and fallback means polling took over.

File: mempool_engine/mempool/client.py
"""

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Union

from ..chains import ChainRegistry, Endpoint
from ..config import MempoolEngineConfig
from ..exceptions import AttachError, TeardownError, UnsupportedChainError
from ..health import EndpointHealthManager
from ..protocols.registry import ProtocolRegistry
from ..transports.base import CancelFn, RawPayload, StreamingTransport, Transport
from ..transports.factory import TransportFactory
from .decoder import TransactionDecoder
from .dedup import Deduplicator
from .enricher import TransactionEnricher
from .filters import passes_filter
from .models import (
    EnrichedTransaction,
    SubscriptionStats,
    SubscriptionStatus,
    TransactionFilter,
    TransportMode,
    TransportPreference,
)
from .normalizer import TransactionNormalizer
from .status import StatusBroadcaster, StatusListener

logger = logging.getLogger(__name__)

TransactionsHandler = Callable[[List[EnrichedTransaction]], None]
ErrorHandler = Callable[[BaseException], None]


# =============================================================================
# SUBSCRIPTION STATE
# =============================================================================

@dataclass
class Subscription:
    """Controller-owned state of one subscribe() call."""

    id: str
    chain_id: int
    transport_preference: TransportPreference
    endpoint_count: int
    broadcaster: StatusBroadcaster
    dedup: Deduplicator
    stats: SubscriptionStats
    tx_filter: Optional[TransactionFilter] = None
    on_transactions: Optional[TransactionsHandler] = None
    on_error: Optional[ErrorHandler] = None
    transport_mode: Optional[TransportMode] = None
    watchers: List[CancelFn] = field(default_factory=list)
    attach_task: Optional[asyncio.Task] = None
    tasks: Set[asyncio.Task] = field(default_factory=set)
    torn_down: bool = False

    @property
    def status(self) -> SubscriptionStatus:
        return self.broadcaster.status

    @property
    def closed(self) -> bool:
        return self.broadcaster.status == SubscriptionStatus.CLOSED


class SubscriptionHandle:
    """Caller-facing view of a subscription."""

    def __init__(self, subscription: Subscription, controller: "SubscriptionController"):
        self._subscription = subscription
        self._controller = controller

    @property
    def id(self) -> str:
        return self._subscription.id

    @property
    def chain_id(self) -> int:
        return self._subscription.chain_id

    @property
    def status(self) -> SubscriptionStatus:
        return self._subscription.status

    @property
    def transport_mode(self) -> Optional[TransportMode]:
        return self._subscription.transport_mode

    def unsubscribe(self) -> None:
        """Stop the subscription. Safe to call more than once."""
        self._controller.teardown(self._subscription)

    def on_status(self, listener: StatusListener) -> Callable[[], None]:
        """Register a status listener; it's called right away with the current status."""
        return self._subscription.broadcaster.listen(listener, replay=True)

    def get_stats(self) -> SubscriptionStats:
        return self._subscription.stats.snapshot()

    def __repr__(self) -> str:
        return f"SubscriptionHandle(id={self.id!r}, chain_id={self.chain_id}, status={self.status.value})"


# =============================================================================
# CONTROLLER
# =============================================================================

class SubscriptionController:
    """
    High-level controller for live mempool subscriptions.

    Owns every Subscription it creates; callers only ever see handles.
    """

    def __init__(
        self,
        chain_registry: ChainRegistry,
        protocol_registry: ProtocolRegistry,
        health_manager: EndpointHealthManager,
        transport_factory: TransportFactory,
        config: Optional[MempoolEngineConfig] = None,
        clock: Callable[[], float] = time.time,
        dedup_clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the controller.

        Args:
            chain_registry: Supported chains and their endpoints
            protocol_registry: Protocol and signature resolution for decoding
            health_manager: Endpoint probing and selection
            transport_factory: Shared transports per endpoint URL
            config: Engine configuration
            clock: Wall clock in seconds, used for activity timestamps
            dedup_clock: Monotonic clock in seconds, used for dedup windows
        """
        self.chain_registry = chain_registry
        self.health_manager = health_manager
        self.transport_factory = transport_factory
        self.config = config or MempoolEngineConfig()
        self.clock = clock
        self.dedup_clock = dedup_clock

        self.normalizer = TransactionNormalizer()
        self.decoder = TransactionDecoder(protocol_registry)
        self.enricher = TransactionEnricher(self.decoder)

        self._subscriptions: Dict[str, Subscription] = {}
        self._ids = itertools.count(1)
        self.logger = logging.getLogger(f"{__name__}.SubscriptionController")

    def _now_ms(self) -> float:
        return self.clock() * 1000

    def _dedup_now_ms(self) -> float:
        return self.dedup_clock() * 1000

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def subscribe(
        self,
        chain_id: int,
        transport: Union[TransportPreference, str] = TransportPreference.AUTO,
        endpoint_count: Optional[int] = None,
        tx_filter: Optional[Union[TransactionFilter, Mapping[str, Any]]] = None,
        on_transactions: Optional[TransactionsHandler] = None,
        on_error: Optional[ErrorHandler] = None,
        on_status_change: Optional[StatusListener] = None,
    ) -> SubscriptionHandle:
        """
        Start watching pending transactions on a chain.

        Must be called from a running event loop; endpoint selection and
        attachment happen in a background task.

        Args:
            chain_id: Chain to watch
            transport: auto, streaming or polling
            endpoint_count: Number of endpoints to attach (defaults to client_count)
            tx_filter: Delivery filter (model or mapping of its fields)
            on_transactions: Called with each non-empty batch of delivered transactions
            on_error: Called with non-fatal diagnostics
            on_status_change: Called with the current status and every transition

        Returns:
            SubscriptionHandle

        Raises:
            UnsupportedChainError: If the chain registry doesn't know chain_id
        """
        if not self.chain_registry.is_chain_supported(chain_id):
            raise UnsupportedChainError(chain_id)

        if isinstance(tx_filter, Mapping):
            tx_filter = TransactionFilter(**tx_filter)

        subscription_id = f"sub-{next(self._ids)}"
        stats = SubscriptionStats()
        subscription = Subscription(
            id=subscription_id,
            chain_id=chain_id,
            transport_preference=TransportPreference(transport),
            endpoint_count=endpoint_count or self.config.client_count,
            broadcaster=StatusBroadcaster(name=subscription_id),
            dedup=Deduplicator(
                self.config.dedupe_ttl_ms,
                stats=stats,
                clock=self._dedup_now_ms,
                max_entries=self.config.dedupe_max_entries,
            ),
            stats=stats,
            tx_filter=tx_filter,
            on_transactions=on_transactions,
            on_error=on_error,
        )
        self._subscriptions[subscription_id] = subscription

        if on_status_change is not None:
            subscription.broadcaster.listen(on_status_change, replay=True)

        self.logger.info(
            f"Subscribing {subscription_id} to chain {chain_id} "
            f"({subscription.transport_preference.value}, {subscription.endpoint_count} endpoints)"
        )
        subscription.attach_task = asyncio.create_task(self._initialize(subscription))

        return SubscriptionHandle(subscription, self)

    def get_subscription(self, subscription_id: str) -> Optional[SubscriptionHandle]:
        subscription = self._subscriptions.get(subscription_id)
        return SubscriptionHandle(subscription, self) if subscription else None

    @property
    def active_subscriptions(self) -> List[SubscriptionHandle]:
        return [SubscriptionHandle(s, self) for s in self._subscriptions.values()]

    async def close(self) -> None:
        """Tear down every subscription and close all transports."""
        subscriptions = list(self._subscriptions.values())
        pending = []
        for subscription in subscriptions:
            if subscription.attach_task is not None:
                pending.append(subscription.attach_task)
            pending.extend(subscription.tasks)
            self.teardown(subscription)

        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        await self.transport_factory.close_all()
        self.logger.info(f"Controller closed ({len(subscriptions)} subscriptions torn down)")

    # =========================================================================
    # ATTACHMENT
    # =========================================================================

    async def _initialize(self, subscription: Subscription) -> None:
        """Attach streaming watchers, else polling watchers, else close."""
        preference = subscription.transport_preference

        try:
            if preference in (TransportPreference.AUTO, TransportPreference.STREAMING):
                attached = await self._attach_clients(subscription, TransportMode.STREAMING)
                if subscription.closed:
                    return
                if attached:
                    subscription.broadcaster.emit(SubscriptionStatus.ACTIVE)
                    return
                if preference == TransportPreference.STREAMING:
                    self._handle_error(
                        subscription,
                        AttachError(None, "Unable to establish streaming subscriptions"),
                    )

            attached = await self._attach_clients(subscription, TransportMode.POLLING)
            if subscription.closed:
                return
            if attached:
                subscription.broadcaster.emit(SubscriptionStatus.FALLBACK)
                return

            self._handle_error(subscription, AttachError(None, "Failed to attach any RPC clients"))
            self.teardown(subscription)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error(f"❌ Attach of {subscription.id} failed unexpectedly: {e}", exc_info=True)
            self._handle_error(subscription, e)
            self.teardown(subscription)

    async def _attach_clients(self, subscription: Subscription, mode: TransportMode) -> int:
        """
        Select endpoints for a mode and attach a watcher to each.

        Returns:
            Number of watchers attached
        """
        streaming = mode == TransportMode.STREAMING
        if streaming and not self.config.include_websocket:
            if subscription.transport_preference == TransportPreference.AUTO:
                self.logger.debug(f"{subscription.id}: streaming disabled, going straight to polling")
            return 0

        try:
            endpoints = await self.health_manager.get_diverse_healthy_endpoints(
                subscription.chain_id,
                count=subscription.endpoint_count,
                include_streaming=streaming,
                streaming_only=streaming,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._handle_error(subscription, e)
            return 0

        attached = 0
        for endpoint in endpoints:
            if subscription.closed:
                break
            cancel = self._attach_client(subscription, endpoint, mode)
            if cancel is not None:
                subscription.watchers.append(cancel)
                attached += 1

        if attached:
            subscription.transport_mode = mode
            self.logger.info(f"✅ {subscription.id}: attached {attached} {mode.value} watcher(s)")
        return attached

    def _attach_client(
        self,
        subscription: Subscription,
        endpoint: Endpoint,
        mode: TransportMode,
    ) -> Optional[CancelFn]:
        """Attach one watcher. Failures are reported and isolated to this endpoint."""
        try:
            transport = self.transport_factory.get_transport(endpoint)

            if mode == TransportMode.STREAMING:
                if not isinstance(transport, StreamingTransport):
                    raise AttachError(endpoint.url, "transport does not support streaming")
                return transport.watch_pending_transactions(
                    on_data=lambda payload: self._dispatch(subscription, transport, payload),
                    on_error=lambda error: self._handle_error(
                        subscription, AttachError(endpoint.url, error)
                    ),
                )

            task = asyncio.create_task(self._poll(subscription, transport))
            subscription.tasks.add(task)
            task.add_done_callback(subscription.tasks.discard)
            return task.cancel
        except Exception as e:
            error = e if isinstance(e, AttachError) else AttachError(endpoint.url, e)
            self._handle_error(subscription, error)
            return None

    async def _poll(self, subscription: Subscription, transport: Transport) -> None:
        """Fetch the pending block every polling interval until cancelled."""
        interval = self.config.polling_interval_ms / 1000

        while True:
            await asyncio.sleep(interval)
            if subscription.closed:
                return

            try:
                block = await transport.get_pending_block_with_transactions()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._handle_error(subscription, AttachError(transport.url, e))
                continue

            transactions = (block or {}).get("transactions") or []
            if transactions:
                self._dispatch(subscription, transport, list(transactions))

    # =========================================================================
    # PIPELINE
    # =========================================================================

    def _dispatch(self, subscription: Subscription, transport: Transport, payload: RawPayload) -> None:
        """Process a payload in its own task so a slow batch never blocks the watcher."""
        if subscription.closed:
            return
        task = asyncio.create_task(self._process_incoming(subscription, transport, payload))
        subscription.tasks.add(task)
        task.add_done_callback(subscription.tasks.discard)

    async def _process_incoming(
        self,
        subscription: Subscription,
        transport: Transport,
        payload: RawPayload,
    ) -> None:
        """
        Normalize, dedupe, enrich, filter and deliver one payload.

        Bare hashes are claimed in the dedup set before their lookup, so a
        hash announced by several providers is fetched once. A claimed hash
        whose lookup misses is released again.
        """
        if subscription.closed:
            return

        dedup = subscription.dedup
        claimed: Set[str] = set()

        def claim(tx_hash: str) -> bool:
            if not dedup.should_process(tx_hash):
                return False
            claimed.add(tx_hash.lower())
            return True

        try:
            normalized = await self.normalizer.normalize_batch(
                payload, subscription.chain_id, transport, accept_hash=claim
            )
            for tx_hash in claimed - {tx.hash for tx in normalized}:
                dedup.forget(tx_hash)
            if subscription.closed or not normalized:
                return

            unique = []
            for tx in normalized:
                if tx.hash in claimed:
                    claimed.discard(tx.hash)
                    unique.append(tx)
                elif dedup.should_process(tx.hash):
                    unique.append(tx)
            if not unique:
                return

            enriched = await asyncio.gather(*(self.enricher.enrich(tx) for tx in unique))
            if subscription.closed:
                return

            delivered = [tx for tx in enriched if passes_filter(tx, subscription.tx_filter)]
            if not delivered:
                return

            subscription.stats.received += len(delivered)
            subscription.stats.last_activity_at = self._now_ms()
            self._deliver(subscription, delivered)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._handle_error(subscription, e)

    def _deliver(self, subscription: Subscription, transactions: List[EnrichedTransaction]) -> None:
        if subscription.on_transactions is None:
            return
        try:
            subscription.on_transactions(transactions)
        except Exception as e:
            self.logger.error(f"❌ {subscription.id}: transaction handler failed: {e}", exc_info=True)

    def _handle_error(self, subscription: Subscription, error: BaseException) -> None:
        self.logger.warning(f"⚠️ {subscription.id}: {error}")
        if subscription.on_error is None:
            return
        try:
            subscription.on_error(error)
        except Exception as e:
            self.logger.error(f"❌ {subscription.id}: error handler failed: {e}", exc_info=True)

    # =========================================================================
    # TEARDOWN
    # =========================================================================

    def teardown(self, subscription: Subscription) -> None:
        """
        Close a subscription. Idempotent.

        Cancels the attach task, every watcher and in-flight processing, clears
        the dedup window, emits closed, and forgets the subscription.
        Cancellation failures are logged and never stop the remaining steps.
        """
        if subscription.torn_down:
            return
        subscription.torn_down = True

        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None

        attach_task = subscription.attach_task
        if attach_task is not None and attach_task is not current and not attach_task.done():
            attach_task.cancel()

        for cancel in subscription.watchers:
            try:
                cancel()
            except Exception as e:
                error = TeardownError(f"{subscription.id}: failed to cancel watcher: {e}")
                self.logger.warning(f"⚠️ {error}")
        subscription.watchers.clear()

        for task in list(subscription.tasks):
            if task is not current:
                task.cancel()

        subscription.dedup.clear()
        subscription.broadcaster.emit(SubscriptionStatus.CLOSED)
        self._subscriptions.pop(subscription.id, None)
        subscription.broadcaster.close()

        self.logger.info(
            f"Closed {subscription.id} (received={subscription.stats.received}, "
            f"dropped={subscription.stats.dropped})"
        )
