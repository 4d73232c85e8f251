"""
Endpoint health management.

Probes RPC endpoints, caches the results with asymmetric TTLs and keeps an
exponential moving average reliability score per endpoint. Selection helpers
build on top of that to hand out healthy, provider-diverse endpoint sets.

The health cache and reliability scores are the only state shared between
subscriptions and chains. One manager instance is built per process (or per
test) and injected wherever it's needed.

File: mempool_engine/health.py
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from .chains import ChainRegistry, Endpoint
from .config import MempoolEngineConfig
from .exceptions import NoEndpointsError, NoHealthyEndpointsError
from .transports.factory import TransportFactory

logger = logging.getLogger(__name__)


@dataclass
class HealthRecord:
    """Result of one liveness probe."""
    healthy: bool
    latency_ms: float
    block_number: Optional[int] = None
    error: Optional[str] = None
    recorded_at: float = field(default=0.0, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "healthy": self.healthy,
            "latency_ms": round(self.latency_ms, 2),
            "block_number": self.block_number,
            "error": self.error,
        }


def update_reliability(score: float, success: bool, alpha: float = 0.1) -> float:
    """
    Exponential moving average update of a reliability score.

    success: score + (1 - score) * alpha
    failure: score * (1 - alpha)

    The result is clamped to [0, 1] whatever the input.
    """
    if success:
        updated = score + (1.0 - score) * alpha
    else:
        updated = score * (1.0 - alpha)
    return max(0.0, min(1.0, updated))


class EndpointHealthManager:
    """
    Health cache, reliability scores and endpoint selection.

    Healthy records are trusted for healthy_cache_ttl seconds, unhealthy ones
    only for unhealthy_cache_ttl so recovered endpoints are retried quickly
    without hammering dead ones.
    """

    def __init__(
        self,
        chain_registry: ChainRegistry,
        transport_factory: TransportFactory,
        config: Optional[MempoolEngineConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the health manager.

        Args:
            chain_registry: Source of candidate endpoints per chain
            transport_factory: Builds the transport used for probes
            config: Engine configuration (TTLs, timeout, fan-out)
            clock: Monotonic clock in seconds, injectable for tests
        """
        self.chain_registry = chain_registry
        self.transport_factory = transport_factory
        self.config = config or MempoolEngineConfig()
        self.clock = clock

        self._cache: Dict[Tuple[int, str], HealthRecord] = {}
        self._locks: Dict[Tuple[int, str], asyncio.Lock] = {}
        # Endpoints checked by URL that the registry doesn't know
        self._adhoc_endpoints: Dict[Tuple[int, str], Endpoint] = {}
        self.probe_count = 0

    # =========================================================================
    # HEALTH CHECKS
    # =========================================================================

    def _cache_ttl(self, record: HealthRecord) -> float:
        if record.healthy:
            return self.config.healthy_cache_ttl
        return self.config.unhealthy_cache_ttl

    def _fresh_record(self, key: Tuple[int, str]) -> Optional[HealthRecord]:
        record = self._cache.get(key)
        if record is None:
            return None
        if self.clock() - record.recorded_at < self._cache_ttl(record):
            return record
        return None

    async def check_health(self, endpoint_url: str, chain_id: int) -> HealthRecord:
        """
        Check an endpoint's liveness, using the cache while it is fresh.

        The probe fetches the latest block number within the configured
        timeout. Concurrent checks of the same endpoint share a single probe.

        Args:
            endpoint_url: Endpoint to probe
            chain_id: Chain the endpoint serves

        Returns:
            HealthRecord (never raises for probe failures)
        """
        endpoint = self._resolve_endpoint(chain_id, endpoint_url)
        key = (chain_id, endpoint.url)
        cached = self._fresh_record(key)
        if cached is not None:
            return cached

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            cached = self._fresh_record(key)
            if cached is not None:
                return cached

            record = await self._probe(endpoint)
            self._cache[key] = record
            self._record_outcome(endpoint, record.healthy)
            return record

    def _resolve_endpoint(self, chain_id: int, endpoint_url: str) -> Endpoint:
        endpoint = self.chain_registry.get_endpoint(chain_id, endpoint_url)
        if endpoint is not None:
            return endpoint

        url = endpoint_url.rstrip("/")
        adhoc = self._adhoc_endpoints.get((chain_id, url))
        if adhoc is None:
            adhoc = self._adhoc_endpoints[(chain_id, url)] = Endpoint.from_url(url)
            logger.debug(f"Tracking unregistered endpoint {url} on chain {chain_id}")
        return adhoc

    async def _probe(self, endpoint: Endpoint) -> HealthRecord:
        self.probe_count += 1
        started = time.perf_counter()

        try:
            transport = self.transport_factory.get_transport(endpoint)
            block_number = await asyncio.wait_for(
                transport.get_latest_block_number(),
                timeout=self.config.health_check_timeout,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            latency_ms = (time.perf_counter() - started) * 1000
            error = str(e) or e.__class__.__name__
            logger.warning(f"❌ {endpoint.url} unhealthy after {latency_ms:.0f}ms: {error}")
            return HealthRecord(
                healthy=False,
                latency_ms=latency_ms,
                error=error,
                recorded_at=self.clock(),
            )

        latency_ms = (time.perf_counter() - started) * 1000
        logger.debug(f"✅ {endpoint.url} healthy at block {block_number} ({latency_ms:.0f}ms)")
        return HealthRecord(
            healthy=True,
            latency_ms=latency_ms,
            block_number=block_number,
            recorded_at=self.clock(),
        )

    def _record_outcome(self, endpoint: Endpoint, success: bool) -> None:
        previous = endpoint.reliability
        endpoint.reliability = update_reliability(
            previous, success, self.config.reliability_alpha
        )
        endpoint.last_checked = self.clock()
        logger.debug(
            f"Reliability of {endpoint.url}: {previous:.3f} -> {endpoint.reliability:.3f}"
        )

    async def _probe_all(
        self, endpoints: List[Endpoint], chain_id: int
    ) -> List[Tuple[Endpoint, HealthRecord]]:
        """Probe endpoints concurrently; one probe failing never affects another."""
        results = await asyncio.gather(
            *(self.check_health(endpoint.url, chain_id) for endpoint in endpoints),
            return_exceptions=True,
        )

        checked = []
        for endpoint, result in zip(endpoints, results):
            if isinstance(result, BaseException):
                logger.warning(f"Health check of {endpoint.url} raised: {result}")
                continue
            checked.append((endpoint, result))
        return checked

    # =========================================================================
    # SELECTION
    # =========================================================================

    async def get_healthy_endpoints(self, chain_id: int, count: int = 1) -> List[Endpoint]:
        """
        Fastest healthy HTTP endpoints for a chain.

        Args:
            chain_id: Chain to select for
            count: Maximum number of endpoints to return

        Returns:
            Healthy endpoints sorted by ascending probe latency

        Raises:
            NoEndpointsError: The chain has no HTTP candidates
            NoHealthyEndpointsError: No candidate passed its probe
        """
        candidates = [
            endpoint for endpoint in self.chain_registry.get_rpc_endpoints(chain_id)
            if not endpoint.is_streaming
        ][:self.config.max_endpoints_per_chain]

        if not candidates:
            raise NoEndpointsError(chain_id)

        healthy = [
            (endpoint, record) for endpoint, record in await self._probe_all(candidates, chain_id)
            if record.healthy
        ]
        if not healthy:
            raise NoHealthyEndpointsError(chain_id)

        healthy.sort(key=lambda item: item[1].latency_ms)
        return [endpoint for endpoint, _ in healthy[:count]]

    async def get_healthy_endpoint(self, chain_id: int) -> str:
        """URL of the single fastest healthy endpoint."""
        endpoints = await self.get_healthy_endpoints(chain_id, 1)
        return endpoints[0].url

    async def get_diverse_healthy_endpoints(
        self,
        chain_id: int,
        count: Optional[int] = None,
        min_reliability: Optional[float] = None,
        include_streaming: bool = False,
        prefer_diverse: Optional[bool] = None,
        streaming_only: bool = False,
    ) -> List[Endpoint]:
        """
        Healthy endpoints spread across as many providers as possible.

        Phase 1 (prefer_diverse): walk the provider groups in order, probe the
        first eligible endpoint of each and keep it if healthy, one per
        provider, until count is reached. Phase 2: fill what's left from every
        eligible endpoint not already selected, probed concurrently, keeping
        candidate order.

        Args:
            chain_id: Chain to select for
            count: Number of endpoints wanted (defaults to client_count)
            min_reliability: Reliability floor (defaults to config)
            include_streaming: Allow WebSocket endpoints
            prefer_diverse: Run the one-per-provider phase (defaults to config)
            streaming_only: Only consider WebSocket endpoints

        Returns:
            Up to count healthy endpoints

        Raises:
            NoHealthyEndpointsError: Nothing was selected after both phases
        """
        count = self.config.client_count if count is None else count
        floor = self.config.min_reliability if min_reliability is None else min_reliability
        prefer_diverse = self.config.prefer_diverse if prefer_diverse is None else prefer_diverse

        def eligible(endpoint: Endpoint) -> bool:
            if endpoint.is_streaming and not (include_streaming or streaming_only):
                return False
            if streaming_only and not endpoint.is_streaming:
                return False
            return endpoint.reliability >= floor

        selected: List[Endpoint] = []
        used_providers = set()

        if prefer_diverse:
            groups = self.chain_registry.get_rpc_endpoints_by_provider(chain_id)
            for provider, endpoints in groups.items():
                if len(selected) >= count:
                    break
                candidates = [endpoint for endpoint in endpoints if eligible(endpoint)]
                if not candidates:
                    continue

                endpoint = candidates[0]
                record = await self.check_health(endpoint.url, chain_id)
                if record.healthy:
                    selected.append(endpoint)
                    used_providers.add(provider)

        if len(selected) < count:
            selected_urls = {endpoint.url for endpoint in selected}
            remaining = [
                endpoint for endpoint in self.chain_registry.get_rpc_endpoints(chain_id)
                if endpoint.url not in selected_urls and eligible(endpoint)
            ]
            for endpoint, record in await self._probe_all(remaining, chain_id):
                if len(selected) >= count:
                    break
                if record.healthy:
                    selected.append(endpoint)

        if not selected:
            kind = "streaming " if streaming_only else ""
            raise NoHealthyEndpointsError(chain_id, f"no healthy {kind}candidates")

        providers = ", ".join(endpoint.provider_label for endpoint in selected)
        logger.info(f"Selected {len(selected)} endpoint(s) for chain {chain_id}: {providers}")
        return selected

    # =========================================================================
    # INTROSPECTION
    # =========================================================================

    def clear_health_cache(self) -> None:
        """Forget every cached probe result; the next check re-probes."""
        self._cache.clear()

    def get_health_status(self, chain_id: int) -> Dict[str, HealthRecord]:
        return {url: record for (cid, url), record in self._cache.items() if cid == chain_id}

    def get_reliability_scores(self, chain_id: int) -> Dict[str, float]:
        """Reliability of the chain's registered endpoints plus any checked ad hoc."""
        scores = {
            endpoint.url: endpoint.reliability
            for endpoint in self.chain_registry.get_rpc_endpoints(chain_id)
        }
        for (cid, url), endpoint in self._adhoc_endpoints.items():
            if cid == chain_id:
                scores[url] = endpoint.reliability
        return scores

    def get_health_summary(self) -> Dict[int, Dict[str, Any]]:
        """
        Per-chain roll-up of the cached health records.

        Returns:
            {chain_id: {"checked", "healthy", "unhealthy", "average_latency_ms"}}
        """
        summary: Dict[int, Dict[str, Any]] = {}
        for (chain_id, _), record in self._cache.items():
            entry = summary.setdefault(
                chain_id, {"checked": 0, "healthy": 0, "unhealthy": 0, "_latency": []}
            )
            entry["checked"] += 1
            if record.healthy:
                entry["healthy"] += 1
                entry["_latency"].append(record.latency_ms)
            else:
                entry["unhealthy"] += 1

        for entry in summary.values():
            latencies = entry.pop("_latency")
            entry["average_latency_ms"] = (
                round(sum(latencies) / len(latencies), 2) if latencies else None
            )
        return summary
