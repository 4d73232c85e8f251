"""Pending transaction pipeline and subscription controller."""

from .client import SubscriptionController, SubscriptionHandle
from .decoder import TransactionDecoder
from .dedup import Deduplicator
from .enricher import TransactionEnricher
from .filters import passes_filter
from .models import (
    DecodedTransaction,
    EnrichedTransaction,
    MempoolTransaction,
    SubscriptionStats,
    SubscriptionStatus,
    TransactionFilter,
    TransportMode,
    TransportPreference,
)
from .normalizer import TransactionNormalizer
from .status import StatusBroadcaster

__all__ = [
    "DecodedTransaction",
    "Deduplicator",
    "EnrichedTransaction",
    "MempoolTransaction",
    "StatusBroadcaster",
    "SubscriptionController",
    "SubscriptionHandle",
    "SubscriptionStats",
    "SubscriptionStatus",
    "TransactionDecoder",
    "TransactionEnricher",
    "TransactionFilter",
    "TransactionNormalizer",
    "TransportMode",
    "TransportPreference",
    "passes_filter",
]
