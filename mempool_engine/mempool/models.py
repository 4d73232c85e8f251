"""
Mempool data models.

Runtime records are plain dataclasses; the caller-facing filter is a pydantic
model so it validates and normalizes its input once at construction.

File: mempool_engine/mempool/models.py
"""

from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field, field_validator, model_validator

from ..protocols.registry import ProtocolLookupResult


# =============================================================================
# ENUMS
# =============================================================================

class SubscriptionStatus(str, Enum):
    """Subscription lifecycle: connecting -> active | fallback -> closed."""
    CONNECTING = "connecting"
    ACTIVE = "active"
    FALLBACK = "fallback"
    CLOSED = "closed"


class TransportPreference(str, Enum):
    """Which transport a subscription should try first."""
    AUTO = "auto"
    STREAMING = "streaming"
    POLLING = "polling"


class TransportMode(str, Enum):
    """How a single watcher is attached."""
    STREAMING = "streaming"
    POLLING = "polling"


# =============================================================================
# TRANSACTIONS
# =============================================================================

@dataclass
class MempoolTransaction:
    """Canonical pending transaction."""

    chain_id: int
    hash: str
    from_address: str
    to_address: Optional[str]  # None for contract creation
    value: int = 0
    gas: Optional[int] = None
    gas_price: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None
    nonce: int = 0
    input: str = "0x"
    block_number: Optional[int] = None
    timestamp: Optional[int] = None
    type: Optional[int] = None

    @property
    def has_calldata(self) -> bool:
        return bool(self.input) and self.input not in ("0x", "0X")


@dataclass
class DecodedTransaction(MempoolTransaction):
    """Transaction plus what could be learned about its target and calldata."""

    protocol: Optional[ProtocolLookupResult] = None
    method: Optional[str] = None
    function_signature: Optional[str] = None  # 4-byte selector
    raw_method_signature: Optional[str] = None  # name(type,...)
    args: Optional[List[Any]] = None
    abi_name: Optional[str] = None  # interface the calldata was decoded with, not the function

    @classmethod
    def from_transaction(cls, transaction: MempoolTransaction, **decoded) -> "DecodedTransaction":
        base = {f.name: getattr(transaction, f.name) for f in fields(MempoolTransaction)}
        return cls(**base, **decoded)

    @property
    def protocol_name(self) -> Optional[str]:
        return self.protocol.protocol.name if self.protocol else None

    @property
    def protocol_category(self) -> Optional[str]:
        return self.protocol.protocol.category if self.protocol else None


@dataclass
class EnrichedTransaction(DecodedTransaction):
    """Decoded transaction with a summary, labels and a metadata bag."""

    summary: Optional[str] = None
    labels: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_decoded(cls, transaction: DecodedTransaction, **enriched) -> "EnrichedTransaction":
        base = {f.name: getattr(transaction, f.name) for f in fields(DecodedTransaction)}
        return cls(**base, **enriched)

    def to_dict(self) -> Dict[str, Any]:
        """Plain dict view; integers are kept as ints."""
        return asdict(self)


# =============================================================================
# FILTER
# =============================================================================

class TransactionFilter(BaseModel):
    """
    Caller supplied delivery filter.

    Every populated clause must hold. Empty or missing clauses are ignored.
    """

    addresses: Optional[Set[str]] = Field(None, description="Match to or from (case-insensitive)")
    protocols: Optional[Set[str]] = Field(None, description="Protocol names")
    categories: Optional[Set[str]] = Field(None, description="Protocol categories")
    methods: Optional[Set[str]] = Field(None, description="Short method names")
    min_value_wei: Optional[int] = Field(None, ge=0, description="Inclusive lower bound on value")
    max_value_wei: Optional[int] = Field(None, ge=0, description="Inclusive upper bound on value")

    @field_validator("addresses")
    @classmethod
    def lowercase_addresses(cls, v: Optional[Set[str]]) -> Optional[Set[str]]:
        """Addresses compare case-insensitively."""
        if v is None:
            return v
        return {address.lower() for address in v}

    @model_validator(mode="after")
    def check_value_bounds(self) -> "TransactionFilter":
        if (
            self.min_value_wei is not None
            and self.max_value_wei is not None
            and self.min_value_wei > self.max_value_wei
        ):
            raise ValueError("min_value_wei must not exceed max_value_wei")
        return self


# =============================================================================
# SUBSCRIPTION STATE
# =============================================================================

@dataclass
class SubscriptionStats:
    """Per-subscription counters."""
    received: int = 0
    dropped: int = 0
    last_activity_at: Optional[float] = None  # epoch milliseconds

    def snapshot(self) -> "SubscriptionStats":
        return SubscriptionStats(self.received, self.dropped, self.last_activity_at)
