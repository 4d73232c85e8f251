"""
Transaction normalizer.

Turns whatever a node delivers (bare hashes, JSON-RPC objects with hex
quantities, web3 AttributeDicts with ints and HexBytes) into one canonical
MempoolTransaction.

File: mempool_engine/mempool/normalizer.py
"""

import asyncio
import logging
from typing import Any, Callable, Iterable, List, Mapping, Optional

from ..transports.base import Transport
from ..utils import format_hash, to_hex_str, to_non_negative_int
from .models import MempoolTransaction

logger = logging.getLogger(__name__)


def _address(value: Any) -> Optional[str]:
    text = to_hex_str(value)
    return text.lower() if text else None


class TransactionNormalizer:
    """Canonicalizes raw pending transaction payloads."""

    def normalize(self, entry: Mapping[str, Any], chain_id: int) -> Optional[MempoolTransaction]:
        """
        Build a MempoolTransaction from a transaction-like mapping.

        Records without a hash or sender are rejected. Numeric fields are
        coerced to non-negative ints; absent or unparsable ones become None,
        except value and nonce which default to 0.

        Args:
            entry: Raw transaction object
            chain_id: Chain the payload came from

        Returns:
            MempoolTransaction or None if the record is unusable
        """
        tx_hash = to_hex_str(entry.get("hash"))
        sender = _address(entry.get("from"))
        if not tx_hash or not sender:
            logger.debug(f"Rejecting transaction without hash/from on chain {chain_id}")
            return None

        raw_input = entry.get("input")
        if raw_input is None:
            raw_input = entry.get("data")
        calldata = to_hex_str(raw_input) if raw_input is not None else "0x"

        return MempoolTransaction(
            chain_id=chain_id,
            hash=tx_hash.lower(),
            from_address=sender,
            to_address=_address(entry.get("to")),
            value=to_non_negative_int(entry.get("value")) or 0,
            gas=to_non_negative_int(entry.get("gas")),
            gas_price=to_non_negative_int(entry.get("gasPrice")),
            max_fee_per_gas=to_non_negative_int(entry.get("maxFeePerGas")),
            max_priority_fee_per_gas=to_non_negative_int(entry.get("maxPriorityFeePerGas")),
            nonce=to_non_negative_int(entry.get("nonce")) or 0,
            input=calldata or "0x",
            block_number=to_non_negative_int(entry.get("blockNumber")),
            timestamp=to_non_negative_int(entry.get("timestamp")),
            type=to_non_negative_int(entry.get("type")),
        )

    async def fetch_transaction(
        self,
        transport: Transport,
        tx_hash: str,
        chain_id: int,
    ) -> Optional[MempoolTransaction]:
        """Look a bare hash up through the transport. Misses and failures yield None."""
        try:
            transaction = await transport.get_transaction_by_hash(tx_hash)
        except Exception as e:
            logger.warning(f"⚠️ Failed to fetch transaction {format_hash(tx_hash)} from {transport.url}: {e}")
            return None

        if not transaction:
            logger.warning(f"⚠️ Transaction {format_hash(tx_hash)} not found on {transport.url}")
            return None
        return self.normalize(transaction, chain_id)

    async def normalize_batch(
        self,
        payload: Iterable[Any],
        chain_id: int,
        transport: Transport,
        accept_hash: Optional[Callable[[str], bool]] = None,
    ) -> List[MempoolTransaction]:
        """
        Normalize a batch of raw entries in arrival order.

        Bare hashes (str or bytes) trigger a point lookup; mappings are
        normalized directly; anything else is skipped. Lookups run
        concurrently. Bare hashes rejected by accept_hash are dropped before
        any lookup is made.
        """
        slots: List[Any] = []

        for entry in payload:
            if isinstance(entry, (str, bytes, bytearray)):
                tx_hash = to_hex_str(entry)
                if not tx_hash:
                    continue
                if accept_hash is not None and not accept_hash(tx_hash):
                    continue
                slots.append(self.fetch_transaction(transport, tx_hash, chain_id))
            elif isinstance(entry, Mapping):
                slots.append(self.normalize(entry, chain_id))
            else:
                logger.debug(f"Skipping unsupported payload entry of type {type(entry).__name__}")

        lookups = [index for index, slot in enumerate(slots) if asyncio.iscoroutine(slot)]
        if lookups:
            results = await asyncio.gather(*(slots[index] for index in lookups))
            for index, transaction in zip(lookups, results):
                slots[index] = transaction

        return [transaction for transaction in slots if transaction is not None]
