"""
Transaction enrichment.

Builds a human readable summary, categorical labels and a metadata bag from a
decoded transaction so consumers don't each re-derive them.

File: mempool_engine/mempool/enricher.py
"""

import logging
from typing import Any, Dict, List, Optional

from ..utils import format_ether, format_hash
from .decoder import NATIVE_TRANSFER, TransactionDecoder
from .models import DecodedTransaction, EnrichedTransaction, MempoolTransaction

logger = logging.getLogger(__name__)


class TransactionEnricher:
    """Decodes and decorates pending transactions."""

    def __init__(self, decoder: TransactionDecoder):
        self.decoder = decoder

    async def enrich(self, transaction: MempoolTransaction) -> EnrichedTransaction:
        """
        Decode a transaction and attach summary, labels and metadata.

        A decoder failure degrades to an undecoded transaction instead of
        propagating.
        """
        try:
            decoded = await self.decoder.decode(transaction)
        except Exception as e:
            logger.warning(f"⚠️ Decoding {format_hash(transaction.hash)} failed: {e}")
            decoded = DecodedTransaction.from_transaction(transaction)

        return self.enrich_decoded(decoded)

    def enrich_decoded(self, decoded: DecodedTransaction) -> EnrichedTransaction:
        return EnrichedTransaction.from_decoded(
            decoded,
            summary=self.build_summary(decoded),
            labels=self.build_labels(decoded),
            metadata=self.build_metadata(decoded),
        )

    def build_summary(self, transaction: DecodedTransaction) -> Optional[str]:
        """
        Short description of what the transaction does.

        A known protocol and method reads "Uniswap V2 • swapExactETHForTokens".
        Plain value transfers read "Transfer 2 to 0x...". Otherwise the method
        name, or None.
        """
        protocol_name = transaction.protocol_name
        method = transaction.method

        if protocol_name and method:
            return f"{protocol_name} • {method}"

        if method and method != NATIVE_TRANSFER:
            return method

        if transaction.value > 0 and transaction.to_address:
            return f"Transfer {format_ether(transaction.value)} to {transaction.to_address}"

        return method

    def build_labels(self, transaction: DecodedTransaction) -> List[str]:
        labels = []
        if transaction.protocol_name:
            labels.append(f"protocol:{transaction.protocol_name}")
        if transaction.protocol_category:
            labels.append(f"category:{transaction.protocol_category}")
        if transaction.method:
            labels.append(f"method:{transaction.method}")
        if transaction.value > 0:
            labels.append("transfer")
        return labels

    def build_metadata(self, transaction: DecodedTransaction) -> Dict[str, Any]:
        return {
            "protocol_name": transaction.protocol_name,
            "protocol_category": transaction.protocol_category,
            "protocol_confidence": transaction.protocol.confidence if transaction.protocol else None,
            "formatted_value_eth": format_ether(transaction.value),
            "has_calldata": transaction.has_calldata,
            "function_signature": transaction.function_signature,
            "raw_method_signature": transaction.raw_method_signature,
        }
