"""
Transaction decoder.

Resolves the protocol a transaction targets and decodes its calldata, falling
back from the contract interface to a 4-byte selector lookup. Decoding never
raises: whatever can't be resolved is left as None.

File: mempool_engine/mempool/decoder.py
"""

import logging
from typing import Optional

from ..exceptions import DecodeFailure
from ..protocols.abis import build_signature, decode_calldata, selector_of, strip_arguments
from ..protocols.registry import ProtocolLookupResult, ProtocolRegistry
from ..utils import format_address, format_hash
from .models import DecodedTransaction, MempoolTransaction

logger = logging.getLogger(__name__)

CONTRACT_CREATION = "contractCreation"
NATIVE_TRANSFER = "nativeTransfer"
PLAIN_CALL = "call"


class TransactionDecoder:
    """Layered calldata decoding against a ProtocolRegistry."""

    def __init__(self, protocol_registry: ProtocolRegistry):
        self.protocol_registry = protocol_registry

    async def decode(self, transaction: MempoolTransaction) -> DecodedTransaction:
        """
        Decode a transaction.

        1. No recipient: contract creation.
        2. Empty calldata: native transfer if value > 0, else a plain call.
        3. Otherwise decode against the interface registered for the target.
        4. Failing that, resolve the 4-byte selector to a signature.

        Args:
            transaction: Normalized transaction

        Returns:
            DecodedTransaction, partially populated when decoding fails
        """
        selector = selector_of(transaction.input)

        if transaction.to_address is None:
            return DecodedTransaction.from_transaction(
                transaction,
                method=CONTRACT_CREATION,
                function_signature=selector,
            )

        protocol = self._lookup_protocol(transaction)

        if not transaction.has_calldata:
            return DecodedTransaction.from_transaction(
                transaction,
                protocol=protocol,
                method=NATIVE_TRANSFER if transaction.value > 0 else PLAIN_CALL,
            )

        decoded = DecodedTransaction.from_transaction(
            transaction,
            protocol=protocol,
            function_signature=selector,
        )

        try:
            await self._decode_with_interface(decoded)
        except Exception as e:
            logger.debug(f"Interface decode failed for {format_hash(decoded.hash)}: {e}")

        if decoded.method is None and selector is not None:
            try:
                await self._decode_with_selector(decoded, selector)
            except Exception as e:
                logger.debug(f"Selector lookup failed for {selector}: {e}")

        return decoded

    def _lookup_protocol(self, transaction: MempoolTransaction) -> Optional[ProtocolLookupResult]:
        try:
            return self.protocol_registry.lookup(transaction.to_address, transaction.chain_id)
        except Exception as e:
            logger.debug(f"Protocol lookup failed for {format_address(transaction.to_address)}: {e}")
            return None

    async def _decode_with_interface(self, decoded: DecodedTransaction) -> None:
        interface = await self.protocol_registry.get_interface(
            decoded.to_address, decoded.chain_id
        )
        if interface is None:
            return

        result = decode_calldata(interface.abi, decoded.input)
        if result is None:
            raise DecodeFailure(f"selector {decoded.function_signature} not in {interface.name}")

        entry, args = result
        decoded.method = entry["name"]
        decoded.raw_method_signature = build_signature(entry)
        decoded.args = args
        decoded.abi_name = interface.name

    async def _decode_with_selector(self, decoded: DecodedTransaction, selector: str) -> None:
        signature = await self.protocol_registry.get_function_signature(selector)
        if not signature:
            return
        decoded.raw_method_signature = signature
        decoded.method = strip_arguments(signature)
