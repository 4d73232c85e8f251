"""
Delivery filter predicate.

File: mempool_engine/mempool/filters.py
"""

from typing import Optional

from .models import EnrichedTransaction, TransactionFilter


def passes_filter(transaction: EnrichedTransaction, tx_filter: Optional[TransactionFilter]) -> bool:
    """
    Check a transaction against a filter.

    No filter passes everything. Otherwise every populated clause must hold:
    addresses match to or from case-insensitively, protocols/categories match
    the resolved protocol, methods match the decoded method name, and the value
    bounds are inclusive. A transaction with no decoded method never passes a
    methods clause.
    """
    if tx_filter is None:
        return True

    if tx_filter.addresses:
        participants = {transaction.from_address.lower()}
        if transaction.to_address:
            participants.add(transaction.to_address.lower())
        if not participants & tx_filter.addresses:
            return False

    if tx_filter.protocols and transaction.protocol_name not in tx_filter.protocols:
        return False

    if tx_filter.categories and transaction.protocol_category not in tx_filter.categories:
        return False

    if tx_filter.methods and transaction.method not in tx_filter.methods:
        return False

    if tx_filter.min_value_wei is not None and transaction.value < tx_filter.min_value_wei:
        return False

    if tx_filter.max_value_wei is not None and transaction.value > tx_filter.max_value_wei:
        return False

    return True
