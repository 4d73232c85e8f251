"""
Engine utilities.

Logging setup, numeric coercion for raw RPC payloads and display helpers
shared by the health manager, the normalizer and the enricher.

File: mempool_engine/utils.py
"""

import logging
import time
from decimal import Decimal
from typing import Any, Optional, Union

from eth_utils import is_hexstr, to_hex

logger = logging.getLogger(__name__)

WEI_PER_ETHER = 10 ** 18


def setup_logging(level: str = "INFO") -> None:
    """
    Set up basic logging configuration.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='[%(levelname)s] %(asctime)s %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def monotonic_ms() -> float:
    """Monotonic clock in milliseconds. Only differences between readings mean anything."""
    return time.monotonic() * 1000


def to_non_negative_int(value: Any) -> Optional[int]:
    """
    Coerce a numeric-ish RPC field to a non-negative integer.

    Accepts ints, hex strings ("0x1a"), decimal strings and raw bytes
    (HexBytes). Anything else, including negative numbers and booleans,
    yields None.

    Args:
        value: Raw field value from a node payload

    Returns:
        Integer value or None if absent/unparsable
    """
    if value is None or isinstance(value, bool):
        return None

    try:
        if isinstance(value, int):
            result = value
        elif isinstance(value, (bytes, bytearray)):
            result = int.from_bytes(value, "big") if value else 0
        elif isinstance(value, str):
            text = value.strip()
            if not text:
                return None
            if text.lower().startswith("0x"):
                result = int(text, 16) if len(text) > 2 else 0
            else:
                result = int(text)
        else:
            result = int(value)
    except (TypeError, ValueError):
        return None

    return result if result >= 0 else None


def to_hex_str(value: Any) -> Optional[str]:
    """Render bytes/hex/ints as a 0x-prefixed lowercase hex string."""
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        return to_hex(bytes(value))
    if isinstance(value, int) and not isinstance(value, bool):
        return to_hex(value)
    if isinstance(value, str):
        if is_hexstr(value):
            text = value if value[:2].lower() == "0x" else f"0x{value}"
            return text.lower()
        return value
    return str(value)


def wei_to_ether(wei_amount: Union[int, str]) -> Decimal:
    """
    Convert Wei to Ether.

    Args:
        wei_amount: Amount in Wei

    Returns:
        Amount in Ether as Decimal
    """
    amount = to_non_negative_int(wei_amount) or 0
    return Decimal(amount).scaleb(-18)


def format_ether(wei_amount: Union[int, str]) -> str:
    """
    Human-readable 18-decimal rendering without trailing zeros.

    2 * 10**18 -> "2", 15 * 10**17 -> "1.5", 1 -> "0.000000000000000001".
    """
    ether = wei_to_ether(wei_amount)
    if ether == 0:
        return "0"
    return format(ether.normalize(), "f")


def format_address(address: str, length: int = 8) -> str:
    """
    Format Ethereum address for display.

    Args:
        address: Full Ethereum address
        length: Number of characters to show from start/end

    Returns:
        Formatted address (e.g., "0x1234...7890")
    """
    if not address or len(address) < 10:
        return address

    return f"{address[:length]}...{address[-4:]}"


def format_hash(tx_hash: str, length: int = 10) -> str:
    """
    Format transaction hash for display.

    Args:
        tx_hash: Full transaction hash
        length: Number of characters to show from start

    Returns:
        Formatted hash (e.g., "0x1234567...")
    """
    if not tx_hash or len(tx_hash) < 10:
        return tx_hash

    return f"{tx_hash[:length]}..."
