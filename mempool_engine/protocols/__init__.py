"""Protocol resolution: curated ABIs and the protocol registry."""

from .abis import build_signature, decode_calldata, function_selector, strip_arguments
from .registry import (
    ContractInterface,
    ManualProtocolRegistry,
    ProtocolInfo,
    ProtocolLookupResult,
    ProtocolRegistry,
)

__all__ = [
    "ContractInterface",
    "ManualProtocolRegistry",
    "ProtocolInfo",
    "ProtocolLookupResult",
    "ProtocolRegistry",
    "build_signature",
    "decode_calldata",
    "function_selector",
    "strip_arguments",
]
