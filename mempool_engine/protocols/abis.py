"""
Curated contract ABIs and calldata helpers.

Minimal function fragments for the routers and tokens the manual protocol
registry knows about, plus the helpers the decoder needs: full signature
reconstruction, 4-byte selectors and calldata decoding.

File: mempool_engine/protocols/abis.py
"""

from typing import Any, Dict, Iterable, List, Optional, Tuple

from eth_abi import decode as abi_decode
from eth_typing import HexStr
from eth_utils import decode_hex, function_signature_to_4byte_selector, to_hex
from eth_utils.abi import collapse_if_tuple

AbiEntry = Dict[str, Any]
Abi = List[AbiEntry]


# =============================================================================
# CURATED ABIS
# =============================================================================

ERC20_ABI: Abi = [
    {
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"}
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [
            {"name": "from", "type": "address"},
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"}
        ],
        "name": "transferFrom",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"}
        ],
        "name": "approve",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
]

WETH_ABI: Abi = ERC20_ABI + [
    {
        "inputs": [],
        "name": "deposit",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function"
    },
    {
        "inputs": [{"name": "wad", "type": "uint256"}],
        "name": "withdraw",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    },
]

UNISWAP_V2_ROUTER_ABI: Abi = [
    {
        "inputs": [
            {"internalType": "uint256", "name": "amountOutMin", "type": "uint256"},
            {"internalType": "address[]", "name": "path", "type": "address[]"},
            {"internalType": "address", "name": "to", "type": "address"},
            {"internalType": "uint256", "name": "deadline", "type": "uint256"}
        ],
        "name": "swapExactETHForTokens",
        "outputs": [{"internalType": "uint256[]", "name": "amounts", "type": "uint256[]"}],
        "stateMutability": "payable",
        "type": "function"
    },
    {
        "inputs": [
            {"internalType": "uint256", "name": "amountIn", "type": "uint256"},
            {"internalType": "uint256", "name": "amountOutMin", "type": "uint256"},
            {"internalType": "address[]", "name": "path", "type": "address[]"},
            {"internalType": "address", "name": "to", "type": "address"},
            {"internalType": "uint256", "name": "deadline", "type": "uint256"}
        ],
        "name": "swapExactTokensForETH",
        "outputs": [{"internalType": "uint256[]", "name": "amounts", "type": "uint256[]"}],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [
            {"internalType": "uint256", "name": "amountIn", "type": "uint256"},
            {"internalType": "uint256", "name": "amountOutMin", "type": "uint256"},
            {"internalType": "address[]", "name": "path", "type": "address[]"},
            {"internalType": "address", "name": "to", "type": "address"},
            {"internalType": "uint256", "name": "deadline", "type": "uint256"}
        ],
        "name": "swapExactTokensForTokens",
        "outputs": [{"internalType": "uint256[]", "name": "amounts", "type": "uint256[]"}],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [
            {"internalType": "uint256", "name": "amountIn", "type": "uint256"},
            {"internalType": "uint256", "name": "amountOutMin", "type": "uint256"},
            {"internalType": "address[]", "name": "path", "type": "address[]"},
            {"internalType": "address", "name": "to", "type": "address"},
            {"internalType": "uint256", "name": "deadline", "type": "uint256"}
        ],
        "name": "swapExactTokensForTokensSupportingFeeOnTransferTokens",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [
            {"internalType": "address", "name": "tokenA", "type": "address"},
            {"internalType": "address", "name": "tokenB", "type": "address"},
            {"internalType": "uint256", "name": "amountADesired", "type": "uint256"},
            {"internalType": "uint256", "name": "amountBDesired", "type": "uint256"},
            {"internalType": "uint256", "name": "amountAMin", "type": "uint256"},
            {"internalType": "uint256", "name": "amountBMin", "type": "uint256"},
            {"internalType": "address", "name": "to", "type": "address"},
            {"internalType": "uint256", "name": "deadline", "type": "uint256"}
        ],
        "name": "addLiquidity",
        "outputs": [
            {"internalType": "uint256", "name": "amountA", "type": "uint256"},
            {"internalType": "uint256", "name": "amountB", "type": "uint256"},
            {"internalType": "uint256", "name": "liquidity", "type": "uint256"}
        ],
        "stateMutability": "nonpayable",
        "type": "function"
    },
]

UNISWAP_V3_ROUTER_ABI: Abi = [
    {
        "inputs": [
            {
                "components": [
                    {"internalType": "address", "name": "tokenIn", "type": "address"},
                    {"internalType": "address", "name": "tokenOut", "type": "address"},
                    {"internalType": "uint24", "name": "fee", "type": "uint24"},
                    {"internalType": "address", "name": "recipient", "type": "address"},
                    {"internalType": "uint256", "name": "deadline", "type": "uint256"},
                    {"internalType": "uint256", "name": "amountIn", "type": "uint256"},
                    {"internalType": "uint256", "name": "amountOutMinimum", "type": "uint256"},
                    {"internalType": "uint160", "name": "sqrtPriceLimitX96", "type": "uint160"}
                ],
                "internalType": "struct ISwapRouter.ExactInputSingleParams",
                "name": "params",
                "type": "tuple"
            }
        ],
        "name": "exactInputSingle",
        "outputs": [{"internalType": "uint256", "name": "amountOut", "type": "uint256"}],
        "stateMutability": "payable",
        "type": "function"
    },
    {
        "inputs": [
            {
                "components": [
                    {"internalType": "bytes", "name": "path", "type": "bytes"},
                    {"internalType": "address", "name": "recipient", "type": "address"},
                    {"internalType": "uint256", "name": "deadline", "type": "uint256"},
                    {"internalType": "uint256", "name": "amountIn", "type": "uint256"},
                    {"internalType": "uint256", "name": "amountOutMinimum", "type": "uint256"}
                ],
                "internalType": "struct ISwapRouter.ExactInputParams",
                "name": "params",
                "type": "tuple"
            }
        ],
        "name": "exactInput",
        "outputs": [{"internalType": "uint256", "name": "amountOut", "type": "uint256"}],
        "stateMutability": "payable",
        "type": "function"
    },
    {
        "inputs": [{"internalType": "bytes[]", "name": "data", "type": "bytes[]"}],
        "name": "multicall",
        "outputs": [{"internalType": "bytes[]", "name": "results", "type": "bytes[]"}],
        "stateMutability": "payable",
        "type": "function"
    },
]

ONEINCH_V5_ROUTER_ABI: Abi = [
    {
        "inputs": [
            {"name": "executor", "type": "address"},
            {
                "components": [
                    {"name": "srcToken", "type": "address"},
                    {"name": "dstToken", "type": "address"},
                    {"name": "srcReceiver", "type": "address"},
                    {"name": "dstReceiver", "type": "address"},
                    {"name": "amount", "type": "uint256"},
                    {"name": "minReturnAmount", "type": "uint256"},
                    {"name": "flags", "type": "uint256"}
                ],
                "name": "desc",
                "type": "tuple"
            },
            {"name": "permit", "type": "bytes"},
            {"name": "data", "type": "bytes"}
        ],
        "name": "swap",
        "outputs": [
            {"name": "returnAmount", "type": "uint256"},
            {"name": "spentAmount", "type": "uint256"}
        ],
        "stateMutability": "payable",
        "type": "function"
    },
]

# Contract name -> ABI
CURATED_ABIS: Dict[str, Abi] = {
    "ERC20": ERC20_ABI,
    "WETH9": WETH_ABI,
    "UniswapV2Router02": UNISWAP_V2_ROUTER_ABI,
    "SwapRouter": UNISWAP_V3_ROUTER_ABI,
    "AggregationRouterV5": ONEINCH_V5_ROUTER_ABI,
}


# =============================================================================
# SIGNATURE HELPERS
# =============================================================================

def iter_functions(abi: Iterable[AbiEntry]) -> Iterable[AbiEntry]:
    """Yield the function entries of an ABI."""
    for entry in abi:
        if entry.get("type", "function") == "function" and entry.get("name"):
            yield entry


def input_types(entry: AbiEntry) -> List[str]:
    """Canonical argument types, tuples collapsed to "(t1,t2,...)"."""
    return [collapse_if_tuple(arg) for arg in entry.get("inputs", [])]


def build_signature(entry: AbiEntry) -> str:
    """
    Rebuild the canonical signature of a function entry.

    Example: {"name": "transfer", "inputs": [address, uint256]} ->
    "transfer(address,uint256)"
    """
    return f"{entry['name']}({','.join(input_types(entry))})"


def function_selector(entry: AbiEntry) -> str:
    """0x-prefixed 4-byte selector of a function entry."""
    return to_hex(function_signature_to_4byte_selector(build_signature(entry)))


def strip_arguments(signature: str) -> str:
    """Short method name from a full signature: "transfer(address,uint256)" -> "transfer"."""
    return signature.split("(", 1)[0]


def selector_of(input_data: Optional[HexStr]) -> Optional[HexStr]:
    """First four bytes of calldata as a lowercase 0x-prefixed string, if present."""
    if not input_data or len(input_data) < 10:
        return None
    return HexStr(input_data[:10].lower())


def decode_calldata(abi: Iterable[AbiEntry], input_data: HexStr) -> Optional[Tuple[AbiEntry, List[Any]]]:
    """
    Decode calldata against an ABI.

    Args:
        abi: Contract ABI to match the selector against
        input_data: 0x-prefixed calldata

    Returns:
        (matching function entry, decoded argument list) or None when no
        function in the ABI has this selector

    Raises:
        eth_abi decoding errors when the selector matches but the arguments
        are malformed
    """
    selector = selector_of(input_data)
    if selector is None:
        return None

    for entry in iter_functions(abi):
        if function_selector(entry) != selector:
            continue
        payload = decode_hex(input_data)[4:]
        values = abi_decode(input_types(entry), payload)
        return entry, list(values)

    return None


def build_selector_table(abis: Iterable[Abi]) -> Dict[str, str]:
    """Selector -> full signature for every function in the given ABIs."""
    table: Dict[str, str] = {}
    for abi in abis:
        for entry in iter_functions(abi):
            table.setdefault(function_selector(entry), build_signature(entry))
    return table
