"""
Error taxonomy for the mempool engine.

Only UnsupportedChainError is raised to callers of subscribe(). Endpoint level
failures are reported through the subscription's error handler, decode
failures degrade the transaction instead of surfacing, and teardown failures
are logged.

File: mempool_engine/exceptions.py
"""

from typing import Optional


class MempoolEngineError(Exception):
    """Base class for all mempool engine errors."""


class UnsupportedChainError(MempoolEngineError):
    """Raised synchronously when subscribing to a chain the registry doesn't know."""

    def __init__(self, chain_id: int):
        self.chain_id = chain_id
        super().__init__(f"Chain {chain_id} is not supported by the chain registry")


class EndpointSelectionError(MempoolEngineError):
    """Endpoint selection produced nothing usable."""

    def __init__(self, chain_id: int, message: str):
        self.chain_id = chain_id
        super().__init__(message)


class NoEndpointsError(EndpointSelectionError):
    """The chain has no candidate RPC endpoints at all."""

    def __init__(self, chain_id: int):
        super().__init__(chain_id, f"No RPC endpoints found for chain {chain_id}")


class NoHealthyEndpointsError(EndpointSelectionError):
    """Candidates exist but none passed a health probe."""

    def __init__(self, chain_id: int, detail: str = ""):
        message = f"No healthy RPC endpoints found for chain {chain_id}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(chain_id, message)


class AttachError(MempoolEngineError):
    """A single endpoint failed to attach or failed while running."""

    def __init__(self, endpoint_url: Optional[str], cause: object):
        self.endpoint_url = endpoint_url
        self.cause = cause
        where = endpoint_url or "subscription"
        super().__init__(f"{where}: {cause}")


class RpcError(MempoolEngineError):
    """JSON-RPC error object returned by a node."""

    def __init__(self, method: str, error: object):
        self.method = method
        self.error = error
        if isinstance(error, dict):
            code = error.get("code")
            message = error.get("message", "unknown error")
            super().__init__(f"{method} failed ({code}): {message}")
        else:
            super().__init__(f"{method} failed: {error}")


class DecodeFailure(MempoolEngineError):
    """Calldata could not be decoded. Never leaves the decoder."""


class TeardownError(MempoolEngineError):
    """A watcher could not be cancelled cleanly. Logged, never raised."""
