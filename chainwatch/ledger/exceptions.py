"""Exception hierarchy for ledger access."""

from __future__ import annotations


class LedgerError(Exception):
    """Base exception for all ledger errors."""


class LedgerConnectionError(LedgerError):
    """Failed to reach the ledger node (HTTP transport)."""


class LedgerRpcError(LedgerError):
    """The node rejected the request (JSON-RPC error object or HTTP 4xx)."""

    def __init__(self, method: str, code: int, message: str) -> None:
        super().__init__(f"{method} failed ({code}): {message}")
        self.method = method
        self.code = code


class LedgerParseError(LedgerError):
    """Failed to parse a response from the node."""
