"""Ledger access — RPC reader, transaction decoding, and polling."""

from chainwatch.ledger.decoder import EventDecoder
from chainwatch.ledger.exceptions import (
    LedgerConnectionError,
    LedgerError,
    LedgerParseError,
    LedgerRpcError,
)
from chainwatch.ledger.poller import EventCallback, LedgerPoller
from chainwatch.ledger.reader import (
    LedgerReader,
    ParsedInstruction,
    ParsedTransaction,
    SignatureInfo,
)
from chainwatch.ledger.rpc import SolanaRpcReader

__all__ = [
    "EventCallback",
    "EventDecoder",
    "LedgerConnectionError",
    "LedgerError",
    "LedgerParseError",
    "LedgerPoller",
    "LedgerReader",
    "LedgerRpcError",
    "ParsedInstruction",
    "ParsedTransaction",
    "SignatureInfo",
    "SolanaRpcReader",
]
