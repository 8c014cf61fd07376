"""LedgerReader interface and the parsed-transaction shapes it returns."""

from __future__ import annotations

import abc
from typing import Any

from pydantic import BaseModel, Field


class SignatureInfo(BaseModel):
    """A transaction signature that involved the watched address."""

    signature: str
    slot: int
    block_time: float | None = None
    err: Any = None


class ParsedInstruction(BaseModel):
    """One top-level instruction of a transaction.

    ``kind`` is the decoded instruction name (e.g. ``withdrawRewards``) or
    ``None`` when the node could not parse it.
    """

    program_id: str
    kind: str | None = None
    info: dict[str, Any] = Field(default_factory=dict)


class ParsedTransaction(BaseModel):
    """A confirmed transaction with the metadata the decoder needs."""

    signature: str
    slot: int
    block_time: float | None = None
    instructions: list[ParsedInstruction] = Field(default_factory=list)
    account_keys: list[str] = Field(default_factory=list)
    pre_balances: list[int] = Field(default_factory=list)
    post_balances: list[int] = Field(default_factory=list)
    fee: int | None = None
    err: Any = None

    @property
    def failed(self) -> bool:
        """True when the transaction failed at the ledger level."""
        return self.err is not None

    @property
    def fee_payer(self) -> str | None:
        return self.account_keys[0] if self.account_keys else None


class LedgerReader(abc.ABC):
    """Read-only access to a ledger node.

    The first three methods feed the poller; the rest are used by the
    health checks.
    """

    @abc.abstractmethod
    async def current_height(self) -> int:
        """Return the node's current slot."""

    @abc.abstractmethod
    async def signatures_for_address(
        self, address: str, since: int, limit: int,
    ) -> list[SignatureInfo]:
        """Signatures involving *address* at slot >= *since*, newest first."""

    @abc.abstractmethod
    async def parsed_transaction(self, signature: str) -> ParsedTransaction | None:
        """Fetch a parsed transaction, or None if the node does not have it."""

    @abc.abstractmethod
    async def version(self) -> dict[str, Any]:
        """Node software version info."""

    @abc.abstractmethod
    async def account_size(self, address: str) -> int | None:
        """Data size in bytes of the account at *address*, or None if absent."""

    @abc.abstractmethod
    async def cluster_nodes(self) -> list[dict[str, Any]]:
        """Peers the node can see."""

    async def close(self) -> None:
        """Release resources (HTTP clients, etc.)."""
