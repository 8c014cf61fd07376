"""Tests for LedgerPoller — cursor handling, dedup, failure events, callbacks."""

from __future__ import annotations

from typing import Any

from chainwatch.core.config import LedgerConfig
from chainwatch.core.types import DomainEvent, EventKind
from chainwatch.ledger.decoder import EventDecoder
from chainwatch.ledger.exceptions import LedgerConnectionError, LedgerRpcError
from chainwatch.ledger.poller import LedgerPoller
from chainwatch.ledger.reader import (
    LedgerReader,
    ParsedInstruction,
    ParsedTransaction,
    SignatureInfo,
)

PROGRAM = "RewardPoo1111111111111111111111111111111111"


# ── Helpers ─────────────────────────────────────────────────────


class FakeReader(LedgerReader):
    """In-memory ledger for testing."""

    def __init__(self) -> None:
        self.height = 100
        self.height_error: Exception | None = None
        self.signatures: list[SignatureInfo] = []
        self.transactions: dict[str, ParsedTransaction | Exception | None] = {}
        self.since_calls: list[int] = []
        self.closed = False

    async def current_height(self) -> int:
        if self.height_error is not None:
            raise self.height_error
        return self.height

    async def signatures_for_address(
        self, address: str, since: int, limit: int,
    ) -> list[SignatureInfo]:
        self.since_calls.append(since)
        return [s for s in self.signatures if s.slot >= since][:limit]

    async def parsed_transaction(self, signature: str) -> ParsedTransaction | None:
        tx = self.transactions.get(signature)
        if isinstance(tx, Exception):
            raise tx
        return tx

    async def version(self) -> dict[str, Any]:
        return {"solana-core": "1.18.0"}

    async def account_size(self, address: str) -> int | None:
        return 36

    async def cluster_nodes(self) -> list[dict[str, Any]]:
        return []

    async def close(self) -> None:
        self.closed = True


class ExplodingDecoder(EventDecoder):
    def decode(self, tx: ParsedTransaction, signature: str) -> list[DomainEvent]:
        raise ValueError("corrupt layout")


def _paused_tx(signature: str, slot: int = 90) -> ParsedTransaction:
    return ParsedTransaction(
        signature=signature,
        slot=slot,
        block_time=1000.0,
        instructions=[ParsedInstruction(program_id=PROGRAM, kind="setPaused", info={"isPaused": True})],
        account_keys=["payer1"],
    )


def _add(reader: FakeReader, signature: str, slot: int = 90, tx: object = "default") -> None:
    reader.signatures.append(SignatureInfo(signature=signature, slot=slot))
    reader.transactions[signature] = _paused_tx(signature, slot) if tx == "default" else tx  # type: ignore[assignment]


def _poller(reader: FakeReader, decoder: EventDecoder | None = None, **cfg: object) -> LedgerPoller:
    return LedgerPoller(
        reader,
        decoder or EventDecoder(PROGRAM),
        LedgerConfig(**cfg),  # type: ignore[arg-type]
    )


# ── Polling ─────────────────────────────────────────────────────


class TestPollOnce:
    async def test_emits_events_in_order(self) -> None:
        reader = FakeReader()
        _add(reader, "a")
        _add(reader, "b")
        poller = _poller(reader)
        received: list[str] = []
        poller.on_event(lambda e: received.append(e.signature))

        events = await poller.poll_once()
        assert [e.signature for e in events] == ["a", "b"]
        assert received == ["a", "b"]
        assert poller.last_height == 100
        assert poller.last_poll_time is not None

    async def test_repoll_never_reemits(self) -> None:
        reader = FakeReader()
        _add(reader, "a", slot=100)
        poller = _poller(reader)
        assert len(await poller.poll_once()) == 1

        reader.height = 101
        assert await poller.poll_once() == []
        assert poller.has_seen("a")

    async def test_height_unchanged_skips_fetch(self) -> None:
        reader = FakeReader()
        poller = _poller(reader)
        await poller.poll_once()
        assert reader.since_calls == [0]

        await poller.poll_once()
        assert reader.since_calls == [0]
        assert poller.poll_count == 2

    async def test_since_is_last_completed_height(self) -> None:
        reader = FakeReader()
        poller = _poller(reader)
        await poller.poll_once()
        reader.height = 105
        await poller.poll_once()
        assert reader.since_calls == [0, 100]
        assert poller.last_height == 105

    async def test_network_error_keeps_cursor(self) -> None:
        reader = FakeReader()
        poller = _poller(reader)
        await poller.poll_once()

        reader.height = 120
        reader.height_error = LedgerConnectionError("node down")
        (ev,) = await poller.poll_once()
        assert ev.kind == EventKind.NETWORK_ERROR
        assert ev.signature == ""
        assert ev.error == "node down"
        assert poller.last_height == 100
        assert poller.error_count == 1

    async def test_signature_listing_error_is_network_error(self) -> None:
        reader = FakeReader()

        async def broken(address: str, since: int, limit: int) -> list[SignatureInfo]:
            raise LedgerRpcError("getSignaturesForAddress", -32005, "busy")

        reader.signatures_for_address = broken  # type: ignore[method-assign]
        poller = _poller(reader)
        (ev,) = await poller.poll_once()
        assert ev.kind == EventKind.NETWORK_ERROR
        assert poller.last_height == 0


class TestTransactionHandling:
    async def test_missing_transaction_retried_later(self) -> None:
        reader = FakeReader()
        _add(reader, "late", slot=100, tx=None)
        poller = _poller(reader)
        assert await poller.poll_once() == []
        assert not poller.has_seen("late")

        reader.height = 101
        reader.transactions["late"] = _paused_tx("late", 100)
        (ev,) = await poller.poll_once()
        assert ev.signature == "late"

    async def test_missing_transaction_below_cursor_retried(self) -> None:
        reader = FakeReader()
        _add(reader, "late", slot=95, tx=None)
        poller = _poller(reader)
        assert await poller.poll_once() == []
        assert poller.pending_count == 1
        assert poller.last_height == 100

        reader.height = 101
        reader.transactions["late"] = _paused_tx("late", 95)
        events = await poller.poll_once()
        assert [e.signature for e in events] == ["late"]
        assert poller.pending_count == 0
        assert poller.has_seen("late")

        reader.height = 102
        assert await poller.poll_once() == []

    async def test_still_missing_stays_pending(self) -> None:
        reader = FakeReader()
        _add(reader, "late", slot=95, tx=None)
        poller = _poller(reader)
        await poller.poll_once()

        reader.height = 101
        assert await poller.poll_once() == []
        assert poller.pending_count == 1
        assert not poller.has_seen("late")

    async def test_pending_set_is_bounded(self) -> None:
        reader = FakeReader()
        for i in range(4):
            _add(reader, f"gone{i}", slot=95, tx=None)
        poller = _poller(reader, seen_capacity=2)
        await poller.poll_once()
        assert poller.pending_count == 2

    async def test_fetch_error_emits_transaction_failed(self) -> None:
        reader = FakeReader()
        _add(reader, "bad", tx=LedgerConnectionError("timeout"))
        poller = _poller(reader)
        (ev,) = await poller.poll_once()
        assert ev.kind == EventKind.TRANSACTION_FAILED
        assert ev.signature == "bad"
        assert ev.metadata["stage"] == "fetch"
        assert poller.has_seen("bad")

    async def test_decode_error_emits_contract_error(self) -> None:
        reader = FakeReader()
        _add(reader, "weird")
        poller = _poller(reader, decoder=ExplodingDecoder(PROGRAM))
        (ev,) = await poller.poll_once()
        assert ev.kind == EventKind.CONTRACT_ERROR
        assert ev.error == "corrupt layout"

    async def test_irrelevant_transaction_marked_seen(self) -> None:
        reader = FakeReader()
        other = ParsedTransaction(
            signature="x",
            slot=90,
            instructions=[ParsedInstruction(program_id="Other111", kind="transfer")],
        )
        _add(reader, "x", tx=other)
        poller = _poller(reader)
        assert await poller.poll_once() == []
        assert poller.has_seen("x")

    async def test_seen_set_is_bounded(self) -> None:
        reader = FakeReader()
        for sig in ("s1", "s2", "s3"):
            _add(reader, sig)
        poller = _poller(reader, seen_capacity=2)
        await poller.poll_once()
        assert poller.seen_count == 2
        assert not poller.has_seen("s1")
        assert poller.has_seen("s3")


class TestCallbacks:
    async def test_callback_error_isolated(self) -> None:
        reader = FakeReader()
        _add(reader, "a")
        poller = _poller(reader)
        received: list[DomainEvent] = []

        def bad(event: DomainEvent) -> None:
            raise RuntimeError("listener bug")

        poller.on_event(bad)
        poller.on_event(received.append)
        await poller.poll_once()
        assert len(received) == 1

    async def test_async_callback_awaited(self) -> None:
        reader = FakeReader()
        _add(reader, "a")
        poller = _poller(reader)
        received: list[DomainEvent] = []

        async def handler(event: DomainEvent) -> None:
            received.append(event)

        poller.on_event(handler)
        await poller.poll_once()
        assert [e.kind for e in received] == [EventKind.POOL_PAUSED]


class TestLifecycle:
    async def test_start_seeds_cursor(self) -> None:
        reader = FakeReader()
        _add(reader, "old", slot=50)
        poller = _poller(reader)
        await poller.start()
        try:
            assert poller.running
            assert poller.last_height == 100
        finally:
            await poller.stop()
        assert not poller.running

    async def test_seed_failure_starts_from_zero(self) -> None:
        reader = FakeReader()
        reader.height_error = LedgerConnectionError("down")
        poller = _poller(reader)
        await poller.start()
        await poller.stop()
        assert poller.last_height == 0
