"""LedgerPoller — polls the ledger for new program transactions and emits events."""

from __future__ import annotations

import asyncio
import uuid
from collections import OrderedDict
from collections.abc import Awaitable, Callable

import structlog

from chainwatch.core.clock import SYSTEM_CLOCK, Clock
from chainwatch.core.config import MIN_POLL_INTERVAL_MS, LedgerConfig
from chainwatch.core.scheduling import PeriodicTask
from chainwatch.core.types import DomainEvent, EventKind, Severity
from chainwatch.ledger.decoder import EventDecoder
from chainwatch.ledger.reader import LedgerReader, SignatureInfo

logger = structlog.stdlib.get_logger()

# Type alias for domain event callbacks
EventCallback = Callable[[DomainEvent], Awaitable[None] | None]


class LedgerPoller:
    """Polls a LedgerReader for new signatures of the watched program.

    Each pass fetches the current height and, if it advanced, the program's
    signatures since the last completed pass.  Unseen signatures are fetched,
    decoded and their events emitted to subscribers in order.  The height
    cursor only moves after a full pass; a failed pass emits one
    ``NETWORK_ERROR`` event and leaves the cursor where it was.

    A signature the node cannot return yet is held in a pending set and
    fetched again at the start of each later pass until it resolves, since
    the cursor may already have moved past its slot.

    Usage::

        poller = LedgerPoller(reader, decoder, settings.ledger)
        poller.on_event(handle_event)
        await poller.start()
        ...
        await poller.stop()
    """

    def __init__(
        self,
        reader: LedgerReader,
        decoder: EventDecoder,
        config: LedgerConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._reader = reader
        self._decoder = decoder
        self._config = config or LedgerConfig()
        self._clock = clock or SYSTEM_CLOCK
        self._callbacks: list[EventCallback] = []
        self._seen: OrderedDict[str, None] = OrderedDict()
        self._pending: OrderedDict[str, SignatureInfo] = OrderedDict()
        self._last_height = 0
        self._last_poll_time: float | None = None
        self._poll_count = 0
        self._error_count = 0
        interval_ms = max(self._config.poll_interval_ms, MIN_POLL_INTERVAL_MS)
        self._task = PeriodicTask(
            "ledger_poll",
            self.poll_once,
            interval_secs=interval_ms / 1000.0,
            clock=self._clock,
            run_immediately=False,
        )

    @property
    def running(self) -> bool:
        return self._task.running

    @property
    def program_id(self) -> str:
        return self._decoder.program_id

    @property
    def last_height(self) -> int:
        """Height at which the last completed pass ran."""
        return self._last_height

    @property
    def seen_count(self) -> int:
        return len(self._seen)

    @property
    def pending_count(self) -> int:
        """Signatures the node reported missing, awaiting a retry."""
        return len(self._pending)

    @property
    def error_count(self) -> int:
        return self._error_count

    @property
    def poll_count(self) -> int:
        return self._poll_count

    @property
    def last_poll_time(self) -> float | None:
        return self._last_poll_time

    def has_seen(self, signature: str) -> bool:
        return signature in self._seen

    def on_event(self, callback: EventCallback) -> None:
        """Register a callback for decoded events."""
        self._callbacks.append(callback)

    async def _emit(self, event: DomainEvent) -> None:
        for cb in self._callbacks:
            try:
                result = cb(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception(
                    "event_callback_error",
                    kind=event.kind,
                    signature=event.signature,
                )

    # ── Lifecycle ────────────────────────────────────────────────

    async def start(self) -> None:
        """Seed the cursor at the current height and start polling."""
        if self.running:
            return
        try:
            self._last_height = await self._reader.current_height()
        except Exception as exc:
            logger.warning("poller_seed_failed", error=str(exc))
        await self._task.start()
        logger.info(
            "poller_started",
            program_id=self._decoder.program_id,
            from_height=self._last_height,
            poll_interval_ms=self._config.poll_interval_ms,
        )

    async def stop(self) -> None:
        """Stop polling, waiting for an in-flight pass to finish."""
        await self._task.stop()
        logger.info("poller_stopped", polls=self._poll_count, seen=len(self._seen))

    # ── Polling ──────────────────────────────────────────────────

    async def poll_once(self) -> list[DomainEvent]:
        """Run one polling pass and return the events it emitted."""
        self._poll_count += 1
        try:
            height = await self._reader.current_height()
            if height <= self._last_height:
                return []
            signatures = await self._reader.signatures_for_address(
                self._decoder.program_id,
                since=self._last_height,
                limit=self._config.signature_limit,
            )
        except Exception as exc:
            self._error_count += 1
            logger.warning(
                "poll_failed",
                error=str(exc),
                error_count=self._error_count,
                last_height=self._last_height,
            )
            event = DomainEvent(
                id=uuid.uuid4().hex,
                kind=EventKind.NETWORK_ERROR,
                signature="",
                slot=self._last_height,
                timestamp=self._clock.time(),
                severity=Severity.HIGH,
                error=str(exc) or type(exc).__name__,
                success=False,
                metadata={"stage": "poll"},
            )
            await self._emit(event)
            return [event]

        emitted: list[DomainEvent] = []
        new_signatures = 0
        retries = list(self._pending.values())
        fresh = [
            info for info in signatures
            if info.signature not in self._seen and info.signature not in self._pending
        ]
        for info in retries + fresh:
            events = await self._process(info)
            if events is None:
                self._hold(info)
                continue
            self._pending.pop(info.signature, None)
            new_signatures += 1
            self._mark_seen(info.signature)
            for event in events:
                await self._emit(event)
                emitted.append(event)

        self._last_height = height
        self._last_poll_time = self._clock.time()
        logger.debug(
            "poll_completed",
            height=height,
            new_signatures=new_signatures,
            events=len(emitted),
            pending=len(self._pending),
        )
        return emitted

    async def _process(self, info: SignatureInfo) -> list[DomainEvent] | None:
        """Fetch and decode one signature. None means the node lacks it."""
        signature = info.signature
        try:
            tx = await self._reader.parsed_transaction(signature)
        except Exception as exc:
            logger.warning("transaction_fetch_failed", signature=signature, error=str(exc))
            return [self._failure_event(
                EventKind.TRANSACTION_FAILED, info, exc, stage="fetch",
            )]

        if tx is None:
            logger.debug("transaction_not_found", signature=signature)
            return None

        if not any(ix.program_id == self._decoder.program_id for ix in tx.instructions):
            return []

        try:
            return self._decoder.decode(tx, signature)
        except Exception as exc:
            logger.exception("transaction_decode_failed", signature=signature)
            return [self._failure_event(
                EventKind.CONTRACT_ERROR, info, exc, stage="decode",
            )]

    def _failure_event(
        self,
        kind: EventKind,
        info: SignatureInfo,
        exc: Exception,
        stage: str,
    ) -> DomainEvent:
        return DomainEvent(
            id=uuid.uuid4().hex,
            kind=kind,
            signature=info.signature,
            slot=info.slot,
            timestamp=self._clock.time(),
            severity=Severity.HIGH,
            error=str(exc) or type(exc).__name__,
            success=False,
            metadata={"stage": stage},
        )

    def _hold(self, info: SignatureInfo) -> None:
        self._pending[info.signature] = info
        while len(self._pending) > self._config.seen_capacity:
            dropped, _ = self._pending.popitem(last=False)
            logger.warning("pending_signature_dropped", signature=dropped)

    def _mark_seen(self, signature: str) -> None:
        self._seen[signature] = None
        while len(self._seen) > self._config.seen_capacity:
            self._seen.popitem(last=False)
