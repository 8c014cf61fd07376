"""EventDecoder — turns a parsed transaction into typed domain events."""

from __future__ import annotations

import uuid
from collections import deque
from collections.abc import Callable
from typing import Any

import structlog

from chainwatch.core.clock import SYSTEM_CLOCK, Clock
from chainwatch.core.config import DetectionConfig
from chainwatch.core.types import DomainEvent, EventKind, Severity
from chainwatch.ledger.reader import ParsedInstruction, ParsedTransaction

logger = structlog.stdlib.get_logger()

LAMPORTS_PER_SOL = 1_000_000_000

# Failures per fee payer are counted over this trailing window.
SUSPICIOUS_WINDOW_SECS = 60.0


def _new_id() -> str:
    return uuid.uuid4().hex


def _to_float(value: Any) -> float | None:
    if value is None:
        return None
    return float(value)


def _opt_str(value: Any) -> str | None:
    return None if value is None else str(value)


# ── Instruction handlers ────────────────────────────────────────
#
# Each handler maps an instruction's ``info`` dict to the event fields that
# differ per kind. ``kind`` and ``severity`` are always present.

_Handler = Callable[[dict[str, Any]], dict[str, Any]]


def _initialize_reward_pool(info: dict[str, Any]) -> dict[str, Any]:
    return {
        "kind": EventKind.REWARD_POOL_INITIALIZED,
        "severity": Severity.MEDIUM,
        "address": _opt_str(info.get("platformAuthority")),
    }


def _record_task_completion(info: dict[str, Any]) -> dict[str, Any]:
    return {
        "kind": EventKind.TASK_COMPLETION_RECORDED,
        "severity": Severity.LOW,
        "task_id": _opt_str(info.get("taskId")),
        "farmer_address": _opt_str(info.get("farmerAddress")),
        "pool_id": _opt_str(info.get("poolId")),
        "amount": _to_float(info.get("rewardAmount")),
        "token_mint": _opt_str(info.get("tokenMint")),
    }


def _withdraw_rewards(info: dict[str, Any]) -> dict[str, Any]:
    return {
        "kind": EventKind.REWARDS_WITHDRAWN,
        "severity": Severity.MEDIUM,
        "farmer_address": _opt_str(info.get("farmerAddress")),
        "amount": _to_float(info.get("totalAmount")),
        "metadata": {"task_ids": info.get("taskIds")},
    }


def _set_paused(info: dict[str, Any]) -> dict[str, Any]:
    paused = bool(info.get("isPaused"))
    return {
        "kind": EventKind.POOL_PAUSED if paused else EventKind.POOL_UNPAUSED,
        "severity": Severity.HIGH,
    }


def _update_platform_fee(info: dict[str, Any]) -> dict[str, Any]:
    return {
        "kind": EventKind.PLATFORM_FEE_UPDATED,
        "severity": Severity.HIGH,
        "amount": _to_float(info.get("newFeePercentage")),
    }


def _create_reward_vault(info: dict[str, Any]) -> dict[str, Any]:
    return {
        "kind": EventKind.REWARD_VAULT_CREATED,
        "severity": Severity.MEDIUM,
        "token_mint": _opt_str(info.get("tokenMint")),
    }


INSTRUCTION_HANDLERS: dict[str, _Handler] = {
    "initializeRewardPool": _initialize_reward_pool,
    "recordTaskCompletion": _record_task_completion,
    "withdrawRewards": _withdraw_rewards,
    "setPaused": _set_paused,
    "updatePlatformFee": _update_platform_fee,
    "createRewardVault": _create_reward_vault,
}


class EventDecoder:
    """Decodes transactions of one watched program into DomainEvents.

    Instruction events come first, in instruction order, followed by
    balance events and then suspicious-activity events.  Every event
    carries ``processing_time_ms`` in its metadata.

    Usage::

        decoder = EventDecoder(program_id, settings.detection)
        events = decoder.decode(tx, signature)
    """

    def __init__(
        self,
        program_id: str,
        config: DetectionConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._program_id = program_id
        self._config = config or DetectionConfig()
        self._clock = clock or SYSTEM_CLOCK
        self._failures: dict[str, deque[float]] = {}

    @property
    def program_id(self) -> str:
        return self._program_id

    def failure_count(self, payer: str) -> int:
        """Failed transactions from *payer* inside the trailing window."""
        window = self._failures.get(payer)
        if window is None:
            return 0
        self._prune(window, self._clock.time())
        return len(window)

    def decode(self, tx: ParsedTransaction, signature: str) -> list[DomainEvent]:
        started = self._clock.monotonic()
        timestamp = tx.block_time if tx.block_time is not None else self._clock.time()

        events: list[DomainEvent] = []
        for index, ix in enumerate(tx.instructions):
            if ix.program_id != self._program_id:
                continue
            try:
                events.append(self._decode_instruction(ix, tx, signature, timestamp))
            except Exception as exc:
                logger.exception(
                    "instruction_decode_error",
                    signature=signature,
                    index=index,
                    instruction=ix.kind,
                )
                events.append(DomainEvent(
                    id=_new_id(),
                    kind=EventKind.CONTRACT_ERROR,
                    signature=signature,
                    slot=tx.slot,
                    timestamp=timestamp,
                    severity=Severity.HIGH,
                    error=str(exc) or type(exc).__name__,
                    success=False,
                    fee=tx.fee,
                    metadata={"instruction": ix.kind, "index": index},
                ))

        if self._config.enable_balance_monitoring:
            events.extend(self._balance_events(tx, signature, timestamp))

        if self._config.enable_suspicious_activity_detection and tx.failed:
            events.append(self._suspicious_event(tx, signature, timestamp))

        elapsed_ms = (self._clock.monotonic() - started) * 1000.0
        return [
            event.model_copy(
                update={"metadata": {**event.metadata, "processing_time_ms": elapsed_ms}},
            )
            for event in events
        ]

    def _decode_instruction(
        self,
        ix: ParsedInstruction,
        tx: ParsedTransaction,
        signature: str,
        timestamp: float,
    ) -> DomainEvent:
        handler = INSTRUCTION_HANDLERS.get(ix.kind or "")
        if handler is None:
            kind_name = ix.kind or "unparsed"
            logger.warning("unknown_instruction", signature=signature, instruction=kind_name)
            fields: dict[str, Any] = {
                "kind": EventKind.CONTRACT_ERROR,
                "severity": Severity.MEDIUM,
                "error": f"Unknown instruction type: {kind_name}",
                "metadata": {"instruction": kind_name},
            }
        else:
            fields = handler(ix.info)

        metadata = {"info": ix.info, **fields.pop("metadata", {})}
        return DomainEvent(
            id=_new_id(),
            signature=signature,
            slot=tx.slot,
            timestamp=timestamp,
            fee=tx.fee,
            metadata=metadata,
            **fields,
        )

    def _balance_events(
        self,
        tx: ParsedTransaction,
        signature: str,
        timestamp: float,
    ) -> list[DomainEvent]:
        low = self._config.low_balance_threshold * LAMPORTS_PER_SOL
        high = self._config.high_volume_threshold * LAMPORTS_PER_SOL

        events: list[DomainEvent] = []
        for key, pre, post in zip(tx.account_keys, tx.pre_balances, tx.post_balances):
            change = post - pre
            if post < low:
                events.append(DomainEvent(
                    id=_new_id(),
                    kind=EventKind.BALANCE_LOW,
                    signature=signature,
                    slot=tx.slot,
                    timestamp=timestamp,
                    severity=Severity.HIGH,
                    address=key,
                    amount=post / LAMPORTS_PER_SOL,
                    metadata={
                        "pre_balance": pre / LAMPORTS_PER_SOL,
                        "post_balance": post / LAMPORTS_PER_SOL,
                    },
                ))
            if abs(change) > high:
                events.append(DomainEvent(
                    id=_new_id(),
                    kind=EventKind.HIGH_VOLUME,
                    signature=signature,
                    slot=tx.slot,
                    timestamp=timestamp,
                    severity=Severity.MEDIUM,
                    address=key,
                    amount=abs(change) / LAMPORTS_PER_SOL,
                    metadata={"balance_change": change / LAMPORTS_PER_SOL},
                ))
        return events

    def _suspicious_event(
        self,
        tx: ParsedTransaction,
        signature: str,
        timestamp: float,
    ) -> DomainEvent:
        payer = tx.fee_payer or "unknown"
        now = self._clock.time()
        window = self._failures.setdefault(payer, deque())
        window.append(now)
        self._prune(window, now)
        count = len(window)

        threshold = self._config.suspicious_activity_threshold
        severity = Severity.CRITICAL if count >= threshold else Severity.HIGH
        if severity is Severity.CRITICAL:
            logger.warning(
                "repeated_failures_detected",
                fee_payer=payer,
                failures=count,
                window_secs=SUSPICIOUS_WINDOW_SECS,
            )

        return DomainEvent(
            id=_new_id(),
            kind=EventKind.SUSPICIOUS_ACTIVITY,
            signature=signature,
            slot=tx.slot,
            timestamp=timestamp,
            severity=severity,
            address=tx.fee_payer,
            error="Transaction failed",
            success=False,
            fee=tx.fee,
            metadata={"error": tx.err, "failure_count": count},
        )

    @staticmethod
    def _prune(window: deque[float], now: float) -> None:
        cutoff = now - SUSPICIOUS_WINDOW_SECS
        while window and window[0] < cutoff:
            window.popleft()
