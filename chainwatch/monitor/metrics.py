"""MetricsAggregator — rolling buffer of domain events and derived metrics.

Fed by the coordinator for every decoded event and aggregates:
- Totals by kind and severity
- Error rate and success rate
- Unique addresses / pools, volume and average amount
- Events per hour, processing time and uptime (on the timer tick)
"""

from __future__ import annotations

import asyncio
import math
from collections import Counter, deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import structlog

from chainwatch.core.clock import SYSTEM_CLOCK, Clock
from chainwatch.core.config import MetricsConfig
from chainwatch.core.scheduling import PeriodicTask
from chainwatch.core.types import (
    AddressStats,
    DomainEvent,
    EventFilter,
    EventKind,
    MetricsSnapshot,
    PoolStats,
    Severity,
    TrendPoint,
)

logger = structlog.stdlib.get_logger()

MetricsCallback = Callable[[MetricsSnapshot], Awaitable[None] | None]

HOUR_SECS = 3600.0
DAY_SECS = 24 * HOUR_SECS
PERFORMANCE_SAMPLE = 1000


@dataclass
class ErrorAnalysis:
    """Breakdown of error-bearing events in the buffer."""

    error_kinds: dict[str, int] = field(default_factory=dict)
    # (bucket start, error count) for each of the last 24 hours, oldest first.
    error_trends: list[tuple[float, int]] = field(default_factory=list)
    top_error_sources: list[tuple[str, int]] = field(default_factory=list)


@dataclass
class PerformanceStats:
    """Throughput and quality over the most recent events."""

    average_processing_time_ms: float = 0.0
    throughput_per_minute: int = 0
    success_rate: float = 0.0
    error_rate: float = 0.0


def _processing_time(event: DomainEvent) -> float:
    value = event.metadata.get("processing_time_ms", 0.0)
    return float(value) if isinstance(value, (int, float)) else 0.0


class MetricsAggregator:
    """Aggregates decoded events into rolling metrics.

    Usage::

        metrics = MetricsAggregator(settings.metrics)
        metrics.on_update(check_thresholds)
        await metrics.start()
        metrics.record(event)
        snap = metrics.snapshot()
    """

    def __init__(
        self,
        config: MetricsConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._config = config or MetricsConfig()
        self._clock = clock or SYSTEM_CLOCK
        self._events: deque[DomainEvent] = deque(maxlen=self._config.buffer_size)
        self._callbacks: list[MetricsCallback] = []
        self._task = PeriodicTask(
            "metrics_update",
            self.tick,
            interval_secs=self._config.update_interval_ms / 1000.0,
            clock=self._clock,
            run_immediately=False,
        )
        self._init_state()

    def _init_state(self) -> None:
        self._start_time = self._clock.time()
        self._total_events = 0
        self._by_kind: Counter[EventKind] = Counter()
        self._by_severity: Counter[Severity] = Counter()
        self._error_rate = 0.0
        self._average_processing_ms = 0.0
        self._last_event_time: float | None = None
        self._uptime_secs = 0.0
        self._total_volume = 0.0
        self._custom: dict[str, float] = {}

    @property
    def running(self) -> bool:
        return self._task.running

    @property
    def buffered_count(self) -> int:
        return len(self._events)

    @property
    def start_time(self) -> float:
        return self._start_time

    def on_update(self, callback: MetricsCallback) -> None:
        """Register a callback invoked with a snapshot after every tick."""
        self._callbacks.append(callback)

    # ── Lifecycle ────────────────────────────────────────────────

    async def start(self) -> None:
        if self.running:
            return
        self._start_time = self._clock.time()
        await self._task.start()
        logger.info("metrics_started", update_interval_ms=self._config.update_interval_ms)

    async def stop(self) -> None:
        await self._task.stop()
        logger.info("metrics_stopped", total_events=self._total_events)

    # ── Recording ────────────────────────────────────────────────

    def record(self, event: DomainEvent) -> None:
        """Add *event* to the buffer and refresh event-derived metrics."""
        self._events.append(event)
        self._total_events += 1
        self._by_kind[event.kind] += 1
        self._by_severity[event.severity] += 1
        self._last_event_time = event.timestamp
        if event.amount is not None:
            self._total_volume += event.amount

        errors = sum(1 for e in self._events if e.is_error)
        self._error_rate = errors / self._total_events
        self._refresh_custom()

    def _refresh_custom(self) -> None:
        events = self._events
        amounts = [e.amount for e in events if e.amount is not None]
        hour_ago = self._clock.time() - HOUR_SECS
        successes = sum(1 for e in events if e.success is not False)

        self._custom = {
            "unique_addresses": float(len({e.address for e in events if e.address})),
            "unique_pools": float(len({e.pool_id for e in events if e.pool_id})),
            "total_volume": self._total_volume,
            "average_transaction_amount": sum(amounts) / len(amounts) if amounts else 0.0,
            "events_per_hour": float(sum(1 for e in events if e.timestamp > hour_ago)),
            "success_rate": successes / self._total_events if self._total_events else 0.0,
        }

    async def tick(self) -> MetricsSnapshot:
        """Recompute timer-driven metrics and notify listeners."""
        self._uptime_secs = self._clock.time() - self._start_time
        sample = list(self._events)[-self._config.processing_sample:]
        if sample:
            self._average_processing_ms = sum(_processing_time(e) for e in sample) / len(sample)

        snap = self.snapshot()
        for cb in self._callbacks:
            try:
                result = cb(snap)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("metrics_callback_error")
        return snap

    def reset(self) -> None:
        """Drop all buffered events and counters."""
        self._events.clear()
        self._init_state()
        logger.info("metrics_reset")

    # ── Queries ──────────────────────────────────────────────────

    def snapshot(self) -> MetricsSnapshot:
        return MetricsSnapshot(
            total_events=self._total_events,
            events_by_kind=dict(self._by_kind),
            events_by_severity=dict(self._by_severity),
            error_rate=self._error_rate,
            average_processing_time_ms=self._average_processing_ms,
            last_event_time=self._last_event_time,
            uptime_secs=self._uptime_secs,
            custom=dict(self._custom),
        )

    def recent_events(self, window_secs: float = 60.0) -> list[DomainEvent]:
        """Buffered events newer than *window_secs* ago, oldest first."""
        cutoff = self._clock.time() - window_secs
        return [e for e in self._events if e.timestamp > cutoff]

    def query(self, flt: EventFilter | None = None) -> list[DomainEvent]:
        events = list(self._events)
        if flt is None:
            return events

        def keep(e: DomainEvent) -> bool:
            if flt.kinds and e.kind not in flt.kinds:
                return False
            if flt.severities and e.severity not in flt.severities:
                return False
            if flt.addresses and e.address not in flt.addresses:
                return False
            if flt.pool_ids and e.pool_id not in flt.pool_ids:
                return False
            if flt.token_mints and e.token_mint not in flt.token_mints:
                return False
            if flt.start_time is not None and e.timestamp < flt.start_time:
                return False
            if flt.end_time is not None and e.timestamp > flt.end_time:
                return False
            return True

        matched = [e for e in events if keep(e)]
        end = None if flt.limit is None else flt.offset + flt.limit
        return matched[flt.offset:end]

    def top_addresses(self, limit: int = 10) -> list[AddressStats]:
        stats: dict[str, AddressStats] = {}
        for e in self._events:
            if not e.address:
                continue
            entry = stats.setdefault(e.address, AddressStats(address=e.address))
            entry.event_count += 1
            entry.total_amount += e.amount or 0.0
        return sorted(stats.values(), key=lambda s: s.event_count, reverse=True)[:limit]

    def top_pools(self, limit: int = 10) -> list[PoolStats]:
        stats: dict[str, PoolStats] = {}
        for e in self._events:
            if not e.pool_id:
                continue
            entry = stats.setdefault(e.pool_id, PoolStats(pool_id=e.pool_id))
            entry.event_count += 1
            entry.total_amount += e.amount or 0.0
        return sorted(stats.values(), key=lambda s: s.event_count, reverse=True)[:limit]

    def event_trends(
        self,
        window_secs: float = DAY_SECS,
        interval_secs: float = HOUR_SECS,
    ) -> list[TrendPoint]:
        """Per-kind event counts in fixed time buckets over the window."""
        start = self._clock.time() - window_secs
        buckets: Counter[tuple[float, EventKind]] = Counter()
        for e in self._events:
            if e.timestamp < start:
                continue
            slot = math.floor(e.timestamp / interval_secs) * interval_secs
            buckets[(slot, e.kind)] += 1
        return [
            TrendPoint(timestamp=slot, kind=kind, count=count)
            for (slot, kind), count in sorted(buckets.items())
        ]

    def error_analysis(self) -> ErrorAnalysis:
        errors = [e for e in self._events if e.is_error]
        kinds = Counter(str(e.kind) for e in errors)

        day_ago = self._clock.time() - DAY_SECS
        trends: list[tuple[float, int]] = []
        for i in range(24):
            lo = day_ago + i * HOUR_SECS
            hi = lo + HOUR_SECS
            trends.append((lo, sum(1 for e in errors if lo <= e.timestamp < hi)))

        sources = Counter(e.address or e.pool_id or "unknown" for e in errors)
        return ErrorAnalysis(
            error_kinds=dict(kinds),
            error_trends=trends,
            top_error_sources=sources.most_common(10),
        )

    def performance(self) -> PerformanceStats:
        sample = list(self._events)[-PERFORMANCE_SAMPLE:]
        if not sample:
            return PerformanceStats()
        minute_ago = self._clock.time() - 60.0
        success_rate = sum(1 for e in sample if e.success is not False) / len(sample)
        return PerformanceStats(
            average_processing_time_ms=sum(_processing_time(e) for e in sample) / len(sample),
            throughput_per_minute=sum(1 for e in self._events if e.timestamp > minute_ago),
            success_rate=success_rate,
            error_rate=1.0 - success_rate,
        )
