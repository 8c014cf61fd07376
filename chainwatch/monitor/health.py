"""HealthMonitor — periodic battery of health checks with failure escalation."""

from __future__ import annotations

import asyncio
import resource
import shutil
import sys
from collections.abc import Awaitable, Callable

import structlog

from chainwatch.core.clock import SYSTEM_CLOCK, Clock
from chainwatch.core.config import MIN_HEALTH_INTERVAL_MS, HealthConfig
from chainwatch.core.scheduling import PeriodicTask
from chainwatch.core.types import CheckResult, CheckStatus, HealthStatus, OverallStatus
from chainwatch.ledger.reader import LedgerReader

logger = structlog.stdlib.get_logger()

CheckFn = Callable[[], Awaitable[tuple[CheckStatus, str]]]
HealthCallback = Callable[[HealthStatus], Awaitable[None] | None]

CHECK_NAMES = (
    "ledger_reachability",
    "node_version",
    "program_account",
    "network_peers",
    "height_progression",
    "memory_footprint",
    "storage_headroom",
)


def aggregate_status(checks: dict[str, CheckResult]) -> tuple[OverallStatus, str]:
    """Fold per-check results into one overall status and message.

    Any ``fail`` makes the system unhealthy; otherwise any ``warn`` makes it
    degraded; otherwise it is healthy.
    """
    failures = [f"{name}: {r.message}" for name, r in checks.items() if r.status == CheckStatus.FAIL]
    if failures:
        return OverallStatus.UNHEALTHY, f"System unhealthy - Failures: {', '.join(failures)}"
    warnings = [f"{name}: {r.message}" for name, r in checks.items() if r.status == CheckStatus.WARN]
    if warnings:
        return OverallStatus.DEGRADED, f"System degraded - Warnings: {', '.join(warnings)}"
    return OverallStatus.HEALTHY, "All health checks passed"


def _peak_rss_mb() -> float:
    usage = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is bytes on macOS, kilobytes elsewhere.
    divisor = 1024 * 1024 if sys.platform == "darwin" else 1024
    return usage / divisor


class HealthMonitor:
    """Runs the health-check battery on a timer and keeps the latest status.

    A check that raises (or exceeds ``timeout_ms``) increments its
    consecutive-failure counter and reports ``warn`` until the counter
    reaches ``failure_threshold``, then ``fail``.  Counters are only cleared
    explicitly, unless ``reset_failures_on_success`` is set.

    Usage::

        health = HealthMonitor(reader, program_id, settings.health)
        health.on_status(handle_status)
        await health.start()
    """

    def __init__(
        self,
        reader: LedgerReader,
        program_id: str,
        config: HealthConfig | None = None,
        clock: Clock | None = None,
        checks: dict[str, CheckFn] | None = None,
    ) -> None:
        self._reader = reader
        self._program_id = program_id
        self._config = config or HealthConfig()
        self._clock = clock or SYSTEM_CLOCK
        self._checks: dict[str, CheckFn] = checks if checks is not None else {
            "ledger_reachability": self._check_ledger_reachability,
            "node_version": self._check_node_version,
            "program_account": self._check_program_account,
            "network_peers": self._check_network_peers,
            "height_progression": self._check_height_progression,
            "memory_footprint": self._check_memory_footprint,
            "storage_headroom": self._check_storage_headroom,
        }
        self._failures: dict[str, int] = {}
        self._callbacks: list[HealthCallback] = []
        self._lock = asyncio.Lock()
        self._status = HealthStatus(
            status=OverallStatus.HEALTHY,
            message="Health checks not started",
            timestamp=self._clock.time(),
        )
        interval_ms = max(self._config.interval_ms, MIN_HEALTH_INTERVAL_MS)
        self._task = PeriodicTask(
            "health_checks",
            self.run_checks,
            interval_secs=interval_ms / 1000.0,
            clock=self._clock,
        )

    @property
    def running(self) -> bool:
        return self._task.running

    @property
    def status(self) -> HealthStatus:
        """Result of the most recent completed pass."""
        return self._status

    @property
    def failure_counts(self) -> dict[str, int]:
        return dict(self._failures)

    def reset_failure_count(self, name: str) -> None:
        self._failures.pop(name, None)

    def reset_all_failure_counts(self) -> None:
        self._failures.clear()

    def on_status(self, callback: HealthCallback) -> None:
        """Register a callback invoked after every pass."""
        self._callbacks.append(callback)

    async def _emit(self, status: HealthStatus) -> None:
        for cb in self._callbacks:
            try:
                result = cb(status)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("health_callback_error", status=status.status)

    # ── Lifecycle ────────────────────────────────────────────────

    async def start(self) -> None:
        await self._task.start()
        logger.info("health_monitor_started", interval_ms=self._config.interval_ms)

    async def stop(self) -> None:
        await self._task.stop()
        logger.info("health_monitor_stopped")

    # ── Passes ───────────────────────────────────────────────────

    async def run_checks(self) -> HealthStatus:
        """Run one pass now.

        If a pass is already running this waits for it and returns its
        result instead of starting another.
        """
        if self._lock.locked():
            async with self._lock:
                return self._status
        async with self._lock:
            return await self._run_pass()

    async def _run_pass(self) -> HealthStatus:
        started = self._clock.monotonic()
        results: dict[str, CheckResult] = {}
        for name, fn in self._checks.items():
            results[name] = await self._run_check(name, fn)

        overall, message = aggregate_status(results)
        self._status = HealthStatus(
            status=overall,
            message=message,
            timestamp=self._clock.time(),
            checks=results,
        )
        logger.info(
            "health_check_completed",
            status=overall,
            duration_ms=round((self._clock.monotonic() - started) * 1000.0, 1),
        )
        await self._emit(self._status)
        return self._status

    async def _run_check(self, name: str, fn: CheckFn) -> CheckResult:
        started = self._clock.monotonic()
        try:
            status, message = await asyncio.wait_for(fn(), timeout=self._config.timeout_ms / 1000.0)
            if status == CheckStatus.PASS and self._config.reset_failures_on_success:
                self._failures.pop(name, None)
        except TimeoutError:
            status, message = self._escalate(name), f"Timed out after {self._config.timeout_ms}ms"
        except Exception as exc:
            status, message = self._escalate(name), f"Check failed: {exc}"
        duration_ms = (self._clock.monotonic() - started) * 1000.0
        if status != CheckStatus.PASS:
            logger.warning("health_check_not_passing", check=name, status=status, message=message)
        return CheckResult(status=status, message=message, duration_ms=duration_ms)

    def _escalate(self, name: str) -> CheckStatus:
        count = self._failures.get(name, 0) + 1
        self._failures[name] = count
        if count >= self._config.failure_threshold:
            return CheckStatus.FAIL
        return CheckStatus.WARN

    # ── Checks ───────────────────────────────────────────────────

    async def _check_ledger_reachability(self) -> tuple[CheckStatus, str]:
        height = await self._reader.current_height()
        if height > 0:
            return CheckStatus.PASS, f"Connected to ledger at slot {height}"
        return CheckStatus.FAIL, "Invalid slot returned"

    async def _check_node_version(self) -> tuple[CheckStatus, str]:
        version = await self._reader.version()
        core = version.get("solana-core")
        if core:
            return CheckStatus.PASS, f"RPC endpoint healthy - version {core}"
        return CheckStatus.WARN, "RPC endpoint responded but version info missing"

    async def _check_program_account(self) -> tuple[CheckStatus, str]:
        size = await self._reader.account_size(self._program_id)
        if size is None:
            return CheckStatus.FAIL, "Program account not found"
        return CheckStatus.PASS, f"Program accessible - Size: {size} bytes"

    async def _check_network_peers(self) -> tuple[CheckStatus, str]:
        nodes = await self._reader.cluster_nodes()
        if not nodes:
            return CheckStatus.WARN, "Network status unclear - no node information"
        active = sum(1 for node in nodes if node.get("featureSet") is not None)
        return CheckStatus.PASS, f"Network healthy - {active} active nodes"

    async def _check_height_progression(self) -> tuple[CheckStatus, str]:
        sample = self._config.height_sample_secs
        first = await self._reader.current_height()
        await self._clock.sleep(sample)
        second = await self._reader.current_height()
        if second > first:
            return CheckStatus.PASS, f"Slot progression normal - {second - first} slots in {sample:g}s"
        return CheckStatus.WARN, "Slot progression may be slow"

    async def _check_memory_footprint(self) -> tuple[CheckStatus, str]:
        rss_mb = _peak_rss_mb()
        if rss_mb < self._config.memory_warn_mb:
            return CheckStatus.PASS, f"Memory usage normal - peak RSS {rss_mb:.0f}MB"
        if rss_mb < self._config.memory_fail_mb:
            return CheckStatus.WARN, f"Memory usage elevated - peak RSS {rss_mb:.0f}MB"
        return CheckStatus.FAIL, f"Memory usage high - peak RSS {rss_mb:.0f}MB"

    async def _check_storage_headroom(self) -> tuple[CheckStatus, str]:
        usage = await asyncio.to_thread(shutil.disk_usage, self._config.disk_path)
        free_pct = usage.free / usage.total * 100.0 if usage.total else 0.0
        message = f"{free_pct:.1f}% free on {self._config.disk_path}"
        if free_pct < self._config.disk_fail_free_pct:
            return CheckStatus.FAIL, f"Disk space critical - {message}"
        if free_pct < self._config.disk_warn_free_pct:
            return CheckStatus.WARN, f"Disk space low - {message}"
        return CheckStatus.PASS, f"Disk space normal - {message}"
