"""MonitoringCoordinator — owns the component graph and routes events through it."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from chainwatch.core.clock import SYSTEM_CLOCK, Clock
from chainwatch.core.types import (
    AlertChannel,
    AlertRule,
    DomainEvent,
    EventFilter,
    HealthStatus,
    MetricsSnapshot,
    OverallStatus,
    Severity,
)
from chainwatch.ledger.poller import LedgerPoller
from chainwatch.ledger.reader import LedgerReader
from chainwatch.monitor.dispatcher import AlertDispatcher
from chainwatch.monitor.health import HealthMonitor
from chainwatch.monitor.metrics import MetricsAggregator
from chainwatch.monitor.rules import RuleEngine
from chainwatch.monitor.types import (
    DashboardData,
    MonitoringStatus,
    SystemAlert,
    SystemAlertType,
)

logger = structlog.stdlib.get_logger()

EventListener = Callable[[DomainEvent], Awaitable[None] | None]


class MonitoringCoordinator:
    """Wires poller → rules → dispatcher and poller → metrics.

    Every decoded event is recorded into metrics first (so rate limits see
    it as history for later events), then evaluated against the rules, and
    the firing rules are dispatched.  Unhealthy health passes and metric
    threshold breaches become system alerts.

    Usage::

        coordinator = create_monitoring_stack(settings)
        await coordinator.start()
        ...
        await coordinator.stop()
    """

    def __init__(
        self,
        reader: LedgerReader,
        poller: LedgerPoller,
        rule_engine: RuleEngine,
        dispatcher: AlertDispatcher,
        health: HealthMonitor,
        metrics: MetricsAggregator,
        rules: list[AlertRule] | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._reader = reader
        self._poller = poller
        self._rule_engine = rule_engine
        self._dispatcher = dispatcher
        self._health = health
        self._metrics = metrics
        self._rules: list[AlertRule] = list(rules or [])
        self._clock = clock or SYSTEM_CLOCK
        self._listeners: list[EventListener] = []
        self._running = False
        self._start_time: float | None = None
        self._events_processed = 0

        poller.on_event(self.handle_event)
        health.on_status(self._on_health_status)
        metrics.on_update(self._on_metrics_update)

    @property
    def running(self) -> bool:
        return self._running

    @property
    def rules(self) -> list[AlertRule]:
        return list(self._rules)

    @property
    def dispatcher(self) -> AlertDispatcher:
        return self._dispatcher

    @property
    def metrics(self) -> MetricsAggregator:
        return self._metrics

    @property
    def health(self) -> HealthMonitor:
        return self._health

    @property
    def poller(self) -> LedgerPoller:
        return self._poller

    def on_event(self, listener: EventListener) -> None:
        """Register a listener called for every event after it was handled."""
        self._listeners.append(listener)

    # ── Lifecycle ────────────────────────────────────────────────

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._start_time = self._clock.time()
        await self._metrics.start()
        await self._health.start()
        await self._poller.start()
        logger.info(
            "monitoring_started",
            program_id=self._poller.program_id,
            rules=len(self._rules),
            channels=len(self._dispatcher.channel_status()),
        )

    async def stop(self) -> None:
        """Stop every component, waiting for in-flight passes, and release I/O."""
        if not self._running:
            return
        self._running = False
        for name, component in (
            ("poller", self._poller),
            ("health", self._health),
            ("metrics", self._metrics),
        ):
            try:
                await component.stop()
            except Exception:
                logger.exception("component_stop_error", component=name)
        self._rule_engine.close()
        await self._dispatcher.close()
        await self._reader.close()
        logger.info("monitoring_stopped", events_processed=self._events_processed)

    # ── Event routing ────────────────────────────────────────────

    async def handle_event(self, event: DomainEvent) -> None:
        """Record, evaluate and dispatch one event."""
        self._events_processed += 1
        try:
            self._metrics.record(event)
            fired = self._rule_engine.evaluate(event, self._rules)
            if fired:
                await self._dispatcher.dispatch(event, fired)
            logger.debug(
                "event_processed",
                kind=event.kind,
                signature=event.signature,
                rules_fired=len(fired),
            )
        except Exception as exc:
            logger.exception("event_handling_error", kind=event.kind, signature=event.signature)
            await self._dispatcher.dispatch_system(SystemAlert(
                type=SystemAlertType.MONITORING_ERROR,
                severity=Severity.HIGH,
                message=f"Error processing smart contract event: {exc}",
                timestamp=self._clock.time(),
                metadata={
                    "event_id": event.id,
                    "kind": str(event.kind),
                    "signature": event.signature,
                },
            ))
            return

        for listener in self._listeners:
            try:
                result = listener(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("event_listener_error", kind=event.kind)

    async def _on_health_status(self, status: HealthStatus) -> None:
        if status.status != OverallStatus.UNHEALTHY:
            return
        await self._dispatcher.dispatch_system(SystemAlert(
            type=SystemAlertType.HEALTH_CHECK_FAILED,
            severity=Severity.HIGH,
            message=f"Health check failed: {status.message}",
            timestamp=self._clock.time(),
            metadata=status.model_dump(mode="json"),
        ))

    async def _on_metrics_update(self, snapshot: MetricsSnapshot) -> None:
        for breach in self._rule_engine.check_metric_thresholds(snapshot, self._rules):
            await self._dispatcher.dispatch_system(SystemAlert(
                type=SystemAlertType.METRIC_THRESHOLD_EXCEEDED,
                severity=breach.rule.severity,
                message=(
                    f"Metric threshold exceeded: {breach.metric} = {breach.value} "
                    f"(threshold: {breach.threshold})"
                ),
                timestamp=self._clock.time(),
                metadata={
                    "metric": breach.metric,
                    "value": breach.value,
                    "threshold": breach.threshold,
                    "rule_id": breach.rule.id,
                },
            ))

    # ── Management ───────────────────────────────────────────────

    def add_rule(self, rule: AlertRule) -> None:
        self._rules.append(rule)
        logger.info("rule_added", rule_id=rule.id, name=rule.name)

    def remove_rule(self, rule_id: str) -> bool:
        before = len(self._rules)
        self._rules = [r for r in self._rules if r.id != rule_id]
        removed = len(self._rules) < before
        if removed:
            logger.info("rule_removed", rule_id=rule_id)
        return removed

    def add_channel(self, channel: AlertChannel) -> None:
        self._dispatcher.add_channel(channel)

    def remove_channel(self, name: str) -> bool:
        return self._dispatcher.remove_channel(name)

    async def run_health_check(self) -> HealthStatus:
        return await self._health.run_checks()

    # ── Status surface ───────────────────────────────────────────

    def recent_events(self, window_secs: float = 60.0) -> list[DomainEvent]:
        return self._metrics.recent_events(window_secs)

    def query_events(self, flt: EventFilter | None = None) -> list[DomainEvent]:
        return self._metrics.query(flt)

    def status(self) -> MonitoringStatus:
        snap = self._metrics.snapshot()
        uptime = self._clock.time() - self._start_time if self._start_time else 0.0
        return MonitoringStatus(
            running=self._running,
            start_time=self._start_time,
            uptime_secs=uptime,
            last_processed_height=self._poller.last_height,
            buffered_events=self._metrics.buffered_count,
            total_events_processed=self._events_processed,
            total_alerts_sent=self._dispatcher.total_alerts_sent,
            last_event_time=snap.last_event_time,
            health=self._health.status,
            metrics=snap,
        )

    def dashboard(self, limit: int = 50) -> DashboardData:
        events = self._metrics.query()
        return DashboardData(
            status=self.status(),
            recent_events=events[-limit:] if limit > 0 else [],
            recent_alerts=self._dispatcher.alert_history(limit),
            top_addresses=self._metrics.top_addresses(),
            top_pools=self._metrics.top_pools(),
            event_trends=self._metrics.event_trends(),
        )
