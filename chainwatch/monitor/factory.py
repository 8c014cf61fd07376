"""Convenience factory for wiring the monitoring stack."""

from __future__ import annotations

from chainwatch.core.clock import Clock
from chainwatch.core.config import Settings, get_settings
from chainwatch.ledger.decoder import EventDecoder
from chainwatch.ledger.poller import LedgerPoller
from chainwatch.ledger.reader import LedgerReader
from chainwatch.ledger.rpc import SolanaRpcReader
from chainwatch.monitor.channels import ChannelTransport, default_transports
from chainwatch.monitor.coordinator import MonitoringCoordinator
from chainwatch.monitor.dispatcher import AlertDispatcher
from chainwatch.monitor.health import HealthMonitor
from chainwatch.monitor.metrics import MetricsAggregator
from chainwatch.monitor.rules import RuleEngine


def create_monitoring_stack(
    settings: Settings | None = None,
    reader: LedgerReader | None = None,
    transports: dict[str, ChannelTransport] | None = None,
    clock: Clock | None = None,
) -> MonitoringCoordinator:
    """Build the full component graph from settings.

    Args:
        settings: Root settings. Uses the cached settings if None.
        reader: Ledger reader. Defaults to a JSON-RPC reader on ``ledger.rpc_url``.
        transports: Channel transports keyed by kind. Defaults to the network ones.
        clock: Time source shared by every component.

    Returns:
        A coordinator that has not been started.
    """
    cfg = settings or get_settings()
    program_id = cfg.ledger.program_id

    ledger_reader = reader or SolanaRpcReader(cfg.ledger, clock=clock)
    metrics = MetricsAggregator(cfg.metrics, clock=clock)
    decoder = EventDecoder(program_id, cfg.detection, clock=clock)
    poller = LedgerPoller(ledger_reader, decoder, cfg.ledger, clock=clock)
    health = HealthMonitor(ledger_reader, program_id, cfg.health, clock=clock)
    rule_engine = RuleEngine(history=metrics, clock=clock)
    dispatcher = AlertDispatcher(
        transports=transports if transports is not None else default_transports(),
        channels=list(cfg.alerts.channels),
        history_size=cfg.alerts.history_size,
        clock=clock,
    )

    return MonitoringCoordinator(
        reader=ledger_reader,
        poller=poller,
        rule_engine=rule_engine,
        dispatcher=dispatcher,
        health=health,
        metrics=metrics,
        rules=[rule.model_copy(deep=True) for rule in cfg.alerts.rules],
        clock=clock,
    )
