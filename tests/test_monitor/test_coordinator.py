"""Tests for MonitoringCoordinator — end-to-end routing, system alerts, lifecycle."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from unittest.mock import patch

from chainwatch.core.clock import Clock
from chainwatch.core.config import Settings
from chainwatch.core.types import (
    AlertChannel,
    AlertRule,
    DomainEvent,
    EventKind,
    OverallStatus,
    Severity,
    WebhookChannel,
)
from chainwatch.ledger.reader import (
    LedgerReader,
    ParsedInstruction,
    ParsedTransaction,
    SignatureInfo,
)
from chainwatch.monitor.channels import ChannelTransport
from chainwatch.monitor.coordinator import MonitoringCoordinator
from chainwatch.monitor.factory import create_monitoring_stack
from chainwatch.monitor.types import DeliveryResult

PROGRAM = "RewardPoo1111111111111111111111111111111111"
T0 = 1_700_000_000.0


# ── Helpers ─────────────────────────────────────────────────────


class FakeTimer:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeClock(Clock):
    """Manual clock. Never start components on it: sleep does not yield."""

    def __init__(self, now: float = T0) -> None:
        self.now = now
        self.timers: list[FakeTimer] = []

    def time(self) -> float:
        return self.now

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer()
        self.timers.append(timer)
        return timer


class FakeReader(LedgerReader):
    def __init__(self) -> None:
        self.height = 100
        self.signatures: list[SignatureInfo] = []
        self.transactions: dict[str, ParsedTransaction] = {}
        self.program_size: int | None = 36
        self.closed = False

    def add_withdrawal(self, signature: str, amount: float, slot: int = 95) -> None:
        self.signatures.append(SignatureInfo(signature=signature, slot=slot))
        self.transactions[signature] = ParsedTransaction(
            signature=signature,
            slot=slot,
            block_time=T0,
            instructions=[ParsedInstruction(
                program_id=PROGRAM,
                kind="withdrawRewards",
                info={"farmerAddress": "farmer1", "totalAmount": amount},
            )],
            account_keys=["farmer1"],
        )

    async def current_height(self) -> int:
        return self.height

    async def signatures_for_address(self, address: str, since: int, limit: int) -> list[SignatureInfo]:
        return [s for s in self.signatures if s.slot >= since]

    async def parsed_transaction(self, signature: str) -> ParsedTransaction | None:
        return self.transactions.get(signature)

    async def version(self) -> dict[str, Any]:
        return {"solana-core": "1.18.2"}

    async def account_size(self, address: str) -> int | None:
        return self.program_size

    async def cluster_nodes(self) -> list[dict[str, Any]]:
        return [{"featureSet": 1}]

    async def close(self) -> None:
        self.closed = True


class FakeTransport(ChannelTransport):
    def __init__(self) -> None:
        self.sent: list[tuple[str, dict[str, Any]]] = []
        self.closed = False

    async def send(self, channel: AlertChannel, payload: dict[str, Any]) -> DeliveryResult:
        self.sent.append((channel.name, payload))
        return DeliveryResult(channel=channel.name, success=True)

    async def close(self) -> None:
        self.closed = True


BIG_WITHDRAWAL: dict[str, Any] = {
    "id": "big",
    "name": "Large withdrawal",
    "severity": "HIGH",
    "event_kinds": ["REWARDS_WITHDRAWN"],
    "conditions": [{"field": "amount", "operator": "greater_than", "value": 100}],
    "channels": ["ops"],
}


def _stack(
    rules: list[dict[str, Any]] | None = None,
    clock: Clock | None = None,
) -> tuple[MonitoringCoordinator, FakeReader, FakeTransport]:
    settings = Settings(
        ledger={"program_id": PROGRAM},
        health={
            "height_sample_secs": 0.0,
            "memory_warn_mb": 1_000_000.0,
            "memory_fail_mb": 2_000_000.0,
            "disk_warn_free_pct": 0.0,
            "disk_fail_free_pct": 0.0,
        },
        alerts={
            "channels": [{"id": "ops", "name": "ops", "kind": "webhook", "config": {"url": "https://ops.test"}}],
            "rules": rules if rules is not None else [BIG_WITHDRAWAL],
        },
    )
    reader = FakeReader()
    transport = FakeTransport()
    coordinator = create_monitoring_stack(
        settings,
        reader=reader,
        transports={"webhook": transport},
        clock=clock if clock is not None else FakeClock(),
    )
    return coordinator, reader, transport


def _event(**kw: object) -> DomainEvent:
    defaults: dict[str, object] = {
        "id": "e1",
        "kind": EventKind.NETWORK_ERROR,
        "signature": "",
        "timestamp": T0,
        "severity": Severity.HIGH,
        "error": "node down",
        "success": False,
    }
    defaults.update(kw)
    return DomainEvent(**defaults)  # type: ignore[arg-type]


# ── Event pipeline ──────────────────────────────────────────────


class TestEventPipeline:
    async def test_large_withdrawal_alerts(self) -> None:
        coordinator, reader, transport = _stack()
        reader.add_withdrawal("sigW", 150)

        await coordinator.poller.poll_once()

        (name, payload), = transport.sent
        assert name == "ops"
        assert payload["message"] == "REWARDS_WITHDRAWN: Event occurred - sigW"
        assert payload["severity"] == "High"
        status = coordinator.status()
        assert status.total_alerts_sent == 1
        assert status.total_events_processed == 1
        assert status.buffered_events == 1
        assert status.last_processed_height == 100

    async def test_small_withdrawal_recorded_without_alert(self) -> None:
        coordinator, reader, transport = _stack()
        reader.add_withdrawal("sigS", 50)

        await coordinator.poller.poll_once()
        assert transport.sent == []
        assert coordinator.metrics.snapshot().total_events == 1

    async def test_cooldown_suppresses_repeat(self) -> None:
        rule = {**BIG_WITHDRAWAL, "cooldown_ms": 300_000}
        coordinator, reader, transport = _stack(rules=[rule])
        reader.add_withdrawal("w1", 150)
        reader.add_withdrawal("w2", 200)

        await coordinator.poller.poll_once()
        assert len(transport.sent) == 1
        assert coordinator.rules[0].last_triggered == T0

    async def test_listeners_see_handled_events(self) -> None:
        coordinator, reader, _ = _stack()
        reader.add_withdrawal("sigW", 150)
        seen: list[DomainEvent] = []
        coordinator.on_event(seen.append)

        await coordinator.poller.poll_once()
        assert [e.signature for e in seen] == ["sigW"]

    async def test_processing_error_becomes_system_alert(self) -> None:
        coordinator, _, transport = _stack()
        seen: list[DomainEvent] = []
        coordinator.on_event(seen.append)

        with patch.object(coordinator.metrics, "record", side_effect=RuntimeError("boom")):
            await coordinator.handle_event(_event())

        (_, payload), = transport.sent
        assert payload["message"] == "Error processing smart contract event: boom"
        assert payload["data"]["type"] == "MONITORING_ERROR"
        assert payload["data"]["metadata"]["event_id"] == "e1"
        assert seen == []


# ── System alerts ───────────────────────────────────────────────


class TestSystemAlerts:
    async def test_unhealthy_pass_alerts(self) -> None:
        coordinator, reader, transport = _stack()
        reader.program_size = None

        status = await coordinator.run_health_check()
        assert status.status == OverallStatus.UNHEALTHY
        (_, payload), = transport.sent
        assert payload["message"].startswith("Health check failed: System unhealthy")
        assert payload["data"]["type"] == "HEALTH_CHECK_FAILED"

    async def test_degraded_pass_is_quiet(self) -> None:
        coordinator, _, transport = _stack()
        status = await coordinator.run_health_check()
        assert status.status == OverallStatus.DEGRADED
        assert transport.sent == []

    async def test_metric_threshold_alert(self) -> None:
        rule = {
            "id": "err",
            "name": "Error rate",
            "severity": "CRITICAL",
            "event_kinds": [],
            "metric_thresholds": {"error_rate": 0.25},
            "channels": ["ops"],
            "cooldown_ms": 900_000,
        }
        coordinator, _, transport = _stack(rules=[rule])
        await coordinator.handle_event(_event())
        assert transport.sent == []

        await coordinator.metrics.tick()
        (_, payload), = transport.sent
        assert payload["message"] == "Metric threshold exceeded: error_rate = 1.0 (threshold: 0.25)"
        assert payload["severity"] == "Critical"
        assert payload["data"]["metadata"]["rule_id"] == "err"

        await coordinator.metrics.tick()
        assert len(transport.sent) == 1


# ── Management & status ─────────────────────────────────────────


class TestManagement:
    async def test_add_and_remove_rule(self) -> None:
        coordinator, reader, transport = _stack(rules=[])
        coordinator.add_rule(AlertRule.model_validate(BIG_WITHDRAWAL))
        reader.add_withdrawal("sigW", 150)
        await coordinator.poller.poll_once()
        assert len(transport.sent) == 1

        assert coordinator.remove_rule("big") is True
        assert coordinator.remove_rule("big") is False
        assert coordinator.rules == []

    def test_add_and_remove_channel(self) -> None:
        coordinator, _, _ = _stack()
        coordinator.add_channel(WebhookChannel(id="x", name="extra", config={"url": "https://x.test"}))
        assert {c.name for c in coordinator.dispatcher.channel_status()} == {"ops", "extra"}
        assert coordinator.remove_channel("extra") is True

    async def test_dashboard(self) -> None:
        coordinator, reader, _ = _stack()
        reader.add_withdrawal("sigW", 150)
        await coordinator.poller.poll_once()

        data = coordinator.dashboard()
        assert data.status.running is False
        assert [e.signature for e in data.recent_events] == ["sigW"]
        assert len(data.recent_alerts) == 1
        assert data.event_trends[0].kind == EventKind.REWARDS_WITHDRAWN
        assert coordinator.recent_events(window_secs=10**10)[0].signature == "sigW"

    def test_initial_status(self) -> None:
        coordinator, _, _ = _stack()
        status = coordinator.status()
        assert status.running is False
        assert status.uptime_secs == 0.0
        assert status.health is not None
        assert status.health.message == "Health checks not started"


class TestLifecycle:
    async def test_start_stop_releases_everything(self) -> None:
        coordinator, reader, transport = _stack(
            rules=[{**BIG_WITHDRAWAL, "cooldown_ms": 300_000}],
            clock=Clock(),
        )
        await coordinator.start()
        assert coordinator.running
        assert coordinator.poller.last_height == 100

        reader.height = 101
        reader.add_withdrawal("sigW", 150, slot=101)
        await coordinator.poller.poll_once()
        assert coordinator._rule_engine.cooling_rule_ids == {"big"}

        await coordinator.stop()
        assert not coordinator.running
        assert not coordinator.poller.running
        assert not coordinator.health.running
        assert not coordinator.metrics.running
        assert coordinator._rule_engine.cooling_rule_ids == set()
        assert transport.closed
        assert reader.closed

        await coordinator.stop()  # idempotent
