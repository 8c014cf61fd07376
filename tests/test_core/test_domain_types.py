"""Tests for chainwatch/core/types.py — severity ordering, events, channel union."""

from __future__ import annotations

import pytest
from pydantic import TypeAdapter, ValidationError

from chainwatch.core.types import (
    AlertChannel,
    AlertRule,
    DomainEvent,
    EventKind,
    MetricsSnapshot,
    Severity,
    SlackChannel,
    SmsChannel,
)


def _event(**kw: object) -> DomainEvent:
    defaults: dict[str, object] = {
        "id": "e1",
        "kind": EventKind.REWARDS_WITHDRAWN,
        "signature": "sig1",
        "timestamp": 1000.0,
        "severity": Severity.MEDIUM,
    }
    defaults.update(kw)
    return DomainEvent(**defaults)  # type: ignore[arg-type]


class TestSeverity:
    def test_ordering(self) -> None:
        assert Severity.LOW < Severity.MEDIUM < Severity.HIGH < Severity.CRITICAL

    def test_parse_name_any_case(self) -> None:
        assert Severity.parse("critical") is Severity.CRITICAL
        assert Severity.parse(" High ") is Severity.HIGH

    def test_parse_int_and_digit_string(self) -> None:
        assert Severity.parse(1) is Severity.LOW
        assert Severity.parse("2") is Severity.MEDIUM

    def test_parse_unknown_name(self) -> None:
        with pytest.raises(KeyError):
            Severity.parse("urgent")


class TestDomainEvent:
    def test_frozen(self) -> None:
        ev = _event()
        with pytest.raises(ValidationError):
            ev.amount = 5.0  # type: ignore[misc]

    def test_error_kinds_are_errors(self) -> None:
        for kind in (EventKind.TRANSACTION_FAILED, EventKind.CONTRACT_ERROR, EventKind.NETWORK_ERROR):
            assert _event(kind=kind).is_error

    def test_error_text_counts_as_error(self) -> None:
        assert _event(kind=EventKind.SUSPICIOUS_ACTIVITY, error="Transaction failed").is_error

    def test_plain_event_not_error(self) -> None:
        assert not _event().is_error


class TestAlertRule:
    def test_severity_from_string(self) -> None:
        rule = AlertRule(id="r", name="r", severity="critical", min_severity="medium")
        assert rule.severity is Severity.CRITICAL
        assert rule.min_severity is Severity.MEDIUM

    def test_last_triggered_is_mutable(self) -> None:
        rule = AlertRule(id="r", name="r")
        rule.last_triggered = 10.0
        assert rule.last_triggered == 10.0


class TestChannelUnion:
    def test_discriminated_by_kind(self) -> None:
        adapter = TypeAdapter(AlertChannel)
        ch = adapter.validate_python({"id": "s", "name": "slack", "kind": "slack"})
        assert isinstance(ch, SlackChannel)
        assert ch.config.icon_emoji == ":warning:"

    def test_sms_provider_literal(self) -> None:
        with pytest.raises(ValidationError):
            SmsChannel(id="s", name="s", config={"provider": "carrier-pigeon"})


class TestMetricsSnapshot:
    def test_custom_metric_first(self) -> None:
        snap = MetricsSnapshot(error_rate=0.2, custom={"error_rate": 0.9, "total_volume": 12.0})
        assert snap.value_of("error_rate") == 0.9
        assert snap.value_of("total_volume") == 12.0

    def test_top_level_metric(self) -> None:
        snap = MetricsSnapshot(total_events=7)
        assert snap.value_of("total_events") == 7.0

    def test_unknown_metric(self) -> None:
        assert MetricsSnapshot().value_of("nope") is None
        assert MetricsSnapshot().value_of("last_event_time") is None
