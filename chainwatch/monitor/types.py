"""Types for the alerting / monitoring subsystem."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from chainwatch.core.types import (
    AddressStats,
    DomainEvent,
    HealthStatus,
    MetricsSnapshot,
    PoolStats,
    Severity,
    TrendPoint,
)


class SystemAlertType(StrEnum):
    """Alerts raised by the monitor itself rather than by a rule."""

    MONITORING_ERROR = "MONITORING_ERROR"
    HEALTH_CHECK_FAILED = "HEALTH_CHECK_FAILED"
    METRIC_THRESHOLD_EXCEEDED = "METRIC_THRESHOLD_EXCEEDED"


class RuleAlert(BaseModel):
    """Envelope built when a rule fires for an event."""

    id: str
    rule_id: str
    rule_name: str
    severity: Severity
    event: DomainEvent
    message: str
    channels: list[str] = Field(default_factory=list)
    timestamp: float
    metadata: dict[str, Any] = Field(default_factory=dict)


class SystemAlert(BaseModel):
    """Envelope for system-level conditions; goes to every enabled channel."""

    type: SystemAlertType
    severity: Severity
    message: str
    timestamp: float
    metadata: dict[str, Any] = Field(default_factory=dict)


AlertEnvelope = RuleAlert | SystemAlert


class DeliveryResult(BaseModel):
    """Outcome of delivering one envelope to one channel."""

    channel: str
    success: bool
    error: str | None = None


class ChannelStatus(BaseModel):
    name: str
    kind: str
    enabled: bool


class MonitoringStatus(BaseModel):
    """Snapshot of the whole monitoring stack."""

    running: bool
    start_time: float | None = None
    uptime_secs: float = 0.0
    last_processed_height: int = 0
    buffered_events: int = 0
    total_events_processed: int = 0
    total_alerts_sent: int = 0
    last_event_time: float | None = None
    health: HealthStatus | None = None
    metrics: MetricsSnapshot


class DashboardData(BaseModel):
    status: MonitoringStatus
    recent_events: list[DomainEvent] = Field(default_factory=list)
    recent_alerts: list[RuleAlert | SystemAlert] = Field(default_factory=list)
    top_addresses: list[AddressStats] = Field(default_factory=list)
    top_pools: list[PoolStats] = Field(default_factory=list)
    event_trends: list[TrendPoint] = Field(default_factory=list)
