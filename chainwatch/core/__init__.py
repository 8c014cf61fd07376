"""Core module — config, types, logging, clock, scheduling."""

from chainwatch.core.clock import SYSTEM_CLOCK, Clock
from chainwatch.core.config import Settings, get_settings, load_settings, reset_settings
from chainwatch.core.logging import setup_logging
from chainwatch.core.scheduling import PeriodicTask
from chainwatch.core.types import (
    AlertChannel,
    AlertCondition,
    AlertRule,
    ChannelKind,
    CheckResult,
    CheckStatus,
    ConditionOperator,
    DomainEvent,
    EventFilter,
    EventKind,
    HealthStatus,
    MetricsSnapshot,
    OverallStatus,
    RateLimit,
    Severity,
)

__all__ = [
    "SYSTEM_CLOCK",
    "AlertChannel",
    "AlertCondition",
    "AlertRule",
    "ChannelKind",
    "CheckResult",
    "CheckStatus",
    "Clock",
    "ConditionOperator",
    "DomainEvent",
    "EventFilter",
    "EventKind",
    "HealthStatus",
    "MetricsSnapshot",
    "OverallStatus",
    "PeriodicTask",
    "RateLimit",
    "Settings",
    "Severity",
    "get_settings",
    "load_settings",
    "reset_settings",
    "setup_logging",
]
