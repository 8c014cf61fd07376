"""Monitoring, alerting, and decision logging subsystem."""

from chainwatch.monitor.channels import (
    ChannelTransport,
    DiscordTransport,
    EmailTransport,
    SlackTransport,
    SmsTransport,
    TelegramTransport,
    WebhookTransport,
    default_transports,
)
from chainwatch.monitor.coordinator import MonitoringCoordinator
from chainwatch.monitor.dispatcher import AlertDispatcher
from chainwatch.monitor.factory import create_monitoring_stack
from chainwatch.monitor.formatters import format_alert_message, format_payload
from chainwatch.monitor.health import HealthMonitor, aggregate_status
from chainwatch.monitor.metrics import MetricsAggregator
from chainwatch.monitor.rules import RuleEngine, ThresholdBreach, evaluate_condition
from chainwatch.monitor.types import (
    AlertEnvelope,
    DashboardData,
    DeliveryResult,
    MonitoringStatus,
    RuleAlert,
    SystemAlert,
    SystemAlertType,
)

__all__ = [
    "AlertDispatcher",
    "AlertEnvelope",
    "ChannelTransport",
    "DashboardData",
    "DeliveryResult",
    "DiscordTransport",
    "EmailTransport",
    "HealthMonitor",
    "MetricsAggregator",
    "MonitoringCoordinator",
    "MonitoringStatus",
    "RuleAlert",
    "RuleEngine",
    "SlackTransport",
    "SmsTransport",
    "SystemAlert",
    "SystemAlertType",
    "TelegramTransport",
    "ThresholdBreach",
    "WebhookTransport",
    "aggregate_status",
    "create_monitoring_stack",
    "default_transports",
    "evaluate_condition",
    "format_alert_message",
    "format_payload",
]
