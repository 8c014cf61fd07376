"""Domain types for program monitoring: events, rules, channels, health, metrics."""

from __future__ import annotations

from enum import IntEnum, StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator


class Severity(IntEnum):
    """Event / alert severity — ordered so comparisons work naturally."""

    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    @classmethod
    def parse(cls, value: Any) -> Severity:
        """Accept a Severity, its integer value, or its name (any case)."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str) and not value.isdigit():
            return cls[value.strip().upper()]
        return cls(int(value))


class EventKind(StrEnum):
    """Kind of domain event produced by the decoder or the poller."""

    TASK_COMPLETION_RECORDED = "TASK_COMPLETION_RECORDED"
    REWARDS_WITHDRAWN = "REWARDS_WITHDRAWN"
    REWARD_POOL_INITIALIZED = "REWARD_POOL_INITIALIZED"
    PLATFORM_FEE_UPDATED = "PLATFORM_FEE_UPDATED"
    POOL_PAUSED = "POOL_PAUSED"
    POOL_UNPAUSED = "POOL_UNPAUSED"
    REWARD_VAULT_CREATED = "REWARD_VAULT_CREATED"
    TRANSACTION_FAILED = "TRANSACTION_FAILED"
    BALANCE_LOW = "BALANCE_LOW"
    HIGH_VOLUME = "HIGH_VOLUME"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"
    CONTRACT_ERROR = "CONTRACT_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"


# Kinds that count as errors for error-rate purposes.
ERROR_KINDS: frozenset[EventKind] = frozenset({
    EventKind.TRANSACTION_FAILED,
    EventKind.CONTRACT_ERROR,
    EventKind.NETWORK_ERROR,
})


# ── Events ──────────────────────────────────────────────────────


class DomainEvent(BaseModel):
    """A typed event observed on the watched program. Immutable."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: EventKind
    signature: str
    slot: int = 0
    timestamp: float
    severity: Severity
    address: str | None = None
    pool_id: str | None = None
    token_mint: str | None = None
    task_id: str | None = None
    farmer_address: str | None = None
    amount: float | None = None
    error: str | None = None
    fee: int | None = None
    success: bool | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_error(self) -> bool:
        """True for error kinds and for any event carrying error text."""
        return self.kind in ERROR_KINDS or bool(self.error)


class EventFilter(BaseModel):
    """Criteria for querying buffered events."""

    kinds: list[EventKind] = Field(default_factory=list)
    severities: list[Severity] = Field(default_factory=list)
    addresses: list[str] = Field(default_factory=list)
    pool_ids: list[str] = Field(default_factory=list)
    token_mints: list[str] = Field(default_factory=list)
    start_time: float | None = None
    end_time: float | None = None
    offset: int = 0
    limit: int | None = None


# ── Rules ───────────────────────────────────────────────────────


class ConditionOperator(StrEnum):
    """Comparison operator for a rule field condition."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    REGEX = "regex"


class AlertCondition(BaseModel):
    """One field condition: ``<field> <operator> <value>``."""

    field: str
    operator: ConditionOperator
    value: Any = None


class RateLimit(BaseModel):
    """At most ``max_events`` qualifying events within ``window_ms``."""

    max_events: int = Field(ge=1)
    window_ms: int = Field(gt=0)


class AlertRule(BaseModel):
    """A configurable alerting rule.

    ``last_triggered`` is the only field mutated at runtime, and only by
    the rule engine when the rule fires.
    """

    id: str
    name: str
    description: str = ""
    enabled: bool = True
    severity: Severity = Severity.MEDIUM
    min_severity: Severity | None = None
    event_kinds: list[EventKind] | None = None
    conditions: list[AlertCondition] = Field(default_factory=list)
    rate_limit: RateLimit | None = None
    metric_thresholds: dict[str, float] | None = None
    channels: list[str] = Field(default_factory=list)
    cooldown_ms: int | None = None
    last_triggered: float | None = None

    @field_validator("severity", "min_severity", mode="before")
    @classmethod
    def _parse_severity(cls, value: Any) -> Any:
        if value is None:
            return None
        return Severity.parse(value)


# ── Channels ────────────────────────────────────────────────────


class ChannelKind(StrEnum):
    """Supported alert delivery channel kinds."""

    DISCORD = "discord"
    SLACK = "slack"
    EMAIL = "email"
    WEBHOOK = "webhook"
    SMS = "sms"
    TELEGRAM = "telegram"


class DiscordChannelConfig(BaseModel):
    webhook_url: SecretStr = SecretStr("")
    username: str | None = None
    avatar_url: str | None = None
    mentions: list[str] = Field(default_factory=list)


class SlackChannelConfig(BaseModel):
    webhook_url: SecretStr = SecretStr("")
    channel: str | None = None
    username: str | None = None
    icon_emoji: str = ":warning:"


class EmailChannelConfig(BaseModel):
    smtp_host: str = ""
    smtp_port: int = 587
    username: str = ""
    password: SecretStr = SecretStr("")
    from_email: str = ""
    to_emails: list[str] = Field(default_factory=list)
    subject_prefix: str = "[ALERT]"
    use_tls: bool = True


class WebhookChannelConfig(BaseModel):
    url: str = ""
    method: Literal["POST", "PUT", "PATCH"] = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    timeout_ms: int | None = None


class SmsChannelConfig(BaseModel):
    provider: Literal["twilio", "aws-sns", "custom"] = "twilio"
    account_sid: str = ""
    auth_token: SecretStr = SecretStr("")
    from_number: str = ""
    to_numbers: list[str] = Field(default_factory=list)
    region: str | None = None


class TelegramChannelConfig(BaseModel):
    bot_token: SecretStr = SecretStr("")
    chat_ids: list[str] = Field(default_factory=list)
    parse_mode: Literal["HTML", "Markdown"] = "HTML"


class _ChannelBase(BaseModel):
    """Fields shared by every channel kind."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    enabled: bool = True


class DiscordChannel(_ChannelBase):
    kind: Literal["discord"] = "discord"
    config: DiscordChannelConfig = Field(default_factory=DiscordChannelConfig)


class SlackChannel(_ChannelBase):
    kind: Literal["slack"] = "slack"
    config: SlackChannelConfig = Field(default_factory=SlackChannelConfig)


class EmailChannel(_ChannelBase):
    kind: Literal["email"] = "email"
    config: EmailChannelConfig = Field(default_factory=EmailChannelConfig)


class WebhookChannel(_ChannelBase):
    kind: Literal["webhook"] = "webhook"
    config: WebhookChannelConfig = Field(default_factory=WebhookChannelConfig)


class SmsChannel(_ChannelBase):
    kind: Literal["sms"] = "sms"
    config: SmsChannelConfig = Field(default_factory=SmsChannelConfig)


class TelegramChannel(_ChannelBase):
    kind: Literal["telegram"] = "telegram"
    config: TelegramChannelConfig = Field(default_factory=TelegramChannelConfig)


AlertChannel = Annotated[
    DiscordChannel
    | SlackChannel
    | EmailChannel
    | WebhookChannel
    | SmsChannel
    | TelegramChannel,
    Field(discriminator="kind"),
]


# ── Health ──────────────────────────────────────────────────────


class CheckStatus(StrEnum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


class OverallStatus(StrEnum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class CheckResult(BaseModel):
    """Outcome of a single named health check."""

    status: CheckStatus
    message: str = ""
    duration_ms: float = 0.0


class HealthStatus(BaseModel):
    """Aggregated result of one health-check pass."""

    status: OverallStatus
    message: str = ""
    timestamp: float = 0.0
    checks: dict[str, CheckResult] = Field(default_factory=dict)


# ── Metrics ─────────────────────────────────────────────────────


class MetricsSnapshot(BaseModel):
    """Point-in-time view of the metrics aggregator."""

    total_events: int = 0
    events_by_kind: dict[EventKind, int] = Field(default_factory=dict)
    events_by_severity: dict[Severity, int] = Field(default_factory=dict)
    error_rate: float = 0.0
    average_processing_time_ms: float = 0.0
    last_event_time: float | None = None
    uptime_secs: float = 0.0
    custom: dict[str, float] = Field(default_factory=dict)

    def value_of(self, metric: str) -> float | None:
        """Look up a metric by name: custom values first, then top-level numbers."""
        if metric in self.custom:
            return self.custom[metric]
        value = getattr(self, metric, None)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        return None


class AddressStats(BaseModel):
    address: str
    event_count: int = 0
    total_amount: float = 0.0


class PoolStats(BaseModel):
    pool_id: str
    event_count: int = 0
    total_amount: float = 0.0


class TrendPoint(BaseModel):
    """Event count for one kind within one time bucket."""

    timestamp: float
    kind: EventKind
    count: int
