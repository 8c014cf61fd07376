"""Pydantic settings loaded from YAML configuration."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator

from chainwatch.core.types import (
    AlertChannel,
    AlertRule,
    DiscordChannel,
    EmailChannel,
    SlackChannel,
    SmsChannel,
    TelegramChannel,
    WebhookChannel,
)

_settings: Settings | None = None

_DEFAULT_CONFIG_PATH = Path("config/settings.yaml")

MIN_POLL_INTERVAL_MS = 1000
MIN_HEALTH_INTERVAL_MS = 5000

_SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"
_BASE58_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]+$")


class LedgerConfig(BaseModel):
    """Ledger RPC endpoint and polling configuration."""

    rpc_url: str = "https://api.devnet.solana.com"
    program_id: str = "Fg6PaFpoGXkYsidMpWTK6W2BeZ7FEfcYkg476zPFsLnS"
    commitment: Literal["processed", "confirmed", "finalized"] = "confirmed"
    poll_interval_ms: int = 5000
    signature_limit: int = 100
    seen_capacity: int = 1000
    max_retries: int = 3
    retry_delay_ms: int = 1000
    request_timeout_secs: float = 10.0
    enable_websocket: bool = False

    @field_validator("poll_interval_ms")
    @classmethod
    def _poll_floor(cls, value: int) -> int:
        if value < MIN_POLL_INTERVAL_MS:
            raise ValueError(f"poll_interval_ms must be at least {MIN_POLL_INTERVAL_MS}")
        return value

    @field_validator("rpc_url")
    @classmethod
    def _http_url(cls, value: str) -> str:
        if value and not value.startswith("http"):
            raise ValueError("rpc_url must be a valid HTTP/HTTPS URL")
        return value


class DetectionConfig(BaseModel):
    """Derived-event detection toggles and thresholds (native units)."""

    enable_balance_monitoring: bool = True
    enable_suspicious_activity_detection: bool = True
    low_balance_threshold: float = 0.01
    high_volume_threshold: float = 100.0
    suspicious_activity_threshold: int = 10


class HealthConfig(BaseModel):
    """Health-check battery configuration."""

    interval_ms: int = 30000
    timeout_ms: int = 10000
    failure_threshold: int = 3
    reset_failures_on_success: bool = False
    height_sample_secs: float = 1.0
    memory_warn_mb: float = 500.0
    memory_fail_mb: float = 1000.0
    disk_path: str = "."
    disk_warn_free_pct: float = 10.0
    disk_fail_free_pct: float = 5.0

    @field_validator("interval_ms")
    @classmethod
    def _interval_floor(cls, value: int) -> int:
        if value < MIN_HEALTH_INTERVAL_MS:
            raise ValueError(f"interval_ms must be at least {MIN_HEALTH_INTERVAL_MS}")
        return value


class MetricsConfig(BaseModel):
    """Metrics buffer and timer configuration."""

    buffer_size: int = 10_000
    update_interval_ms: int = 60_000
    processing_sample: int = 100


class AlertsConfig(BaseModel):
    """Alert rules and delivery channels."""

    channels: list[AlertChannel] = Field(default_factory=list)
    rules: list[AlertRule] = Field(default_factory=list)
    history_size: int = 1000


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: Literal["json", "console"] = "json"
    # JSON-lines file that additionally receives every alert decision.
    decision_log_path: str | None = None


class Settings(BaseModel):
    """Root settings container."""

    enabled: bool = True
    ledger: LedgerConfig = LedgerConfig()
    detection: DetectionConfig = DetectionConfig()
    health: HealthConfig = HealthConfig()
    metrics: MetricsConfig = MetricsConfig()
    alerts: AlertsConfig = AlertsConfig()
    logging: LoggingConfig = LoggingConfig()


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from a YAML file and cache globally.

    Args:
        path: Path to YAML config. Defaults to config/settings.yaml.

    Returns:
        Parsed Settings instance.

    Raises:
        pydantic.ValidationError: If any value is out of range.
    """
    global _settings  # noqa: PLW0603

    config_path = Path(path) if path else _DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f)
            if isinstance(raw, dict):
                data = raw

    _settings = Settings(**data)
    return _settings


def get_settings() -> Settings:
    """Return the cached settings, loading defaults if not yet loaded."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Reset the cached settings (useful for testing)."""
    global _settings  # noqa: PLW0603
    _settings = None


def validate_settings(settings: Settings) -> list[str]:
    """Return semantic configuration problems; an empty list means usable.

    Range checks live on the models themselves; this covers cross-field
    requirements such as credentials for enabled channels.
    """
    errors: list[str] = []

    program_id = settings.ledger.program_id
    if not program_id or program_id == _SYSTEM_PROGRAM_ID:
        errors.append("Invalid program ID")
    elif not _BASE58_RE.match(program_id):
        errors.append("program_id must be a valid base58 string")

    if not settings.ledger.rpc_url:
        errors.append("RPC URL is required")

    names = [c.name for c in settings.alerts.channels]
    for name in {n for n in names if names.count(n) > 1}:
        errors.append(f"Duplicate alert channel name '{name}'")

    for channel in settings.alerts.channels:
        if not channel.name:
            errors.append("Alert channel must have a name")
        if not channel.enabled:
            continue
        errors.extend(_channel_errors(channel))

    known = set(names)
    for rule in settings.alerts.rules:
        for target in rule.channels:
            if target not in known:
                errors.append(f"Rule '{rule.id}' targets unknown channel '{target}'")

    return errors


def _channel_errors(channel: AlertChannel) -> list[str]:
    name = channel.name
    if isinstance(channel, (DiscordChannel, SlackChannel)):
        if not channel.config.webhook_url.get_secret_value():
            return [f"{channel.kind.capitalize()} channel '{name}' must have a webhook URL"]
    elif isinstance(channel, EmailChannel):
        cfg = channel.config
        problems = []
        if not cfg.smtp_host or not cfg.username or not cfg.password.get_secret_value():
            problems.append(f"Email channel '{name}' must have SMTP configuration")
        if not cfg.to_emails:
            problems.append(f"Email channel '{name}' must have recipient emails")
        return problems
    elif isinstance(channel, WebhookChannel):
        if not channel.config.url:
            return [f"Webhook channel '{name}' must have a URL"]
    elif isinstance(channel, TelegramChannel):
        problems = []
        if not channel.config.bot_token.get_secret_value():
            problems.append(f"Telegram channel '{name}' must have a bot token")
        if not channel.config.chat_ids:
            problems.append(f"Telegram channel '{name}' must have chat IDs")
        return problems
    elif isinstance(channel, SmsChannel):
        if not channel.config.to_numbers:
            return [f"SMS channel '{name}' must have recipient numbers"]
    return []
