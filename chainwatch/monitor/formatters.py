"""Pure functions that turn alert envelopes into per-channel payloads.

Nothing here performs I/O; transports take the returned dicts as-is.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from datetime import UTC, datetime
from html import escape as html_escape
from typing import Any

from chainwatch.core.types import (
    AlertChannel,
    DiscordChannel,
    EmailChannel,
    Severity,
    SlackChannel,
    TelegramChannel,
)
from chainwatch.monitor.types import AlertEnvelope, RuleAlert

EXPLORER_URL = "https://solscan.io"
SLACK_FOOTER = "Smart Contract Monitoring"

# Discord embed colours keyed by severity.
_DISCORD_INFO = 0x3498DB
_DISCORD_WARNING = 0xF39C12
_DISCORD_ERROR = 0xE74C3C

_DISCORD_COLORS: dict[Severity, int] = {
    Severity.LOW: _DISCORD_INFO,
    Severity.MEDIUM: _DISCORD_WARNING,
    Severity.HIGH: _DISCORD_ERROR,
    Severity.CRITICAL: _DISCORD_ERROR,
}

_SLACK_COLORS: dict[Severity, str] = {
    Severity.LOW: "#36a64f",
    Severity.MEDIUM: "#ff9500",
    Severity.HIGH: "#ff0000",
    Severity.CRITICAL: "#8b0000",
}

_SEVERITY_LABELS: dict[Severity, str] = {
    Severity.LOW: "🟢 Low",
    Severity.MEDIUM: "🟡 Medium",
    Severity.HIGH: "🔴 High",
    Severity.CRITICAL: "🚨 Critical",
}


# ── Shared helpers ──────────────────────────────────────────────


def severity_text(severity: Severity) -> str:
    return severity.name.capitalize()


def severity_label(severity: Severity) -> str:
    """Emoji-prefixed severity label, e.g. ``🔴 High``."""
    return _SEVERITY_LABELS.get(severity, "⚪ Unknown")


def iso_timestamp(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=UTC).isoformat()


def shorten(value: str, keep: int) -> str:
    """``abcdefgh...`` style abbreviation keeping *keep* chars at each end."""
    if len(value) <= keep * 2 + 3:
        return value
    return f"{value[:keep]}...{value[-keep:]}"


def tx_url(signature: str) -> str:
    return f"{EXPLORER_URL}/tx/{signature}"


def account_url(address: str) -> str:
    return f"{EXPLORER_URL}/account/{address}"


def format_alert_message(envelope: AlertEnvelope) -> str:
    """One-line human summary of an envelope."""
    if isinstance(envelope, RuleAlert):
        event = envelope.event
        return f"{event.kind}: {event.error or 'Event occurred'} - {event.signature}"
    return envelope.message


def _alert_title(envelope: AlertEnvelope) -> str:
    if isinstance(envelope, RuleAlert):
        return f"🚨 Alert: {envelope.event.kind}"
    return f"⚙️ System Alert: {envelope.type}"


# ── Per-kind formatters ─────────────────────────────────────────


def format_discord(envelope: AlertEnvelope, channel: AlertChannel) -> dict[str, Any]:
    fields: list[dict[str, Any]] = []
    if isinstance(envelope, RuleAlert):
        event = envelope.event
        if event.signature:
            fields.append({
                "name": "🔗 Transaction",
                "value": f"[{shorten(event.signature, 8)}]({tx_url(event.signature)})",
                "inline": True,
            })
        if event.address:
            fields.append({
                "name": "👤 Address",
                "value": f"[{shorten(event.address, 4)}]({account_url(event.address)})",
                "inline": True,
            })
        if event.amount is not None:
            fields.append({"name": "💰 Amount", "value": str(event.amount), "inline": True})
        if event.pool_id:
            fields.append({"name": "🏦 Pool ID", "value": event.pool_id, "inline": True})
        if event.task_id:
            fields.append({"name": "📝 Task ID", "value": event.task_id, "inline": True})
        if event.error:
            fields.append({"name": "❌ Error", "value": f"```{event.error}```", "inline": False})
        timestamp = event.timestamp
    else:
        fields.append({"name": "📋 Message", "value": envelope.message, "inline": False})
        timestamp = envelope.timestamp

    fields.append({"name": "⏰ Timestamp", "value": iso_timestamp(timestamp), "inline": True})
    fields.append({"name": "📊 Severity", "value": severity_label(envelope.severity), "inline": True})

    payload: dict[str, Any] = {
        "embeds": [{
            "title": _alert_title(envelope),
            "color": _DISCORD_COLORS.get(envelope.severity, _DISCORD_INFO),
            "fields": fields,
        }],
    }
    if isinstance(channel, DiscordChannel):
        cfg = channel.config
        if cfg.username:
            payload["username"] = cfg.username
        if cfg.avatar_url:
            payload["avatar_url"] = cfg.avatar_url
        if cfg.mentions:
            payload["content"] = " ".join(cfg.mentions)
    return payload


def format_slack(envelope: AlertEnvelope, channel: AlertChannel) -> dict[str, Any]:
    fields: list[dict[str, Any]] = []
    if isinstance(envelope, RuleAlert):
        event = envelope.event
        fields.append({"title": "Transaction", "value": event.signature, "short": True})
        if event.address:
            fields.append({"title": "Address", "value": event.address, "short": True})
        if event.amount is not None:
            fields.append({"title": "Amount", "value": str(event.amount), "short": True})
    fields.append({"title": "Severity", "value": severity_text(envelope.severity), "short": True})

    payload: dict[str, Any] = {
        "text": format_alert_message(envelope),
        "icon_emoji": ":warning:",
        "attachments": [{
            "color": _SLACK_COLORS.get(envelope.severity, "#36a64f"),
            "fields": fields,
            "footer": SLACK_FOOTER,
            "ts": int(envelope.timestamp),
        }],
    }
    if isinstance(channel, SlackChannel):
        cfg = channel.config
        payload["icon_emoji"] = cfg.icon_emoji or ":warning:"
        if cfg.channel:
            payload["channel"] = cfg.channel
        if cfg.username:
            payload["username"] = cfg.username
    return payload


def format_email(envelope: AlertEnvelope, channel: AlertChannel) -> dict[str, Any]:
    prefix = channel.config.subject_prefix if isinstance(channel, EmailChannel) else "[ALERT]"
    subject_kind = (
        envelope.event.kind if isinstance(envelope, RuleAlert) else envelope.type
    )
    lines = [
        "<html><body>",
        "<h2>🚨 Smart Contract Alert</h2>",
        f"<p><strong>Message:</strong> {html_escape(format_alert_message(envelope))}</p>",
        f"<p><strong>Timestamp:</strong> {iso_timestamp(envelope.timestamp)}</p>",
        f"<p><strong>Severity:</strong> {severity_text(envelope.severity)}</p>",
    ]
    if isinstance(envelope, RuleAlert) and envelope.event.signature:
        sig = html_escape(envelope.event.signature)
        lines.append(
            f'<p><strong>Transaction:</strong> <a href="{tx_url(sig)}">{sig}</a></p>'
        )
    lines.append("</body></html>")
    return {
        "subject": f"{prefix} {subject_kind}",
        "html": "\n".join(lines),
    }


def format_webhook(envelope: AlertEnvelope, channel: AlertChannel) -> dict[str, Any]:
    if isinstance(envelope, RuleAlert):
        data = envelope.event.model_dump(mode="json")
    else:
        data = envelope.model_dump(mode="json")
    return {
        "type": "smart_contract_alert",
        "timestamp": iso_timestamp(envelope.timestamp),
        "severity": severity_text(envelope.severity),
        "message": format_alert_message(envelope),
        "data": data,
    }


def format_sms(envelope: AlertEnvelope, channel: AlertChannel) -> dict[str, Any]:
    return {"body": f"ALERT: {format_alert_message(envelope)}"}


_MARKDOWN_SPECIAL = re.compile(r"([_*`\[\\])")


def markdown_escape(text: str) -> str:
    """Backslash-escape the characters Telegram legacy Markdown treats as markup."""
    return _MARKDOWN_SPECIAL.sub(r"\\\1", text)


def format_telegram(envelope: AlertEnvelope, channel: AlertChannel) -> dict[str, Any]:
    parse_mode = channel.config.parse_mode if isinstance(channel, TelegramChannel) else "HTML"
    label = severity_label(envelope.severity)
    message = format_alert_message(envelope)
    if parse_mode == "HTML":
        text = f"{label} <b>Smart Contract Alert</b>\n\n{html_escape(message)}"
    else:
        text = f"{label} *Smart Contract Alert*\n\n{markdown_escape(message)}"
    return {"text": text, "parse_mode": parse_mode}


Formatter = Callable[[AlertEnvelope, AlertChannel], dict[str, Any]]

FORMATTERS: dict[str, Formatter] = {
    "discord": format_discord,
    "slack": format_slack,
    "email": format_email,
    "webhook": format_webhook,
    "sms": format_sms,
    "telegram": format_telegram,
}


def format_payload(envelope: AlertEnvelope, channel: AlertChannel) -> dict[str, Any]:
    """Translate *envelope* for *channel* using the formatter for its kind."""
    return FORMATTERS[channel.kind](envelope, channel)
