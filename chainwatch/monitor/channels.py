"""Channel transports — network delivery of formatted alert payloads.

One transport per channel kind.  ``send`` never raises: failures come back
as an unsuccessful ``DeliveryResult`` and are logged.
"""

from __future__ import annotations

import abc
import asyncio
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

import aiohttp
import structlog

from chainwatch.core.types import (
    AlertChannel,
    DiscordChannel,
    EmailChannel,
    SlackChannel,
    SmsChannel,
    TelegramChannel,
    WebhookChannel,
)
from chainwatch.monitor.types import DeliveryResult

logger = structlog.get_logger(__name__)

TELEGRAM_API = "https://api.telegram.org"
TWILIO_API = "https://api.twilio.com/2010-04-01"
SMTP_TIMEOUT_SECS = 10.0


class ChannelTransport(abc.ABC):
    """Base class for alert delivery transports."""

    @abc.abstractmethod
    async def send(self, channel: AlertChannel, payload: dict[str, Any]) -> DeliveryResult:
        """Deliver *payload* through *channel*."""

    async def close(self) -> None:
        """Release resources (HTTP sessions, etc.)."""


class HttpTransport(ChannelTransport):
    """Shared aiohttp session handling for HTTP-based transports."""

    def __init__(self) -> None:
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def _post(
        self,
        channel: AlertChannel,
        url: str,
        ok_statuses: tuple[int, ...] = (200,),
        method: str = "POST",
        **kwargs: Any,
    ) -> DeliveryResult:
        try:
            session = self._get_session()
            async with session.request(method, url, **kwargs) as resp:
                if resp.status in ok_statuses:
                    return DeliveryResult(channel=channel.name, success=True)
                body = await resp.text()
                logger.warning(
                    "channel_send_failed",
                    channel=channel.name,
                    kind=channel.kind,
                    status=resp.status,
                    body=body[:200],
                )
                return DeliveryResult(
                    channel=channel.name,
                    success=False,
                    error=f"HTTP {resp.status}",
                )
        except Exception as exc:
            logger.exception("channel_send_error", channel=channel.name, kind=channel.kind)
            return DeliveryResult(
                channel=channel.name,
                success=False,
                error=str(exc) or type(exc).__name__,
            )

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None


def _wrong_kind(channel: AlertChannel, transport: ChannelTransport) -> DeliveryResult:
    return DeliveryResult(
        channel=channel.name,
        success=False,
        error=f"{type(transport).__name__} cannot deliver to {channel.kind} channels",
    )


class DiscordTransport(HttpTransport):
    """Posts embeds to a Discord webhook."""

    async def send(self, channel: AlertChannel, payload: dict[str, Any]) -> DeliveryResult:
        if not isinstance(channel, DiscordChannel):
            return _wrong_kind(channel, self)
        url = channel.config.webhook_url.get_secret_value()
        return await self._post(channel, url, ok_statuses=(200, 204), json=payload)


class SlackTransport(HttpTransport):
    """Posts attachments to a Slack incoming webhook."""

    async def send(self, channel: AlertChannel, payload: dict[str, Any]) -> DeliveryResult:
        if not isinstance(channel, SlackChannel):
            return _wrong_kind(channel, self)
        url = channel.config.webhook_url.get_secret_value()
        return await self._post(channel, url, json=payload)


class WebhookTransport(HttpTransport):
    """Sends the JSON payload to an arbitrary HTTP endpoint."""

    async def send(self, channel: AlertChannel, payload: dict[str, Any]) -> DeliveryResult:
        if not isinstance(channel, WebhookChannel):
            return _wrong_kind(channel, self)
        cfg = channel.config
        kwargs: dict[str, Any] = {
            "json": payload,
            "headers": {"Content-Type": "application/json", **cfg.headers},
        }
        if cfg.timeout_ms:
            kwargs["timeout"] = aiohttp.ClientTimeout(total=cfg.timeout_ms / 1000.0)
        return await self._post(
            channel, cfg.url, ok_statuses=tuple(range(200, 300)), method=cfg.method, **kwargs,
        )


class TelegramTransport(HttpTransport):
    """Delivers via the Telegram Bot API, once per configured chat."""

    async def send(self, channel: AlertChannel, payload: dict[str, Any]) -> DeliveryResult:
        if not isinstance(channel, TelegramChannel):
            return _wrong_kind(channel, self)
        cfg = channel.config
        url = f"{TELEGRAM_API}/bot{cfg.bot_token.get_secret_value()}/sendMessage"
        failures: list[str] = []
        for chat_id in cfg.chat_ids:
            result = await self._post(channel, url, json={"chat_id": chat_id, **payload})
            if not result.success:
                failures.append(f"{chat_id}: {result.error}")
        if failures:
            return DeliveryResult(channel=channel.name, success=False, error="; ".join(failures))
        return DeliveryResult(channel=channel.name, success=True)


class SmsTransport(HttpTransport):
    """Sends SMS through the Twilio REST API.

    Other providers are accepted in configuration but not delivered to.
    """

    async def send(self, channel: AlertChannel, payload: dict[str, Any]) -> DeliveryResult:
        if not isinstance(channel, SmsChannel):
            return _wrong_kind(channel, self)
        cfg = channel.config
        if cfg.provider != "twilio":
            logger.warning(
                "sms_provider_unsupported",
                channel=channel.name,
                provider=cfg.provider,
                recipients=len(cfg.to_numbers),
            )
            return DeliveryResult(
                channel=channel.name,
                success=False,
                error=f"SMS provider '{cfg.provider}' is not supported",
            )

        url = f"{TWILIO_API}/Accounts/{cfg.account_sid}/Messages.json"
        auth = aiohttp.BasicAuth(cfg.account_sid, cfg.auth_token.get_secret_value())
        failures: list[str] = []
        for number in cfg.to_numbers:
            result = await self._post(
                channel,
                url,
                ok_statuses=(200, 201),
                data={"From": cfg.from_number, "To": number, "Body": payload["body"]},
                auth=auth,
            )
            if not result.success:
                failures.append(f"{number}: {result.error}")
        if failures:
            return DeliveryResult(channel=channel.name, success=False, error="; ".join(failures))
        return DeliveryResult(channel=channel.name, success=True)


class EmailTransport(ChannelTransport):
    """Sends HTML email over SMTP in a worker thread."""

    async def send(self, channel: AlertChannel, payload: dict[str, Any]) -> DeliveryResult:
        if not isinstance(channel, EmailChannel):
            return _wrong_kind(channel, self)
        try:
            await asyncio.to_thread(self._send_sync, channel, payload)
        except Exception as exc:
            logger.error("email_send_failed", channel=channel.name, error=str(exc))
            return DeliveryResult(channel=channel.name, success=False, error=str(exc))
        logger.info("email_sent", channel=channel.name, recipients=len(channel.config.to_emails))
        return DeliveryResult(channel=channel.name, success=True)

    @staticmethod
    def _send_sync(channel: EmailChannel, payload: dict[str, Any]) -> None:
        cfg = channel.config
        msg = MIMEMultipart("alternative")
        msg["Subject"] = payload["subject"]
        msg["From"] = cfg.from_email or cfg.username
        msg["To"] = ", ".join(cfg.to_emails)
        msg.attach(MIMEText(payload["html"], "html"))

        with smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=SMTP_TIMEOUT_SECS) as server:
            if cfg.use_tls:
                server.starttls()
            password = cfg.password.get_secret_value()
            if cfg.username and password:
                server.login(cfg.username, password)
            server.sendmail(msg["From"], cfg.to_emails, msg.as_string())


def default_transports() -> dict[str, ChannelTransport]:
    """One fresh transport per channel kind."""
    return {
        "discord": DiscordTransport(),
        "slack": SlackTransport(),
        "email": EmailTransport(),
        "webhook": WebhookTransport(),
        "sms": SmsTransport(),
        "telegram": TelegramTransport(),
    }
