"""Central alert dispatcher — builds envelopes and routes them to channels."""

from __future__ import annotations

import asyncio
import uuid
from collections import deque

import structlog

from chainwatch.core.clock import SYSTEM_CLOCK, Clock
from chainwatch.core.logging import DECISION_LOGGER
from chainwatch.core.types import AlertChannel, AlertRule, DomainEvent
from chainwatch.monitor.channels import ChannelTransport
from chainwatch.monitor.formatters import format_alert_message, format_payload
from chainwatch.monitor.types import (
    AlertEnvelope,
    ChannelStatus,
    DeliveryResult,
    RuleAlert,
    SystemAlert,
)

# One record per alert decision; setup_logging can mirror these to a file.
decision_logger = structlog.get_logger(DECISION_LOGGER)

logger = structlog.get_logger(__name__)


class AlertDispatcher:
    """Routes alert envelopes to named notification channels.

    - Every envelope is logged via *decision_logger* before delivery.
    - Rule alerts go to the rule's channels that exist and are enabled.
    - System alerts go to every enabled channel.
    - Deliveries run concurrently; one failing channel never affects another
      and nothing is retried.
    """

    def __init__(
        self,
        transports: dict[str, ChannelTransport],
        channels: list[AlertChannel] | None = None,
        history_size: int = 1000,
        clock: Clock | None = None,
    ) -> None:
        self._transports = transports
        self._channels: dict[str, AlertChannel] = {}
        self._history: deque[AlertEnvelope] = deque(maxlen=history_size)
        self._clock = clock or SYSTEM_CLOCK
        self._total_sent = 0
        for channel in channels or []:
            self.add_channel(channel)

    @property
    def total_alerts_sent(self) -> int:
        """Envelopes that reached at least one channel."""
        return self._total_sent

    # ── Channel registry ────────────────────────────────────────

    def add_channel(self, channel: AlertChannel) -> None:
        """Register (or replace) a channel under its name."""
        self._channels[channel.name] = channel
        logger.info("channel_added", channel=channel.name, kind=channel.kind)

    def remove_channel(self, name: str) -> bool:
        removed = self._channels.pop(name, None) is not None
        if removed:
            logger.info("channel_removed", channel=name)
        return removed

    def set_channel_enabled(self, name: str, enabled: bool) -> bool:
        channel = self._channels.get(name)
        if channel is None:
            return False
        self._channels[name] = channel.model_copy(update={"enabled": enabled})
        logger.info("channel_toggled", channel=name, enabled=enabled)
        return True

    def get_channel(self, name: str) -> AlertChannel | None:
        return self._channels.get(name)

    def channel_status(self) -> list[ChannelStatus]:
        return [
            ChannelStatus(name=c.name, kind=c.kind, enabled=c.enabled)
            for c in self._channels.values()
        ]

    def alert_history(self, limit: int = 100) -> list[AlertEnvelope]:
        """Most recent envelopes, oldest first."""
        if limit <= 0:
            return []
        return list(self._history)[-limit:]

    # ── Dispatch ────────────────────────────────────────────────

    async def dispatch(self, event: DomainEvent, rules: list[AlertRule]) -> list[RuleAlert]:
        """Build one envelope per fired rule and deliver them concurrently."""
        alerts = [self._build_rule_alert(event, rule) for rule in rules]
        await asyncio.gather(*(
            self._deliver(alert, self._targets(alert.channels)) for alert in alerts
        ))
        return alerts

    async def dispatch_system(self, alert: SystemAlert) -> list[DeliveryResult]:
        """Deliver a system alert to every enabled channel."""
        targets = [c for c in self._channels.values() if c.enabled]
        return await self._deliver(alert, targets)

    def _build_rule_alert(self, event: DomainEvent, rule: AlertRule) -> RuleAlert:
        alert = RuleAlert(
            id=uuid.uuid4().hex,
            rule_id=rule.id,
            rule_name=rule.name,
            severity=rule.severity,
            event=event,
            message="",
            channels=list(rule.channels),
            timestamp=self._clock.time(),
            metadata={"rule_description": rule.description},
        )
        return alert.model_copy(update={"message": format_alert_message(alert)})

    def _targets(self, names: list[str]) -> list[AlertChannel]:
        targets: list[AlertChannel] = []
        for name in names:
            channel = self._channels.get(name)
            if channel is None:
                logger.warning("unknown_alert_channel", channel=name)
                continue
            if channel.enabled:
                targets.append(channel)
        return targets

    async def _deliver(
        self,
        alert: AlertEnvelope,
        targets: list[AlertChannel],
    ) -> list[DeliveryResult]:
        self._log_decision(alert, targets)
        self._history.append(alert)
        if not targets:
            return []

        results = list(await asyncio.gather(*(
            self._send_one(alert, channel) for channel in targets
        )))
        if any(r.success for r in results):
            self._total_sent += 1
        for result in results:
            if not result.success:
                logger.warning(
                    "alert_delivery_failed",
                    channel=result.channel,
                    error=result.error,
                )
        return results

    async def _send_one(self, alert: AlertEnvelope, channel: AlertChannel) -> DeliveryResult:
        transport = self._transports.get(channel.kind)
        if transport is None:
            return DeliveryResult(
                channel=channel.name,
                success=False,
                error=f"No transport for {channel.kind} channels",
            )
        try:
            payload = format_payload(alert, channel)
            return await transport.send(channel, payload)
        except Exception as exc:
            logger.exception("channel_dispatch_error", channel=channel.name, kind=channel.kind)
            return DeliveryResult(channel=channel.name, success=False, error=str(exc))

    def _log_decision(self, alert: AlertEnvelope, targets: list[AlertChannel]) -> None:
        if isinstance(alert, RuleAlert):
            decision_logger.info(
                "decision",
                alert_id=alert.id,
                rule_id=alert.rule_id,
                rule_name=alert.rule_name,
                severity=alert.severity.name,
                event_kind=alert.event.kind,
                signature=alert.event.signature,
                message=alert.message,
                channels=[c.name for c in targets],
            )
        else:
            decision_logger.info(
                "decision",
                system_alert=alert.type,
                severity=alert.severity.name,
                message=alert.message,
                channels=[c.name for c in targets],
                metadata=alert.metadata,
            )

    # ── Lifecycle ───────────────────────────────────────────────

    async def close(self) -> None:
        for kind, transport in self._transports.items():
            try:
                await transport.close()
            except Exception:
                logger.exception("transport_close_error", kind=kind)
