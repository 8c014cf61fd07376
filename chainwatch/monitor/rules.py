"""RuleEngine — decides which alert rules fire for an event."""

from __future__ import annotations

import re
from collections.abc import Callable
from typing import Any, NamedTuple, Protocol

import structlog

from chainwatch.core.clock import SYSTEM_CLOCK, Clock, TimerHandle
from chainwatch.core.types import (
    AlertCondition,
    AlertRule,
    ConditionOperator,
    DomainEvent,
    MetricsSnapshot,
)

logger = structlog.get_logger(__name__)


class EventHistory(Protocol):
    """Source of recently observed events, used for rate limiting."""

    def recent_events(self, window_secs: float) -> list[DomainEvent]: ...


class ThresholdBreach(NamedTuple):
    rule: AlertRule
    metric: str
    value: float
    threshold: float


_MISSING = object()

# Fields rules may reference. Anything else falls back to a declared
# DomainEvent attribute of the same name, or never matches.
_FIELD_ACCESSORS: dict[str, Callable[[DomainEvent], Any]] = {
    "amount": lambda e: e.amount,
    "address": lambda e: e.address,
    "poolId": lambda e: e.pool_id,
    "pool_id": lambda e: e.pool_id,
    "tokenMint": lambda e: e.token_mint,
    "token_mint": lambda e: e.token_mint,
    "error": lambda e: e.error,
}


def field_value(event: DomainEvent, field: str) -> Any:
    """Resolve *field* on *event*; returns ``_MISSING`` for unknown names."""
    accessor = _FIELD_ACCESSORS.get(field)
    if accessor is not None:
        return accessor(event)
    if field in DomainEvent.model_fields:
        return getattr(event, field)
    return _MISSING


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def evaluate_condition(event: DomainEvent, condition: AlertCondition) -> bool:
    """True iff *condition* holds for *event*.

    Unknown fields, type mismatches and invalid regex patterns are simply
    "not satisfied".
    """
    value = field_value(event, condition.field)
    if value is _MISSING:
        return False

    op = condition.operator
    expected = condition.value
    try:
        if op == ConditionOperator.EQUALS:
            return bool(value == expected)
        if op == ConditionOperator.NOT_EQUALS:
            return bool(value != expected)
        if op in (ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN):
            if not (_is_number(value) and _is_number(expected)):
                return False
            return value > expected if op == ConditionOperator.GREATER_THAN else value < expected
        if op == ConditionOperator.CONTAINS:
            return str(expected) in str(value)
        if op == ConditionOperator.NOT_CONTAINS:
            return str(expected) not in str(value)
        if op == ConditionOperator.REGEX:
            return re.search(str(expected), str(value)) is not None
    except re.error:
        logger.debug("invalid_rule_regex", field=condition.field, pattern=expected)
        return False
    except Exception:
        logger.exception("condition_evaluation_error", field=condition.field, operator=op)
        return False
    return False


def conditions_hold(event: DomainEvent, rule: AlertRule) -> bool:
    return all(evaluate_condition(event, c) for c in rule.conditions)


class RuleEngine:
    """Evaluates events against alert rules.

    Owns cooldown bookkeeping: firing a rule stamps ``last_triggered`` and,
    for rules with a cooldown, schedules an expiry timer on the clock.
    Rate limits are checked against *history* (normally the metrics buffer),
    counting earlier events of the same kind that the rule would also
    match.

    Usage::

        engine = RuleEngine(history=metrics)
        fired = engine.evaluate(event, rules)
        ...
        engine.close()
    """

    def __init__(
        self,
        history: EventHistory | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._history = history
        self._clock = clock or SYSTEM_CLOCK
        self._cooldown_timers: dict[str, TimerHandle] = {}

    @property
    def cooling_rule_ids(self) -> set[str]:
        """Rules whose cooldown timer has not yet expired."""
        return set(self._cooldown_timers)

    def in_cooldown(self, rule: AlertRule) -> bool:
        if not rule.cooldown_ms or rule.last_triggered is None:
            return False
        return self._clock.time() - rule.last_triggered < rule.cooldown_ms / 1000.0

    def matches(self, event: DomainEvent, rule: AlertRule) -> bool:
        """Static checks only: enabled, kind filter, min severity, conditions."""
        if not rule.enabled:
            return False
        if rule.event_kinds is not None and event.kind not in rule.event_kinds:
            return False
        if rule.min_severity is not None and event.severity < rule.min_severity:
            return False
        return conditions_hold(event, rule)

    def evaluate(self, event: DomainEvent, rules: list[AlertRule]) -> list[AlertRule]:
        """Return the rules that fire for *event*, marking each as triggered."""
        fired: list[AlertRule] = []
        for rule in rules:
            if not self.matches(event, rule):
                continue
            if self.in_cooldown(rule):
                logger.debug("rule_in_cooldown", rule_id=rule.id, kind=event.kind)
                continue
            if rule.rate_limit is not None and self._rate_limited(event, rule):
                logger.debug("rule_rate_limited", rule_id=rule.id, kind=event.kind)
                continue
            self._mark_fired(rule)
            fired.append(rule)
        return fired

    def check_metric_thresholds(
        self,
        snapshot: MetricsSnapshot,
        rules: list[AlertRule],
    ) -> list[ThresholdBreach]:
        """Metric values above a rule's ``metric_thresholds``.

        A rule with at least one breach is marked triggered, so cooldown
        applies to threshold alerts the same way it does to event alerts.
        """
        breaches: list[ThresholdBreach] = []
        for rule in rules:
            if not rule.enabled or not rule.metric_thresholds:
                continue
            if self.in_cooldown(rule):
                continue
            rule_breaches = []
            for metric, threshold in rule.metric_thresholds.items():
                value = snapshot.value_of(metric)
                if value is not None and value > threshold:
                    rule_breaches.append(ThresholdBreach(rule, metric, value, threshold))
            if rule_breaches:
                self._mark_fired(rule)
                breaches.extend(rule_breaches)
        return breaches

    def close(self) -> None:
        """Cancel every pending cooldown timer."""
        for handle in self._cooldown_timers.values():
            handle.cancel()
        self._cooldown_timers.clear()

    def _rate_limited(self, event: DomainEvent, rule: AlertRule) -> bool:
        limit = rule.rate_limit
        if limit is None or self._history is None:
            return False
        prior = [
            e for e in self._history.recent_events(limit.window_ms / 1000.0)
            if e.id != event.id and e.kind == event.kind and self.matches(e, rule)
        ]
        return len(prior) >= limit.max_events

    def _mark_fired(self, rule: AlertRule) -> None:
        rule.last_triggered = self._clock.time()
        if not rule.cooldown_ms:
            return
        existing = self._cooldown_timers.pop(rule.id, None)
        if existing is not None:
            existing.cancel()
        self._cooldown_timers[rule.id] = self._clock.call_later(
            rule.cooldown_ms / 1000.0,
            lambda rule_id=rule.id: self._cooldown_expired(rule_id),
        )

    def _cooldown_expired(self, rule_id: str) -> None:
        self._cooldown_timers.pop(rule_id, None)
        logger.debug("rule_cooldown_expired", rule_id=rule_id)
