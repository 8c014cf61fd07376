#!/usr/bin/env python3
"""Monitor entrypoint — wires all components and runs until interrupted.

Usage::

    # Run with default config
    python scripts/run.py

    # Custom config file
    python scripts/run.py --config config/settings.yaml

    # Override log level
    python scripts/run.py --log-level DEBUG

    # Validate config only
    python scripts/run.py --config config/settings.yaml --check
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

import structlog

from chainwatch.core.config import load_settings, validate_settings
from chainwatch.core.logging import setup_logging
from chainwatch.monitor.factory import create_monitoring_stack

logger = structlog.get_logger(__name__)


async def run(args: argparse.Namespace) -> int:
    """Start the monitoring stack and run until interrupted."""
    settings = load_settings(args.config)
    setup_logging(level=args.log_level, config=settings.logging)

    problems = validate_settings(settings)
    if problems:
        for problem in problems:
            logger.error("invalid_configuration", problem=problem)
        print(
            "Configuration is invalid:\n" + "\n".join(f"  - {p}" for p in problems),
            file=sys.stderr,
        )
        return 1

    if args.check:
        logger.info("configuration_valid", path=args.config)
        return 0

    if not settings.enabled:
        logger.info("monitoring_disabled")
        return 0

    logger.info(
        "monitor_starting",
        rpc_url=settings.ledger.rpc_url,
        program_id=settings.ledger.program_id,
        channels=len(settings.alerts.channels),
        rules=len(settings.alerts.rules),
    )

    coordinator = create_monitoring_stack(settings)
    await coordinator.start()

    # ── Wait for shutdown signal ─────────────────────────────────
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("shutdown_signal_received")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows: signal handlers not supported on ProactorEventLoop
            pass

    try:
        await stop_event.wait()
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt")

    # ── Graceful shutdown ────────────────────────────────────────
    logger.info("monitor_shutting_down")
    status = coordinator.status()
    await coordinator.stop()

    logger.info(
        "monitor_stopped",
        events_processed=status.total_events_processed,
        alerts_sent=status.total_alerts_sent,
        last_height=status.last_processed_height,
        health=status.health.status if status.health else None,
    )
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Watch a reward-pool program and alert on its activity.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to settings YAML (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level override: DEBUG, INFO, WARNING, ERROR",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Validate the configuration and exit",
    )
    args = parser.parse_args()

    code = asyncio.run(run(args))
    sys.exit(code)


if __name__ == "__main__":
    main()
