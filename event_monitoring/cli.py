"""Command line entry point for the event monitoring system.

Usage:
    event-monitoring watchdog               # Supervise agent heartbeats until SIGINT/SIGTERM
    event-monitoring scrape eventbrite-1    # Run one scrape for a configured source
    event-monitoring review recs.json       # Review a JSON list of recommendations
    event-monitoring status                 # Print ledger and stall status
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Optional

import structlog

from .agents import CriticAgent
from .config import AgentMonitoringConfig, load_config
from .heartbeat import HeartbeatLedger
from .scheduler import Watchdog
from .scrapers import JsonLinesEventSink, ScrapeRunner, ScraperToolkit, TraceWriter, create_scraper


logger = structlog.get_logger(__name__)

SHUTDOWN_RECOVERY_TIMEOUT = 60.0


def configure_logging(level: str = "INFO", fmt: str = "console"):
    """Configure structured logging for command line use."""
    renderer = structlog.processors.JSONRenderer() if fmt == "json" else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            renderer
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper(), logging.INFO)),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


async def run_watchdog(config: AgentMonitoringConfig):
    """Run the watchdog until a termination signal arrives."""
    ledger = HeartbeatLedger(config=config)
    watchdog = Watchdog(ledger, CriticAgent(config=config), config=config)

    loop = asyncio.get_running_loop()
    shutdown = asyncio.Event()

    def request_shutdown(signame: str):
        logger.info("Received signal, shutting down watchdog", signal=signame)
        shutdown.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_shutdown, sig.name)
        except NotImplementedError:
            signal.signal(sig, lambda s, f: loop.call_soon_threadsafe(request_shutdown, signal.Signals(s).name))

    await watchdog.start()
    try:
        await shutdown.wait()
    finally:
        await watchdog.stop()
        await watchdog.wait_for_recoveries(timeout=SHUTDOWN_RECOVERY_TIMEOUT)


async def run_scrape(config: AgentMonitoringConfig, source_id: str) -> int:
    source = config.get_source(source_id)
    if source is None:
        print(f"❌ Unknown source: {source_id}")
        return 1

    ledger = HeartbeatLedger(config=config)
    runner = ScrapeRunner(ledger, JsonLinesEventSink(config.events_output), config=config)

    async with ScraperToolkit(config=config) as toolkit:
        agent = create_scraper(source, toolkit, traces=TraceWriter(config.traces_directory), config=config)
        events = await runner.run(agent)

    print(f"✅ {len(events)} events scraped from {source.name}")
    return 0


def run_review(config: AgentMonitoringConfig, path: str) -> int:
    with open(path, 'r') as f:
        recommendations = json.load(f)
    if not isinstance(recommendations, list):
        print("❌ Expected a JSON list of recommendations")
        return 1

    result = CriticAgent(config=config).review(recommendations)
    print(json.dumps(result.to_dict(), indent=2, default=str))
    return 0


def run_status(config: AgentMonitoringConfig) -> int:
    ledger = HeartbeatLedger(config=config)
    watchdog = Watchdog(ledger, config=config)
    report = {
        "watchdog": watchdog.status(),
        "heartbeats": {key: record.to_dict() for key, record in ledger.snapshot().items()},
        "stalled": [stall.to_dict() for stall in ledger.stalls()],
    }
    print(json.dumps(report, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="event-monitoring", description="Scraper agents and their supervision")
    parser.add_argument("--config", help="Path to a YAML configuration file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("watchdog", help="Monitor heartbeats and recover stalled agents")

    scrape = subparsers.add_parser("scrape", help="Run one scrape for a configured source")
    scrape.add_argument("source_id")

    review = subparsers.add_parser("review", help="Review recommendations from a JSON file")
    review.add_argument("path")

    subparsers.add_parser("status", help="Show heartbeat and stall status")
    return parser


def main(argv: Optional[list[str]] = None):
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)
    config = load_config(args.config)
    configure_logging(config.log_level, config.log_format)

    try:
        if args.command == "watchdog":
            asyncio.run(run_watchdog(config))
            code = 0
        elif args.command == "scrape":
            code = asyncio.run(run_scrape(config, args.source_id))
        elif args.command == "review":
            code = run_review(config, args.path)
        else:
            code = run_status(config)
    except Exception as e:
        print(f"❌ Error: {e}")
        sys.exit(1)

    sys.exit(code)


if __name__ == "__main__":
    main()
