"""Runs scraper agents under heartbeat supervision."""

import asyncio
from contextlib import suppress
from typing import List, Optional

import structlog

from ..config import AgentMonitoringConfig, SourceConfig, get_config
from ..heartbeat import HeartbeatLedger, HeartbeatStatus
from .base import ScraperAgent
from .eventbrite import EventbriteScraper
from .events import Event, EventSink
from .toolkit import ScraperToolkit
from .traces import TraceWriter


logger = structlog.get_logger(__name__)

SCRAPER_TYPES = {
    "eventbrite": EventbriteScraper,
}


def create_scraper(
    source: SourceConfig,
    toolkit: ScraperToolkit,
    traces: Optional[TraceWriter] = None,
    config: Optional[AgentMonitoringConfig] = None
) -> ScraperAgent:
    """Build the scraper agent registered for ``source.type``."""
    scraper_cls = SCRAPER_TYPES.get(source.type)
    if scraper_cls is None:
        raise ValueError(f"Unknown scraper type: {source.type}")
    return scraper_cls(source, toolkit, traces=traces, config=config)


class ScrapeRunner:
    """Reports heartbeats while an agent scrapes and stores what it finds."""

    def __init__(
        self,
        ledger: HeartbeatLedger,
        sink: Optional[EventSink] = None,
        config: Optional[AgentMonitoringConfig] = None
    ):
        self.config = config or get_config()
        self.ledger = ledger
        self.sink = sink

    async def run(self, agent: ScraperAgent) -> List[Event]:
        agent_type = agent.agent_type
        source_id = agent.source.id

        agent.current_task = "scraping"
        self.ledger.update(agent_type, source_id, agent.current_task, HeartbeatStatus.RUNNING)
        agent.progress_listener = lambda task: self.ledger.update(agent_type, source_id, task, HeartbeatStatus.RUNNING)
        pulse = asyncio.create_task(self._pulse(agent))

        try:
            events = await agent.scrape()
        except Exception as e:
            self.ledger.update(agent_type, source_id, f"failed: {e}", HeartbeatStatus.IDLE)
            logger.error("Scrape run failed", source_id=source_id, error=str(e))
            raise
        finally:
            agent.progress_listener = None
            pulse.cancel()
            with suppress(asyncio.CancelledError):
                await pulse

        if self.sink is not None:
            self.ledger.update(agent_type, source_id, "storing events", HeartbeatStatus.RUNNING)
            try:
                self.sink.store(events)
            except Exception as e:
                self.ledger.update(agent_type, source_id, f"failed: {e}", HeartbeatStatus.IDLE)
                logger.error("Failed to store events", source_id=source_id, error=str(e))
                raise

        self.ledger.clear(agent_type, source_id)
        logger.info("Scrape run completed", source_id=source_id, events=len(events))
        return events

    async def _pulse(self, agent: ScraperAgent):
        while True:
            await asyncio.sleep(self.config.heartbeat_pulse_seconds)
            self.ledger.update(agent.agent_type, agent.source.id, agent.current_task, HeartbeatStatus.RUNNING)
