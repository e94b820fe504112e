"""Scraper agent contract."""

from abc import ABC, abstractmethod
from typing import Callable, List, Optional

import structlog

from ..config import AgentMonitoringConfig, SourceConfig, get_config
from .events import Event
from .toolkit import ScraperToolkit
from .traces import Attempt, Trace, TraceWriter, build_trace


class ScraperAgent(ABC):
    """Pulls events from one source.

    Concrete agents implement :meth:`scrape` and use the injected
    ``toolkit`` for every network call so rate limiting and robots.txt
    checks always apply.
    """

    agent_type = "scraper"

    def __init__(
        self,
        source: SourceConfig,
        toolkit: ScraperToolkit,
        traces: Optional[TraceWriter] = None,
        config: Optional[AgentMonitoringConfig] = None
    ):
        self.source = source
        self.toolkit = toolkit
        self.config = config or toolkit.config or get_config()
        self.traces = traces or TraceWriter(self.config.traces_directory)
        self.logger = structlog.get_logger(type(self).__module__).bind(source_id=source.id)
        self.current_task = "scraping"
        self.progress_listener: Optional[Callable[[str], None]] = None

    @abstractmethod
    async def scrape(self) -> List[Event]:
        """Return this run's events or raise after tracing the failure."""
        raise NotImplementedError(f"{type(self).__name__} must implement scrape()")

    def report_progress(self, task: str):
        """Record what the agent is doing now and notify the listener, if any."""
        self.current_task = task
        if self.progress_listener is not None:
            self.progress_listener(task)

    def record_trace(self, attempts: List[Attempt], results: List[Event]) -> Trace:
        trace = build_trace(self.source, attempts, results)
        self.traces.write(trace)
        return trace
