"""Scraper agents pulling event listings from external sources."""

from .base import ScraperAgent
from .eventbrite import EventbriteScraper
from .events import Event, EventSink, JsonLinesEventSink, MemoryEventSink
from .runner import ScrapeRunner, create_scraper
from .toolkit import RateLimiter, RobotsDisallowedError, ScraperError, ScraperToolkit
from .traces import Attempt, Trace, TraceWriter, build_trace

__all__ = [
    "ScraperAgent",
    "EventbriteScraper",
    "Event",
    "EventSink",
    "JsonLinesEventSink",
    "MemoryEventSink",
    "ScrapeRunner",
    "create_scraper",
    "RateLimiter",
    "RobotsDisallowedError",
    "ScraperError",
    "ScraperToolkit",
    "Attempt",
    "Trace",
    "TraceWriter",
    "build_trace",
]
