"""Configuration management for the event monitoring system."""

import os
from typing import Dict, Any, Optional
import structlog
import yaml
from pydantic import BaseModel, Field


logger = structlog.get_logger(__name__)


class SourceConfig(BaseModel):
    """A single event source handled by one scraper agent."""
    id: str = Field(description="Stable source identifier")
    name: str = Field(description="Human readable source name")
    type: str = Field(default="eventbrite", description="Scraping strategy used for this source")
    url: Optional[str] = Field(default=None, description="Landing page for HTML based sources")
    enabled: bool = Field(default=True, description="Whether the source is scraped")


class EventbriteConfig(BaseModel):
    """Eventbrite search API settings."""
    api_key: str = Field(default="YOUR_EVENTBRITE_API_KEY", description="Eventbrite API token")
    base_url: str = Field(default="https://www.eventbriteapi.com/v3", description="Eventbrite API base URL")
    location_address: str = Field(default="Seattle, WA", description="Centre of the location search")
    location_within: str = Field(default="50mi", description="Search radius")
    categories: str = Field(default="103,110,113", description="Family, Kids and Community category ids")
    date_range_days: int = Field(default=30, description="Days ahead to search")
    min_primary_results: int = Field(default=5, description="Below this the category search also runs")


class AgentMonitoringConfig(BaseModel):
    """Main configuration for scraper agents and their supervision."""

    # Environment settings
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="console", description="console or json")

    # Watchdog settings
    heartbeat_interval_ms: int = Field(default=60000, description="Watchdog check interval in milliseconds")
    stall_detection_minutes: int = Field(default=5, description="Minutes without a heartbeat before a running agent is stalled")
    long_stall_minutes: int = Field(default=10, description="Stalls older than this also get a configuration update")
    heartbeat_pulse_seconds: float = Field(default=30.0, description="Heartbeat refresh interval while a scrape runs")

    # Scraping settings
    scraping_delay_ms: int = Field(default=1000, description="Minimum delay between requests of one agent")
    request_timeout: float = Field(default=30.0, description="Data fetch timeout in seconds")
    robots_timeout: float = Field(default=5.0, description="robots.txt fetch timeout in seconds")
    user_agent: str = Field(
        default="Washington Events Aggregator (Educational Purpose)",
        description="User agent sent with every request"
    )

    # Output settings
    state_directory: str = Field(default="tmp", description="Directory for agent lock artifacts")
    status_file: str = Field(default="tmp/agent-status.json", description="Heartbeat ledger document")
    traces_directory: str = Field(default="traces", description="Directory for scrape traces")
    events_output: str = Field(default="data/events.jsonl", description="JSON lines file receiving scraped events")

    # Sources
    eventbrite: EventbriteConfig = Field(default_factory=EventbriteConfig)
    sources: list[SourceConfig] = Field(default_factory=list, description="Sources available to the scrape command")

    def get_source(self, source_id: str) -> Optional[SourceConfig]:
        """Look up a configured source by id."""
        for source in self.sources:
            if source.id == source_id:
                return source
        return None


def load_config(config_path: Optional[str] = None) -> AgentMonitoringConfig:
    """Load configuration from file or environment variables."""
    if config_path is None:
        config_path = os.getenv("EVENT_MONITORING_CONFIG", "config/event_monitoring.yaml")

    config_data: Dict[str, Any] = {}

    # Load from file if exists
    if os.path.exists(config_path):
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}

    # Override with environment variables
    env_overrides = {
        "environment": os.getenv("MONITORING_ENV"),
        "log_level": os.getenv("LOG_LEVEL"),
        "heartbeat_interval_ms": os.getenv("HEARTBEAT_INTERVAL_MS"),
        "stall_detection_minutes": os.getenv("STALL_DETECTION_MINUTES"),
        "scraping_delay_ms": os.getenv("SCRAPING_DELAY_MS"),
        "status_file": os.getenv("AGENT_STATUS_FILE"),
        "traces_directory": os.getenv("TRACES_DIRECTORY"),
    }

    # Filter out None values and convert types
    for key, value in env_overrides.items():
        if value is not None:
            if key in ["heartbeat_interval_ms", "stall_detection_minutes", "scraping_delay_ms"]:
                try:
                    value = int(value)
                except ValueError:
                    logger.warning("Ignoring non-numeric environment override", setting=key, value=value)
                    continue
            config_data[key] = value

    api_key = os.getenv("EVENTBRITE_API_KEY")
    if api_key:
        eventbrite = dict(config_data.get("eventbrite") or {})
        eventbrite["api_key"] = api_key
        config_data["eventbrite"] = eventbrite

    return AgentMonitoringConfig(**config_data)


def get_config() -> AgentMonitoringConfig:
    """Get the global configuration instance."""
    return load_config()
