"""Event scraper agents with heartbeat supervision and a recommendation critic."""

__version__ = "0.1.0"
