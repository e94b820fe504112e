"""Normalized event records and the sinks that persist them."""

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

import structlog


logger = structlog.get_logger(__name__)


@dataclass
class Event:
    """An event listing normalized from any source."""

    title: str
    source_id: str
    description: str = ""
    start_datetime: Optional[str] = None
    end_datetime: Optional[str] = None
    location_name: str = "TBD"
    location_address: str = ""
    category: str = "General"
    age_group: str = "all"
    is_free: bool = False
    price_min: float = 0
    price_max: float = 0
    registration_url: str = ""
    image_url: str = ""
    raw_data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class EventSink(Protocol):
    """Receives the events produced by one scrape."""

    def store(self, events: Sequence[Event]) -> int:
        ...


class JsonLinesEventSink:
    """Appends events to a JSON lines file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def store(self, events: Sequence[Event]) -> int:
        if not events:
            return 0
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'a', encoding="utf-8") as f:
            for event in events:
                f.write(json.dumps(event.to_dict(), ensure_ascii=False, default=str) + "\n")
        logger.info("Stored events", count=len(events), path=str(self.path))
        return len(events)


class MemoryEventSink:
    """Keeps stored events in a list."""

    def __init__(self):
        self.events: List[Event] = []

    def store(self, events: Sequence[Event]) -> int:
        self.events.extend(events)
        return len(events)
