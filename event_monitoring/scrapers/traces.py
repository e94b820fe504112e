"""Scrape attempts and the trace artifacts summarizing them."""

import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog

from ..config import SourceConfig
from .events import Event


logger = structlog.get_logger(__name__)


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Attempt:
    """One scraping strategy tried within a run."""

    method: str
    success: bool = False
    error: Optional[str] = None
    events: Optional[List[Event]] = None
    timestamp: str = field(default_factory=utc_timestamp)
    exception: Optional[BaseException] = field(default=None, repr=False, compare=False)

    @property
    def count(self) -> int:
        return len(self.events or [])

    def succeed(self, events: List[Event]) -> "Attempt":
        self.success = True
        self.events = events
        return self

    def fail(self, exc: BaseException) -> "Attempt":
        self.success = False
        self.error = str(exc)
        self.exception = exc
        return self

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "method": self.method,
            "success": self.success,
            "timestamp": self.timestamp,
        }
        if self.error is not None:
            data["error"] = self.error
        if self.events is not None:
            data["events"] = [e.to_dict() for e in self.events]
            data["count"] = self.count
        return data


@dataclass(frozen=True)
class Trace:
    """Immutable record of every attempt and the results of one scrape."""

    timestamp: str
    source_id: str
    source_name: str
    attempts: Tuple[Attempt, ...]
    results: Tuple[Event, ...]

    @property
    def success(self) -> bool:
        return len(self.results) > 0

    @property
    def error_count(self) -> int:
        return sum(1 for a in self.attempts if a.error)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "sourceId": self.source_id,
            "sourceName": self.source_name,
            "attempts": [a.to_dict() for a in self.attempts],
            "results": [e.to_dict() for e in self.results],
            "success": self.success,
            "errorCount": self.error_count,
        }


def build_trace(source: SourceConfig, attempts: Sequence[Attempt], results: Sequence[Event]) -> Trace:
    return Trace(
        timestamp=utc_timestamp(),
        source_id=source.id,
        source_name=source.name,
        attempts=tuple(attempts),
        results=tuple(results),
    )


class TraceWriter:
    """Writes one JSON file per trace for offline analysis."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def write(self, trace: Trace) -> Path:
        """Persist ``trace`` under a name no other trace uses."""
        payload = trace.to_dict()
        logger.info("Scraper trace generated",
                    source_id=trace.source_id,
                    attempts=len(trace.attempts),
                    results=len(trace.results),
                    error_count=trace.error_count)

        self.directory.mkdir(parents=True, exist_ok=True)
        millis = time.time_ns() // 1_000_000
        while True:
            trace_file = self.directory / f"trace_{trace.source_id}_{millis}.json"
            try:
                # exclusive create, an existing trace is never overwritten
                with open(trace_file, 'x', encoding="utf-8") as f:
                    json.dump(payload, f, indent=2, ensure_ascii=False, default=str)
            except FileExistsError:
                millis += 1
                continue
            break

        logger.debug("Saved trace", path=str(trace_file))
        return trace_file

    def list_traces(self, source_id: Optional[str] = None) -> List[Path]:
        pattern = f"trace_{source_id}_*.json" if source_id else "trace_*.json"
        return sorted(self.directory.glob(pattern))
