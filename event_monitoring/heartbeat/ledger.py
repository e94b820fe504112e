"""Heartbeat ledger tracking per-agent liveness."""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import structlog

from ..config import AgentMonitoringConfig, get_config
from .store import HeartbeatStore, JsonFileHeartbeatStore


logger = structlog.get_logger(__name__)


class HeartbeatStatus(str, Enum):
    RUNNING = "running"
    IDLE = "idle"
    DONE = "done"


def agent_key(agent_type: str, source_id: Any) -> str:
    return f"{agent_type}_{source_id}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: str) -> datetime:
    timestamp = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp


@dataclass(frozen=True)
class HeartbeatRecord:
    """Latest liveness report of one agent working one source."""

    agent_type: str
    source_id: str
    current_task: str
    status: HeartbeatStatus
    timestamp: datetime

    @property
    def key(self) -> str:
        return agent_key(self.agent_type, self.source_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agentType": self.agent_type,
            "sourceId": self.source_id,
            "currentTask": self.current_task,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HeartbeatRecord":
        return cls(
            agent_type=str(data["agentType"]),
            source_id=str(data["sourceId"]),
            current_task=str(data.get("currentTask") or ""),
            status=HeartbeatStatus(data["status"]),
            timestamp=_parse_timestamp(data["timestamp"]),
        )


@dataclass(frozen=True)
class StallRecord:
    """A running heartbeat older than the stall threshold."""

    record: HeartbeatRecord
    time_since_update: int  # whole minutes

    @property
    def agent_key(self) -> str:
        return self.record.key

    @property
    def agent_type(self) -> str:
        return self.record.agent_type

    @property
    def source_id(self) -> str:
        return self.record.source_id

    @property
    def current_task(self) -> str:
        return self.record.current_task

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agentKey": self.agent_key,
            **self.record.to_dict(),
            "timeSinceUpdate": self.time_since_update,
        }


class HeartbeatLedger:
    """Durable key-value store of agent heartbeats.

    Every operation reads the whole document from the store and, for writes,
    writes it back. Agents in other processes sharing the same file race on
    that read-modify-write and the last writer wins. Use
    :meth:`clear_if_unchanged` where a stale read must not delete a fresher
    heartbeat.

    I/O failures never reach the caller: writes become no-ops and reads fall
    back to empty results, with the error logged.
    """

    def __init__(
        self,
        store: Optional[HeartbeatStore] = None,
        config: Optional[AgentMonitoringConfig] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.config = config or get_config()
        self.store = store or JsonFileHeartbeatStore(self.config.status_file)
        self.clock = clock or _utcnow

    @staticmethod
    def _decode(raw: Any) -> Optional[HeartbeatRecord]:
        try:
            return HeartbeatRecord.from_dict(raw)
        except (KeyError, TypeError, ValueError, AttributeError):
            return None

    def _load(self) -> Dict[str, HeartbeatRecord]:
        records: Dict[str, HeartbeatRecord] = {}
        for key, raw in self.store.read_all().items():
            record = self._decode(raw)
            if record is None:
                logger.warning("Skipping malformed heartbeat", agent_key=key)
                continue
            records[key] = record
        return records

    def update(
        self,
        agent_type: str,
        source_id: Any,
        current_task: str,
        status: HeartbeatStatus | str
    ) -> Optional[HeartbeatRecord]:
        """Upsert the heartbeat for an agent, stamped with the current time."""
        try:
            record = HeartbeatRecord(
                agent_type=agent_type,
                source_id=str(source_id),
                current_task=current_task,
                status=HeartbeatStatus(status),
                timestamp=self.clock(),
            )
            self.store.upsert(record.key, record.to_dict())
        except Exception as e:
            logger.error("Failed to update heartbeat",
                         agent_type=agent_type,
                         source_id=source_id,
                         error=str(e))
            return None

        logger.info("Heartbeat updated",
                    agent_type=agent_type,
                    source_id=record.source_id,
                    status=record.status.value)
        return record

    def stalls(self, threshold_minutes: Optional[float] = None) -> List[StallRecord]:
        """Running heartbeats older than ``threshold_minutes``."""
        if threshold_minutes is None:
            threshold_minutes = self.config.stall_detection_minutes
        threshold_ms = threshold_minutes * 60 * 1000

        try:
            records = self._load()
        except Exception as e:
            logger.error("Failed to load heartbeats for stall check", error=str(e))
            return []

        now = self.clock()
        stalled = []
        for record in records.values():
            if record.status is not HeartbeatStatus.RUNNING:
                continue
            elapsed_ms = (now - record.timestamp).total_seconds() * 1000
            if elapsed_ms > threshold_ms:
                # half-up rounding, so 2.5 minutes reports as 3
                minutes = int(math.floor(elapsed_ms / 60000 + 0.5))
                stalled.append(StallRecord(record=record, time_since_update=minutes))
        return stalled

    check_for_stalls = stalls

    def clear(self, agent_type: str, source_id: Any) -> bool:
        """Remove an agent's heartbeat. Absent keys are not an error."""
        key = agent_key(agent_type, source_id)
        try:
            removed = self.store.remove(key)
        except Exception as e:
            logger.error("Failed to clear heartbeat", agent_key=key, error=str(e))
            return False

        if removed:
            logger.info("Heartbeat cleared", agent_type=agent_type, source_id=str(source_id))
        return removed

    def clear_if_unchanged(self, record: HeartbeatRecord) -> bool:
        """Remove ``record`` only if no newer heartbeat replaced it."""
        try:
            raw = self.store.read_all().get(record.key)
            cleared = False
            if raw is not None and self._decode(raw) == record:
                cleared = self.store.compare_and_swap(record.key, raw, None)
        except Exception as e:
            logger.error("Failed to clear heartbeat", agent_key=record.key, error=str(e))
            return False

        if cleared:
            logger.info("Heartbeat cleared", agent_type=record.agent_type, source_id=record.source_id)
        else:
            logger.info("Heartbeat changed since it was read, leaving it in place", agent_key=record.key)
        return cleared

    def get(self, agent_type: str, source_id: Any) -> Optional[HeartbeatRecord]:
        try:
            return self._load().get(agent_key(agent_type, source_id))
        except Exception as e:
            logger.error("Failed to load heartbeat", agent_type=agent_type, source_id=source_id, error=str(e))
            return None

    def running_agents(self) -> List[HeartbeatRecord]:
        try:
            records = self._load()
        except Exception as e:
            logger.error("Failed to load heartbeats", error=str(e))
            return []
        return [r for r in records.values() if r.status is HeartbeatStatus.RUNNING]

    def snapshot(self) -> Dict[str, HeartbeatRecord]:
        try:
            return self._load()
        except Exception as e:
            logger.error("Failed to load heartbeats", error=str(e))
            return {}
