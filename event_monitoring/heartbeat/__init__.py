"""Heartbeat ledger for agent liveness tracking."""

from .ledger import HeartbeatLedger, HeartbeatRecord, HeartbeatStatus, StallRecord, agent_key
from .store import HeartbeatStore, InMemoryHeartbeatStore, JsonFileHeartbeatStore

__all__ = [
    "HeartbeatLedger",
    "HeartbeatRecord",
    "HeartbeatStatus",
    "StallRecord",
    "agent_key",
    "HeartbeatStore",
    "InMemoryHeartbeatStore",
    "JsonFileHeartbeatStore",
]
