"""Watchdog monitoring agent heartbeats and dispatching recovery."""

import asyncio
from typing import Any, Dict, Optional

import structlog

from ..agents.critic import CriticAgent, RecoveryResult
from ..config import AgentMonitoringConfig, get_config
from ..heartbeat import HeartbeatLedger, StallRecord
from .job_scheduler import JobScheduler


logger = structlog.get_logger(__name__)

CHECK_JOB_ID = "heartbeat_check"


class Watchdog:
    """Periodically scans the heartbeat ledger for stalled agents.

    Every stalled agent gets one recovery task at a time, tracked in
    ``active_recoveries``. Recovery runs beside the check schedule: a slow
    recovery never delays the next cycle, and stopping the watchdog leaves
    in-flight recoveries running (see :meth:`wait_for_recoveries`).
    """

    def __init__(
        self,
        ledger: HeartbeatLedger,
        critic: Optional[CriticAgent] = None,
        config: Optional[AgentMonitoringConfig] = None
    ):
        self.config = config or get_config()
        self.ledger = ledger
        self.critic = critic or CriticAgent(config=self.config)
        self.check_interval_ms = self.config.heartbeat_interval_ms
        self.scheduler = JobScheduler()
        self.active_recoveries: Dict[str, asyncio.Task] = {}
        self.is_running = False

    async def start(self):
        if self.is_running:
            logger.warning("Watchdog is already running")
            return

        self.is_running = True
        logger.info("Watchdog started - monitoring agent heartbeats",
                    check_interval_ms=self.check_interval_ms)

        await self.check_heartbeats()

        await self.scheduler.start()
        self.scheduler.add_interval_job(
            job_id=CHECK_JOB_ID,
            func=self._scheduled_check,
            seconds=self.check_interval_ms / 1000,
            description="Check agent heartbeats for stalls"
        )

    async def stop(self):
        if not self.is_running:
            logger.warning("Watchdog is not running")
            return

        self.is_running = False
        await self.scheduler.stop()
        logger.info("Watchdog stopped", recoveries_in_flight=len(self.active_recoveries))

    async def _scheduled_check(self):
        # A run queued by APScheduler before stop() must not reach the ledger.
        if not self.is_running:
            return
        await self.check_heartbeats()

    async def check_heartbeats(self):
        """Run one stall check and dispatch recovery for each stall."""
        try:
            stalled_agents = self.ledger.stalls()

            if stalled_agents:
                logger.warning("Stall detected",
                               stalled_count=len(stalled_agents),
                               stalled_agents=[
                                   {
                                       "agent_type": s.agent_type,
                                       "source_id": s.source_id,
                                       "current_task": s.current_task,
                                       "time_since_update": s.time_since_update,
                                   }
                                   for s in stalled_agents
                               ])
                for stalled_agent in stalled_agents:
                    self.trigger_recovery(stalled_agent)
            else:
                logger.debug("All agents healthy")

        except Exception as e:
            logger.error("Watchdog check failed", error=str(e))

    def trigger_recovery(self, stalled_agent: StallRecord) -> Optional[asyncio.Task]:
        key = stalled_agent.agent_key
        in_flight = self.active_recoveries.get(key)
        if in_flight is not None and not in_flight.done():
            logger.info("Recovery already running, skipping", agent_key=key)
            return None

        logger.info("Triggering recovery for stalled agent",
                    agent_type=stalled_agent.agent_type,
                    source_id=stalled_agent.source_id)

        task = asyncio.create_task(self._recover(stalled_agent), name=f"recover:{key}")
        self.active_recoveries[key] = task
        task.add_done_callback(lambda t, key=key: self._forget(key, t))
        return task

    def _forget(self, key: str, task: asyncio.Task):
        if self.active_recoveries.get(key) is task:
            del self.active_recoveries[key]

    async def _recover(self, stalled_agent: StallRecord) -> Optional[RecoveryResult]:
        try:
            result = await self.critic.recover(stalled_agent)
        except Exception as e:
            logger.error("Recovery failed",
                         agent_type=stalled_agent.agent_type,
                         source_id=stalled_agent.source_id,
                         error=str(e))
            return None

        logger.info("Recovery completed",
                    agent_type=stalled_agent.agent_type,
                    source_id=stalled_agent.source_id,
                    outcome="SUCCESS" if result.success else "FAILED")

        if result.success:
            self.ledger.clear_if_unchanged(stalled_agent.record)
        return result

    async def wait_for_recoveries(self, timeout: Optional[float] = None) -> bool:
        """Wait for in-flight recoveries; False if some are still running at timeout."""
        pending = [t for t in self.active_recoveries.values() if not t.done()]
        if not pending:
            return True

        logger.info("Waiting for in-flight recoveries", count=len(pending))
        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        if still_pending:
            logger.warning("Recoveries still running after timeout", count=len(still_pending))
        return not still_pending

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "running_agent_count": len(self.ledger.running_agents()),
            "stalled_agent_count": len(self.ledger.stalls()),
            "interval_ms": self.check_interval_ms,
            "active_recoveries": sum(1 for t in self.active_recoveries.values() if not t.done()),
        }
