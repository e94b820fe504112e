"""Critic agent: gatekeeps optimization recommendations and recovers stalled agents."""

import inspect
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

import structlog

from ..config import AgentMonitoringConfig, get_config
from ..heartbeat import StallRecord


logger = structlog.get_logger(__name__)

CONFIDENCE_THRESHOLD = 0.7
MIN_SUCCESS_COUNT = 10
NEEDS_MORE_DATA_CONFIDENCE = 0.3
REJECTED_CONFIDENCE = 0.1
REQUIRED_PATTERN_FIELDS = ("selector", "method", "fallback")
DANGEROUS_SELECTORS = ("script", "iframe", "object", "embed")

RecoveryHook = Callable[[StallRecord], Optional[Awaitable[None]]]


class RecoveryActionType(str, Enum):
    RESET_AGENT_STATE = "reset_agent_state"
    UPDATE_CONFIGURATION = "update_configuration"
    SWITCH_FALLBACK = "switch_fallback"


@dataclass(frozen=True)
class RecoveryAction:
    type: str
    description: str
    priority: str

    def to_dict(self) -> Dict[str, str]:
        return {"type": str(self.type), "description": self.description, "priority": self.priority}


@dataclass
class RecoveryResult:
    success: bool
    actions: List[RecoveryAction] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success, "actions": [a.to_dict() for a in self.actions]}
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class RecommendationReview:
    approved: bool = False
    needs_more_data: bool = False
    issues: List[str] = field(default_factory=list)
    confidence: float = 0.0


@dataclass
class ReviewResult:
    approved: List[Mapping[str, Any]] = field(default_factory=list)
    rejected: List[Mapping[str, Any]] = field(default_factory=list)
    needs_more_data: List[Mapping[str, Any]] = field(default_factory=list)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "approved": list(self.approved),
            "rejected": list(self.rejected),
            "needsMoreData": list(self.needs_more_data),
            "timestamp": self.timestamp,
        }


def _number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


class CriticAgent:
    """Reviews recommendations and orchestrates recovery of stalled agents."""

    def __init__(
        self,
        config: Optional[AgentMonitoringConfig] = None,
        configuration_updater: Optional[RecoveryHook] = None,
        fallback_switcher: Optional[RecoveryHook] = None
    ):
        self.config = config or get_config()
        self.configuration_updater = configuration_updater
        self.fallback_switcher = fallback_switcher
        self.state_dir = Path(self.config.state_directory)

    # -- review ---------------------------------------------------------

    def review(self, recommendations: Sequence[Mapping[str, Any]]) -> ReviewResult:
        """Sort recommendations into approved, rejected and needs-more-data."""
        logger.info("Critic agent reviewing recommendations", recommendation_count=len(recommendations))

        result = ReviewResult()
        for recommendation in recommendations:
            review = self.review_single_recommendation(recommendation)
            if review.approved:
                result.approved.append(recommendation)
            elif review.needs_more_data:
                result.needs_more_data.append(recommendation)
            else:
                result.rejected.append(recommendation)

        logger.info("Critic review completed",
                    approved=len(result.approved),
                    rejected=len(result.rejected),
                    needs_more_data=len(result.needs_more_data))
        return result

    def review_single_recommendation(self, recommendation: Mapping[str, Any]) -> RecommendationReview:
        review = RecommendationReview()
        insufficient_data = False
        blocking = False

        if _number(recommendation.get("confidence_score")) < CONFIDENCE_THRESHOLD:
            review.issues.append("Confidence score too low")
            insufficient_data = True

        if _number(recommendation.get("success_count")) < MIN_SUCCESS_COUNT:
            review.issues.append("Insufficient success samples")
            insufficient_data = True

        if not self.is_valid_pattern(recommendation.get("pattern")):
            review.issues.append("Invalid pattern structure")
            blocking = True

        if self.has_safety_issues(recommendation):
            review.issues.append("Safety issues detected")
            blocking = True

        if not self.check_alignment(recommendation):
            review.issues.append("Not aligned with project goals")
            blocking = True

        if not review.issues:
            review.approved = True
            review.confidence = _number(recommendation.get("confidence_score"))
        elif insufficient_data and not blocking:
            review.needs_more_data = True
            review.confidence = NEEDS_MORE_DATA_CONFIDENCE
        else:
            review.confidence = REJECTED_CONFIDENCE

        logger.info("Recommendation reviewed",
                    recommendation_id=recommendation.get("id"),
                    approved=review.approved,
                    needs_more_data=review.needs_more_data,
                    issues=review.issues,
                    confidence=review.confidence)
        return review

    @staticmethod
    def is_valid_pattern(pattern: Any) -> bool:
        if not isinstance(pattern, Mapping):
            return False
        return all(name in pattern for name in REQUIRED_PATTERN_FIELDS)

    @staticmethod
    def has_safety_issues(recommendation: Mapping[str, Any]) -> bool:
        pattern = recommendation.get("pattern")
        selector = pattern.get("selector") if isinstance(pattern, Mapping) else None
        selector = str(selector or "").lower()
        return any(dangerous in selector for dangerous in DANGEROUS_SELECTORS)

    @staticmethod
    def check_alignment(recommendation: Mapping[str, Any]) -> bool:
        # Placeholder: project goal alignment is not evaluated yet.
        return True

    # -- recovery -------------------------------------------------------

    async def recover(self, stalled_agent: StallRecord) -> RecoveryResult:
        """Plan and run recovery actions for a stalled agent.

        Actions run in plan order. The first failing action ends the run and
        the result reports failure; actions that already ran are not undone.
        Never raises.
        """
        logger.warning("Critic agent triggering recovery",
                       agent_type=stalled_agent.agent_type,
                       source_id=stalled_agent.source_id,
                       current_task=stalled_agent.current_task,
                       time_since_update=stalled_agent.time_since_update)

        actions: List[RecoveryAction] = []
        try:
            actions = self.plan_recovery(stalled_agent)
            for action in actions:
                await self.execute_recovery_action(action, stalled_agent)
        except Exception as e:
            logger.error("Recovery failed",
                         agent_type=stalled_agent.agent_type,
                         source_id=stalled_agent.source_id,
                         error=str(e))
            return RecoveryResult(success=False, actions=actions, error=str(e))

        logger.info("Recovery completed successfully",
                    agent_type=stalled_agent.agent_type,
                    source_id=stalled_agent.source_id,
                    actions_taken=len(actions))
        return RecoveryResult(success=True, actions=actions)

    def plan_recovery(self, stalled_agent: StallRecord) -> List[RecoveryAction]:
        actions = [
            RecoveryAction(
                type=RecoveryActionType.RESET_AGENT_STATE.value,
                description="Clear agent state and restart",
                priority="high",
            )
        ]

        if stalled_agent.time_since_update > self.config.long_stall_minutes:
            actions.append(RecoveryAction(
                type=RecoveryActionType.UPDATE_CONFIGURATION.value,
                description="Update scraper configuration based on recent failures",
                priority="medium",
            ))

        actions.append(RecoveryAction(
            type=RecoveryActionType.SWITCH_FALLBACK.value,
            description="Switch to alternative scraping method",
            priority="high",
        ))
        return actions

    async def execute_recovery_action(self, action: RecoveryAction, stalled_agent: StallRecord):
        logger.info("Executing recovery action", **action.to_dict())

        if action.type == RecoveryActionType.RESET_AGENT_STATE:
            self.reset_agent_state(stalled_agent)
        elif action.type == RecoveryActionType.UPDATE_CONFIGURATION:
            await self._run_hook(self.configuration_updater, stalled_agent, "Configuration update triggered")
        elif action.type == RecoveryActionType.SWITCH_FALLBACK:
            await self._run_hook(self.fallback_switcher, stalled_agent, "Fallback method activated")
        else:
            logger.warning("Unknown recovery action type", action_type=action.type)

    def reset_agent_state(self, stalled_agent: StallRecord) -> int:
        """Delete lock artifacts belonging to the agent. Safe to repeat."""
        if not self.state_dir.exists():
            return 0

        prefix = f"agent_lock_{stalled_agent.agent_key}"
        removed = 0
        for lock_file in self.state_dir.glob("agent_lock_*"):
            # agent_lock_<key> or agent_lock_<key>.<suffix>, never another key sharing the prefix
            if lock_file.name != prefix and not lock_file.name.startswith(f"{prefix}."):
                continue
            lock_file.unlink(missing_ok=True)
            removed += 1

        logger.info("Agent state reset", agent_key=stalled_agent.agent_key, locks_removed=removed)
        return removed

    async def _run_hook(self, hook: Optional[RecoveryHook], stalled_agent: StallRecord, message: str):
        if hook is not None:
            result = hook(stalled_agent)
            if inspect.isawaitable(result):
                await result
        logger.info(message, agent_key=stalled_agent.agent_key)
