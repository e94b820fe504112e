from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from event_monitoring.agents import CriticAgent, RecoveryAction, RecoveryActionType
from event_monitoring.config import AgentMonitoringConfig
from event_monitoring.heartbeat import HeartbeatRecord, HeartbeatStatus, StallRecord


def recommendation(**overrides: Any) -> dict[str, Any]:
    rec: dict[str, Any] = {
        "id": "rec-1",
        "confidence_score": 0.9,
        "success_count": 15,
        "pattern": {"selector": ".event-card h2", "method": "css", "fallback": ".event h2"},
    }
    rec.update(overrides)
    return rec


def stall(minutes: int, source_id: str = "eb-1") -> StallRecord:
    record = HeartbeatRecord(
        agent_type="scraper",
        source_id=source_id,
        current_task="scraping",
        status=HeartbeatStatus.RUNNING,
        timestamp=datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc),
    )
    return StallRecord(record=record, time_since_update=minutes)


@pytest.fixture
def critic(tmp_path: Path) -> CriticAgent:
    return CriticAgent(config=AgentMonitoringConfig(state_directory=str(tmp_path)))


def test_confident_well_formed_recommendation_is_approved(critic: CriticAgent) -> None:
    rec = recommendation()

    review = critic.review_single_recommendation(rec)
    result = critic.review([rec])

    assert review.approved is True
    assert review.confidence == 0.9
    assert review.issues == []
    assert result.approved == [rec]
    assert result.rejected == [] and result.needs_more_data == []


@pytest.mark.parametrize(
    "overrides",
    [
        {"confidence_score": 0.5},
        {"success_count": 3},
        {"confidence_score": 0.2, "success_count": 1},
    ],
)
def test_low_confidence_or_few_samples_need_more_data(critic: CriticAgent, overrides: dict[str, Any]) -> None:
    rec = recommendation(**overrides)

    review = critic.review_single_recommendation(rec)

    assert review.needs_more_data is True
    assert review.approved is False
    assert review.confidence == 0.3
    assert critic.review([rec]).needs_more_data == [rec]


@pytest.mark.parametrize("confidence", [0.95, 0.4])
def test_pattern_missing_fallback_is_rejected(critic: CriticAgent, confidence: float) -> None:
    rec = recommendation(confidence_score=confidence, pattern={"selector": ".a", "method": "css"})

    review = critic.review_single_recommendation(rec)

    assert review.approved is False
    assert review.needs_more_data is False
    assert review.confidence == 0.1
    assert "Invalid pattern structure" in review.issues
    assert critic.review([rec]).rejected == [rec]


@pytest.mark.parametrize("selector", ["div > iframe", "IFRAME.embed-frame", "Script[src]", "object", "EMBED"])
def test_dangerous_selectors_are_rejected(critic: CriticAgent, selector: str) -> None:
    rec = recommendation(pattern={"selector": selector, "method": "css", "fallback": ".x"})

    review = critic.review_single_recommendation(rec)

    assert review.confidence == 0.1
    assert "Safety issues detected" in review.issues
    assert critic.review([rec]).rejected == [rec]


def test_missing_pattern_is_rejected(critic: CriticAgent) -> None:
    rec = recommendation()
    del rec["pattern"]

    assert critic.review([rec]).rejected == [rec]


def test_missing_scores_need_more_data(critic: CriticAgent) -> None:
    rec = {"id": "bare", "pattern": {"selector": ".a", "method": "css", "fallback": ".b"}}

    assert critic.review([rec]).needs_more_data == [rec]


def test_review_partitions_batch_exactly(critic: CriticAgent) -> None:
    batch = [
        recommendation(id="ok"),
        recommendation(id="thin", success_count=2),
        recommendation(id="unsafe", pattern={"selector": "iframe", "method": "css", "fallback": ".b"}),
        recommendation(id="broken", pattern={"selector": ".a"}),
        recommendation(id="ok-2", confidence_score=0.7, success_count=10),
    ]

    result = critic.review(batch)

    assert [r["id"] for r in result.approved] == ["ok", "ok-2"]
    assert [r["id"] for r in result.needs_more_data] == ["thin"]
    assert [r["id"] for r in result.rejected] == ["unsafe", "broken"]
    assert len(result.approved) + len(result.needs_more_data) + len(result.rejected) == len(batch)
    assert result.to_dict()["timestamp"] == result.timestamp


def test_long_stall_plan_includes_configuration_update(critic: CriticAgent) -> None:
    actions = critic.plan_recovery(stall(15))

    assert [a.type for a in actions] == ["reset_agent_state", "update_configuration", "switch_fallback"]
    assert [a.priority for a in actions] == ["high", "medium", "high"]


@pytest.mark.parametrize("minutes", [3, 10])
def test_short_stall_plan_skips_configuration_update(critic: CriticAgent, minutes: int) -> None:
    actions = critic.plan_recovery(stall(minutes))

    assert [a.type for a in actions] == ["reset_agent_state", "switch_fallback"]


@pytest.mark.asyncio
async def test_recover_runs_actions_in_order_and_calls_collaborators(tmp_path: Path) -> None:
    calls: list[str] = []

    async def update_configuration(s: StallRecord) -> None:
        calls.append(f"configure:{s.agent_key}")

    def switch_fallback(s: StallRecord) -> None:
        calls.append(f"fallback:{s.agent_key}")

    (tmp_path / "agent_lock_scraper_eb-1").write_text("1")
    (tmp_path / "agent_lock_scraper_eb-1.pid").write_text("1")
    (tmp_path / "agent_lock_scraper_eb-10").write_text("1")

    critic = CriticAgent(
        config=AgentMonitoringConfig(state_directory=str(tmp_path)),
        configuration_updater=update_configuration,
        fallback_switcher=switch_fallback,
    )

    result = await critic.recover(stall(15))

    assert result.success is True
    assert result.error is None
    assert [a.type for a in result.actions] == ["reset_agent_state", "update_configuration", "switch_fallback"]
    assert calls == ["configure:scraper_eb-1", "fallback:scraper_eb-1"]
    assert sorted(p.name for p in tmp_path.iterdir()) == ["agent_lock_scraper_eb-10"]

    again = await critic.recover(stall(15))
    assert again.success is True


@pytest.mark.asyncio
async def test_failing_action_reports_failure_without_rollback(tmp_path: Path) -> None:
    calls: list[str] = []

    def update_configuration(s: StallRecord) -> None:
        calls.append("configure")
        raise RuntimeError("config service down")

    def switch_fallback(s: StallRecord) -> None:
        calls.append("fallback")

    (tmp_path / "agent_lock_scraper_eb-1").write_text("1")
    critic = CriticAgent(
        config=AgentMonitoringConfig(state_directory=str(tmp_path)),
        configuration_updater=update_configuration,
        fallback_switcher=switch_fallback,
    )

    result = await critic.recover(stall(20))

    assert result.success is False
    assert result.error == "config service down"
    assert calls == ["configure"]
    assert not (tmp_path / "agent_lock_scraper_eb-1").exists()


@pytest.mark.asyncio
async def test_unknown_action_type_is_skipped(critic: CriticAgent, monkeypatch: pytest.MonkeyPatch) -> None:
    def plan(_stall: StallRecord) -> list[RecoveryAction]:
        return [
            RecoveryAction(type="reboot_host", description="not supported", priority="high"),
            RecoveryAction(type=RecoveryActionType.SWITCH_FALLBACK.value, description="fallback", priority="high"),
        ]

    monkeypatch.setattr(critic, "plan_recovery", plan)

    result = await critic.recover(stall(6))

    assert result.success is True
    assert [a.type for a in result.actions] == ["reboot_host", "switch_fallback"]


def test_alignment_check_is_permissive(critic: CriticAgent) -> None:
    assert critic.check_alignment({}) is True
