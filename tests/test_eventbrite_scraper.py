from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import httpx
import pytest

from event_monitoring.config import AgentMonitoringConfig, SourceConfig
from event_monitoring.scrapers import (
    EventbriteScraper,
    ScraperAgent,
    ScraperToolkit,
    TraceWriter,
    create_scraper,
)


SOURCE = SourceConfig(id="eb-1", name="Eventbrite Seattle", type="eventbrite")


def raw_event(title: str, **extra: Any) -> dict[str, Any]:
    return {
        "name": {"text": title},
        "description": {"text": f"{title} description"},
        "start": {"utc": "2025-06-01T17:00:00Z"},
        "end": {"utc": "2025-06-01T19:00:00Z"},
        "url": f"https://www.eventbrite.com/e/{title.lower().replace(' ', '-')}",
        **extra,
    }


class FakeEventbrite:
    """MockTransport handler answering location and category searches."""

    def __init__(self, location: Any, category: Any) -> None:
        self.location = location
        self.category = category
        self.calls: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/robots.txt":
            return httpx.Response(404)
        kind = "category" if "categories" in request.url.params else "location"
        self.calls.append(kind)
        answer = self.location if kind == "location" else self.category
        if isinstance(answer, int):
            return httpx.Response(answer, json={"error": "boom"})
        return httpx.Response(200, json={"events": answer})


def make_scraper(handler: FakeEventbrite, tmp_path: Path) -> tuple[EventbriteScraper, TraceWriter]:
    config = AgentMonitoringConfig(scraping_delay_ms=0, traces_directory=str(tmp_path / "traces"))
    toolkit = ScraperToolkit(config=config, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    traces = TraceWriter(config.traces_directory)
    return EventbriteScraper(SOURCE, toolkit, traces=traces, config=config), traces


def only_trace(traces: TraceWriter) -> dict[str, Any]:
    files = traces.list_traces("eb-1")
    assert len(files) == 1
    return json.loads(files[0].read_text(encoding="utf-8"))


@pytest.mark.asyncio
async def test_enough_primary_results_skip_category_search(tmp_path: Path) -> None:
    handler = FakeEventbrite(location=[raw_event(f"Event {i}") for i in range(5)], category=[])
    scraper, traces = make_scraper(handler, tmp_path)

    events = await scraper.scrape()

    assert len(events) == 5
    assert handler.calls == ["location"]
    trace = only_trace(traces)
    assert [a["method"] for a in trace["attempts"]] == ["search_by_location"]
    assert trace["success"] is True
    assert trace["errorCount"] == 0
    assert len(trace["results"]) == 5


@pytest.mark.asyncio
async def test_few_primary_results_append_category_results(tmp_path: Path) -> None:
    handler = FakeEventbrite(
        location=[raw_event("Park Day"), raw_event("Zoo Walk")],
        category=[raw_event("Story Time")],
    )
    scraper, traces = make_scraper(handler, tmp_path)

    events = await scraper.scrape()

    assert [e.title for e in events] == ["Park Day", "Zoo Walk", "Story Time"]
    assert handler.calls == ["location", "category"]
    trace = only_trace(traces)
    assert [a["method"] for a in trace["attempts"]] == ["search_by_location", "search_by_category"]
    assert [a["count"] for a in trace["attempts"]] == [2, 1]


@pytest.mark.asyncio
async def test_failed_primary_does_not_abort_category_search(tmp_path: Path) -> None:
    handler = FakeEventbrite(location=500, category=[raw_event("Story Time")])
    scraper, traces = make_scraper(handler, tmp_path)

    events = await scraper.scrape()

    assert [e.title for e in events] == ["Story Time"]
    trace = only_trace(traces)
    assert trace["errorCount"] == 1
    assert trace["attempts"][0]["success"] is False
    assert "500" in trace["attempts"][0]["error"]
    assert trace["attempts"][1]["success"] is True


@pytest.mark.asyncio
async def test_empty_but_successful_searches_return_no_events(tmp_path: Path) -> None:
    handler = FakeEventbrite(location=[], category=[])
    scraper, traces = make_scraper(handler, tmp_path)

    assert await scraper.scrape() == []
    trace = only_trace(traces)
    assert trace["success"] is False
    assert trace["errorCount"] == 0


@pytest.mark.asyncio
async def test_fully_failing_scrape_is_traced_then_raised(tmp_path: Path) -> None:
    handler = FakeEventbrite(location=503, category=502)
    scraper, traces = make_scraper(handler, tmp_path)

    with pytest.raises(httpx.HTTPStatusError) as excinfo:
        await scraper.scrape()

    assert excinfo.value.response.status_code == 502
    trace = only_trace(traces)
    assert trace["results"] == []
    assert trace["success"] is False
    assert trace["errorCount"] == 2


@pytest.mark.asyncio
async def test_escaping_exception_records_single_failed_attempt(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    handler = FakeEventbrite(location=[], category=[])
    scraper, traces = make_scraper(handler, tmp_path)

    async def explode() -> None:
        raise RuntimeError("bookkeeping broke")

    monkeypatch.setattr(scraper, "search_events_by_location", explode)

    with pytest.raises(RuntimeError, match="bookkeeping broke"):
        await scraper.scrape()

    trace = only_trace(traces)
    assert len(trace["attempts"]) == 1
    assert trace["attempts"][0]["method"] == "eventbrite_api"
    assert trace["attempts"][0]["error"] == "bookkeeping broke"
    assert trace["errorCount"] == 1
    assert trace["results"] == []


def test_event_normalization(tmp_path: Path) -> None:
    scraper, _ = make_scraper(FakeEventbrite(location=[], category=[]), tmp_path)
    raw = raw_event(
        "Kids Craft Fair",
        category_id="110",
        is_free=False,
        ticket_availability={
            "minimum_ticket_price": {"major_value": "5.00"},
            "maximum_ticket_price": {"major_value": "12.50"},
        },
        venue={
            "name": "Community Hall",
            "address": {"address_1": "1 Main St", "city": "Seattle", "region": "WA", "postal_code": "98101"},
        },
        logo={"url": "https://img.example/logo.png"},
    )

    event = scraper.parse_eventbrite_event(raw)

    assert event.title == "Kids Craft Fair"
    assert event.category == "Kids"
    assert event.start_datetime == "2025-06-01T17:00:00+00:00"
    assert event.location_name == "Community Hall"
    assert event.location_address == "1 Main St, Seattle, WA, 98101"
    assert event.price_min == 5.0
    assert event.price_max == 12.5
    assert event.image_url == "https://img.example/logo.png"
    assert event.source_id == "eb-1"
    assert event.raw_data is raw


def test_event_normalization_defaults(tmp_path: Path) -> None:
    scraper, _ = make_scraper(FakeEventbrite(location=[], category=[]), tmp_path)

    event = scraper.parse_eventbrite_event({"is_free": True, "category_id": "999"})

    assert event.title == "Untitled Event"
    assert event.location_name == "TBD"
    assert event.location_address == ""
    assert event.category == "General"
    assert event.start_datetime is None
    assert event.is_free is True
    assert event.price_min == 0
    assert event.age_group == "all"


def test_scraper_contract_must_be_overridden(tmp_path: Path) -> None:
    config = AgentMonitoringConfig(traces_directory=str(tmp_path))
    toolkit = ScraperToolkit(config=config, client=httpx.AsyncClient())

    with pytest.raises(TypeError):
        ScraperAgent(SOURCE, toolkit)  # type: ignore[abstract]


@pytest.mark.asyncio
async def test_base_scrape_raises_not_implemented(tmp_path: Path) -> None:
    class Delegating(ScraperAgent):
        async def scrape(self):
            return await super().scrape()

    config = AgentMonitoringConfig(traces_directory=str(tmp_path))
    agent = Delegating(SOURCE, ScraperToolkit(config=config, client=httpx.AsyncClient()))

    with pytest.raises(NotImplementedError):
        await agent.scrape()


def test_create_scraper_by_source_type(tmp_path: Path) -> None:
    config = AgentMonitoringConfig(traces_directory=str(tmp_path))
    toolkit = ScraperToolkit(config=config, client=httpx.AsyncClient())

    assert isinstance(create_scraper(SOURCE, toolkit, config=config), EventbriteScraper)
    with pytest.raises(ValueError):
        create_scraper(SourceConfig(id="x", name="X", type="meetup"), toolkit, config=config)


@pytest.mark.asyncio
async def test_each_attempt_reports_progress(tmp_path: Path) -> None:
    handler = FakeEventbrite(location=[raw_event("Park Day")], category=[raw_event("Story Time")])
    scraper, _ = make_scraper(handler, tmp_path)
    reported: list[str] = []
    scraper.progress_listener = reported.append

    await scraper.scrape()

    assert reported == ["search_by_location", "search_by_category"]
    assert scraper.current_task == "search_by_category"
