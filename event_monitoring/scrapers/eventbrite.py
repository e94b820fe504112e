"""Eventbrite search API scraper."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from .base import ScraperAgent
from .events import Event
from .traces import Attempt


CATEGORY_MAP = {
    "103": "Family",
    "110": "Kids",
    "113": "Community",
    "104": "Music",
    "105": "Sports",
    "106": "Technology",
}


def _api_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class EventbriteScraper(ScraperAgent):
    """Searches Eventbrite around the configured location.

    The location search always runs. When it returns fewer than
    ``min_primary_results`` events a category search for family oriented
    events runs as well and its events are appended.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.settings = self.config.eventbrite

    async def scrape(self) -> List[Event]:
        attempts: List[Attempt] = []
        results: List[Event] = []

        try:
            self.logger.info("Starting Eventbrite scrape", source_name=self.source.name)

            primary = await self.search_events_by_location()
            attempts.append(primary)
            if primary.success and primary.events:
                results.extend(primary.events)

            if len(results) < self.settings.min_primary_results:
                secondary = await self.search_events_by_category()
                attempts.append(secondary)
                if secondary.success and secondary.events:
                    results.extend(secondary.events)

        except Exception as e:
            self.logger.error("Eventbrite scrape failed", error=str(e))
            failed = Attempt(method="eventbrite_api").fail(e)
            self.record_trace([failed], [])
            raise

        self.record_trace(attempts, results)

        if not any(a.success for a in attempts):
            self.logger.error("Eventbrite scrape failed, every attempt errored", attempts=len(attempts))
            raise attempts[-1].exception

        self.logger.info("Eventbrite scrape completed", events=len(results))
        return results

    async def search_events_by_location(self) -> Attempt:
        return await self._search("search_by_location", {})

    async def search_events_by_category(self) -> Attempt:
        return await self._search("search_by_category", {"categories": self.settings.categories})

    async def _search(self, method: str, extra_params: Dict[str, Any]) -> Attempt:
        attempt = Attempt(method=method)
        self.report_progress(method)
        now = datetime.now(timezone.utc)
        params = {
            "location.address": self.settings.location_address,
            "location.within": self.settings.location_within,
            **extra_params,
            "start_date.range_start": _api_timestamp(now),
            "start_date.range_end": _api_timestamp(now + timedelta(days=self.settings.date_range_days)),
            "expand": "venue",
            "token": self.settings.api_key,
        }

        try:
            response = await self.toolkit.request(f"{self.settings.base_url}/events/search/", params=params)
            payload = response.json()
            events = self.parse_eventbrite_events(payload.get("events") or [])
        except Exception as e:
            self.logger.warning("Eventbrite attempt failed", method=method, error=str(e))
            return attempt.fail(e)

        self.logger.info("Eventbrite attempt succeeded", method=method, events=len(events))
        return attempt.succeed(events)

    def parse_eventbrite_events(self, raw_events: List[Dict[str, Any]]) -> List[Event]:
        return [self.parse_eventbrite_event(raw) for raw in raw_events]

    def parse_eventbrite_event(self, raw: Dict[str, Any]) -> Event:
        is_free = bool(raw.get("is_free"))
        tickets = raw.get("ticket_availability") or {}
        venue = raw.get("venue")

        return Event(
            title=(raw.get("name") or {}).get("text") or "Untitled Event",
            description=(raw.get("description") or {}).get("text") or "",
            start_datetime=self._parse_eventbrite_date((raw.get("start") or {}).get("utc")),
            end_datetime=self._parse_eventbrite_date((raw.get("end") or {}).get("utc")),
            location_name=(venue or {}).get("name") or "TBD",
            location_address=self.format_address(venue),
            category=CATEGORY_MAP.get(str(raw.get("category_id")), "General"),
            age_group="all",
            is_free=is_free,
            price_min=0 if is_free else self._ticket_price(tickets, "minimum_ticket_price"),
            price_max=0 if is_free else self._ticket_price(tickets, "maximum_ticket_price"),
            registration_url=raw.get("url") or "",
            image_url=(raw.get("logo") or {}).get("url") or "",
            source_id=self.source.id,
            raw_data=raw,
        )

    def _parse_eventbrite_date(self, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        return self.toolkit.parse_date(value)

    @staticmethod
    def _ticket_price(tickets: Dict[str, Any], key: str) -> float:
        value = (tickets.get(key) or {}).get("major_value")
        try:
            return float(value) if value else 0
        except (TypeError, ValueError):
            return 0

    @staticmethod
    def format_address(venue: Optional[Dict[str, Any]]) -> str:
        if not venue:
            return ""
        address = venue.get("address") or {}
        parts = [
            address.get("address_1"),
            address.get("address_2"),
            address.get("city"),
            address.get("region"),
            address.get("postal_code"),
        ]
        return ", ".join(p for p in parts if p)
