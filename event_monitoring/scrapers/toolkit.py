"""Shared primitives every scraper agent uses: rate limiting, robots.txt
compliance, HTTP fetches and forgiving extraction helpers."""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

import httpx
import structlog
from bs4 import BeautifulSoup

from ..config import AgentMonitoringConfig, get_config


logger = structlog.get_logger(__name__)


class ScraperError(Exception):
    """Base error for scraper agents."""


class RobotsDisallowedError(ScraperError):
    """robots.txt refuses access to the requested host."""


class RateLimiter:
    """Enforces a minimum delay between consecutive requests."""

    def __init__(self, delay_ms: int):
        self.delay_ms = delay_ms
        self.last_request_time: Optional[float] = None

    async def wait(self):
        if self.last_request_time is not None:
            elapsed_ms = (time.monotonic() - self.last_request_time) * 1000
            if elapsed_ms < self.delay_ms:
                wait_ms = self.delay_ms - elapsed_ms
                logger.info("Rate limiting", wait_ms=round(wait_ms))
                await asyncio.sleep(wait_ms / 1000)
        self.last_request_time = time.monotonic()


class ScraperToolkit:
    """Per-agent helpers injected into each scraper.

    One toolkit belongs to one agent instance, so the rate limit applies per
    agent. The HTTP client may be shared.
    """

    def __init__(
        self,
        config: Optional[AgentMonitoringConfig] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.config = config or get_config()
        self.client = client or httpx.AsyncClient(follow_redirects=True)
        self._owns_client = client is None
        self.rate_limiter = RateLimiter(self.config.scraping_delay_ms)
        self.default_headers = {
            "User-Agent": self.config.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.5",
            "Accept-Encoding": "gzip, deflate",
        }

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        if self._owns_client:
            await self.client.aclose()

    async def rate_limit(self):
        await self.rate_limiter.wait()

    async def check_robots_txt(self, url: str) -> bool:
        """Coarse robots.txt check.

        Refuses only when the file is reachable and contains ``disallow: /``
        (case-insensitive substring). Anything else, including an unreachable
        file, is allowed.
        """
        parts = urlsplit(url)
        robots_url = f"{parts.scheme}://{parts.netloc}/robots.txt"
        try:
            response = await self.client.get(
                robots_url,
                headers={"User-Agent": self.config.user_agent},
                timeout=self.config.robots_timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Could not fetch robots.txt", url=url, error=str(e))
            return True

        if "disallow: /" in response.text.lower():
            logger.warning("Robots.txt may restrict access", url=url)
            return False
        return True

    async def request(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> httpx.Response:
        """Rate limited, robots checked GET. Errors propagate, no retry."""
        await self.rate_limit()

        try:
            if not await self.check_robots_txt(url):
                raise RobotsDisallowedError(f"Robots.txt disallows scraping {url}")

            response = await self.client.get(
                url,
                params=params,
                headers={**self.default_headers, **(headers or {})},
                timeout=self.config.request_timeout,
            )
            response.raise_for_status()
            return response
        except (httpx.HTTPError, ScraperError) as e:
            logger.error("Request failed", url=url, error=str(e))
            raise

    @staticmethod
    def parse_html(html: str) -> BeautifulSoup:
        return BeautifulSoup(html, "html.parser")

    def extract_text(self, doc: BeautifulSoup, selector: str, default: str = "") -> str:
        try:
            element = doc.select_one(selector)
            return element.get_text(strip=True) if element is not None else default
        except Exception as e:
            logger.warning("Failed to extract text", selector=selector, error=str(e))
            return default

    def extract_attribute(self, doc: BeautifulSoup, selector: str, attribute: str, default: str = "") -> str:
        try:
            element = doc.select_one(selector)
            if element is None:
                return default
            value = element.get(attribute)
            if isinstance(value, list):
                value = " ".join(value)
            return value or default
        except Exception as e:
            logger.warning("Failed to extract attribute",
                           selector=selector,
                           attribute=attribute,
                           error=str(e))
            return default

    def parse_date(self, value: Any) -> Optional[str]:
        """ISO-8601 UTC string for ``value`` or None when it cannot be parsed."""
        try:
            if isinstance(value, datetime):
                parsed = value
            else:
                parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc).isoformat()
        except (TypeError, ValueError) as e:
            logger.warning("Failed to parse date", value=value, error=str(e))
            return None
