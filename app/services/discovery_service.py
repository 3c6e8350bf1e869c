"""
Discovery: collect raw event listings from the configured scraper feeds.

Each feed is a JSON document holding either a list of events or an object
with an "events" list. A broken feed is logged and skipped; the others still
contribute.
"""

import asyncio
from typing import Any, Protocol
from urllib.parse import urlparse

import httpx

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class ScraperAggregator(Protocol):
    async def discover_all(self) -> list[dict[str, Any]]: ...


class FeedScraperAggregator:
    def __init__(
        self,
        feed_urls: list[str] | None = None,
        timeout_seconds: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.feed_urls = list(settings.SCRAPER_FEED_URLS if feed_urls is None else feed_urls)
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds or settings.SCRAPER_TIMEOUT_SECONDS),
            follow_redirects=True,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def discover_all(self) -> list[dict[str, Any]]:
        if not self.feed_urls:
            logger.info("No scraper feeds configured")
            return []

        batches = await asyncio.gather(*(self._fetch_feed(url) for url in self.feed_urls))
        events = [event for batch in batches for event in batch]
        logger.info("Discovery complete", feeds=len(self.feed_urls), events=len(events))
        return events

    async def _fetch_feed(self, url: str) -> list[dict[str, Any]]:
        source = urlparse(url).hostname or url
        try:
            response = await self._client.get(url, headers={"Accept": "application/json"})
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Scraper feed failed", feed=url, error=str(e))
            return []

        items = payload.get("events", []) if isinstance(payload, dict) else payload
        if not isinstance(items, list):
            logger.warning("Scraper feed has unexpected shape", feed=url)
            return []

        events = []
        for item in items:
            if not isinstance(item, dict):
                continue
            if not item.get("source") and not item.get("sources"):
                item = {**item, "source": source}
            events.append(item)

        logger.debug("Scraper feed fetched", feed=url, events=len(events))
        return events
