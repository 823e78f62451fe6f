from __future__ import annotations

import logging

import httpx
from opentelemetry import trace

from fia_docs.core.config import Settings
from fia_docs.schemas.series import Series
from fia_docs.services.feed_parser import FEED_BASE_URL, FeedExtraction, extract_feed

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class FeedFetchError(Exception):
    """Raised when a series listing page cannot be fetched."""


def feed_url_templates(settings: Settings) -> dict[Series, str]:
    return {
        Series.F1: settings.f1_feed_url,
        Series.F2: settings.f2_feed_url,
        Series.F3: settings.f3_feed_url,
    }


class FeedClient:
    def __init__(
        self,
        client: httpx.AsyncClient,
        url_templates: dict[Series, str],
        *,
        season_id: int,
        user_agent: str,
        base_url: str = FEED_BASE_URL,
    ) -> None:
        self.client = client
        self.url_templates = url_templates
        self.season_id = season_id
        self.headers = {"User-Agent": user_agent}
        self.base_url = base_url

    def feed_url(self, series: Series, year: int) -> str:
        return self.url_templates[series].format(year=year, season_id=self.season_id)

    async def fetch_feed(self, series: Series, year: int) -> bytes:
        url = self.feed_url(series, year)
        with tracer.start_as_current_span("feed.fetch") as span:
            span.set_attribute("http.url", url)
            span.set_attribute("fia.series", series.value)
            try:
                response = await self.client.get(url, headers=self.headers)
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                raise FeedFetchError(f"GET {url} failed: {exc}") from exc
            span.set_attribute("http.status_code", response.status_code)
            if not response.is_success:
                raise FeedFetchError(f"GET {url} returned {response.status_code}")
            return response.content

    async def fetch_season(self, series: Series, year: int) -> FeedExtraction:
        raw = await self.fetch_feed(series, year)
        with tracer.start_as_current_span("feed.parse") as span:
            extraction = extract_feed(raw, year, base_url=self.base_url)
            span.set_attribute("feed.events", len(extraction.events))
            span.set_attribute("feed.skipped", len(extraction.skipped))
        logger.info(
            "parsed feed series=%s year=%s events=%s skipped=%s",
            series.value,
            year,
            len(extraction.events),
            len(extraction.skipped),
        )
        return extraction
