from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from opentelemetry import trace

from fia_docs.schemas.entities import Document, Event
from fia_docs.schemas.series import Series
from fia_docs.services.repository import DocumentRepository

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

EventKey = tuple[str, int, Series]


class LocalCache:
    """Process-local snapshot of this year's events and documents used for dedup.

    Events are reloaded on every ``populate``; documents at most once per
    ``document_refresh_interval`` (or when the year changes) to bound store load.
    Rows created by the runner are written through with ``add_event`` and
    ``add_document`` so the snapshot stays current between document refreshes.
    """

    def __init__(self, document_refresh_interval: timedelta = timedelta(days=1)) -> None:
        self.document_refresh_interval = document_refresh_interval
        self.events: dict[EventKey, Event] = {}
        self.document_urls: set[str] = set()
        self.year: int | None = None
        self.documents_refreshed_at: datetime | None = None

    async def populate(self, repository: DocumentRepository, year: int, *, now: datetime | None = None) -> None:
        current = now or datetime.now(timezone.utc)
        refresh_documents = self._documents_stale(year, current)

        with tracer.start_as_current_span("cache.populate") as span:
            span.set_attribute("cache.backend", "memory")
            span.set_attribute("cache.year", year)
            span.set_attribute("cache.refresh_documents", refresh_documents)
            # Load everything before touching state: a failed read leaves the old snapshot intact.
            events = await repository.list_events(year)
            documents = await repository.list_documents(year) if refresh_documents else None

            self.events = {self._key(event.title, event.year, event.series): event for event in events}
            if documents is not None:
                self.document_urls = {document.href for document in documents}
                self.documents_refreshed_at = current
            self.year = year
            span.set_attribute("cache.events", len(self.events))
            span.set_attribute("cache.documents", len(self.document_urls))

        logger.info(
            "cache populated year=%s events=%s documents=%s documents_refreshed=%s",
            year,
            len(self.events),
            len(self.document_urls),
            refresh_documents,
        )

    def find_event(self, title: str, year: int, series: Series) -> Event | None:
        return self.events.get(self._key(title, year, series))

    def has_document(self, url: str) -> bool:
        return url in self.document_urls

    def add_event(self, event: Event) -> None:
        self.events[self._key(event.title, event.year, event.series)] = event

    def add_document(self, document: Document) -> None:
        self.document_urls.add(document.href)

    def clear(self) -> None:
        self.events = {}
        self.document_urls = set()
        self.year = None
        self.documents_refreshed_at = None

    def _documents_stale(self, year: int, now: datetime) -> bool:
        if self.documents_refreshed_at is None or self.year != year:
            return True
        return now - self.documents_refreshed_at >= self.document_refresh_interval

    @staticmethod
    def _key(title: str, year: int, series: Series) -> EventKey:
        return (title, year, series)
