from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Protocol, Sequence

from opentelemetry import trace

from fia_docs.core.cancellation import StopToken
from fia_docs.core.telemetry import report_exception
from fia_docs.jobs.pipeline import DocumentPipeline, DownloadError
from fia_docs.schemas.entities import Event, EventStatus
from fia_docs.schemas.series import SERIES_ORDER, Series
from fia_docs.services.cache import LocalCache
from fia_docs.services.feed_client import FeedFetchError
from fia_docs.services.feed_parser import FeedDocument, FeedEvent, FeedExtraction
from fia_docs.services.renderer import RenderError
from fia_docs.services.repository import DocumentRepository
from fia_docs.services.scratch import ScratchIOError, clear_scratch_dir
from fia_docs.services.storage_client import UploadError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# Failures that end only the current document; anything else escapes the document loop.
DOCUMENT_ERRORS = (DownloadError, UploadError, RenderError, ScratchIOError)


class FeedSource(Protocol):
    async def fetch_season(self, series: Series, year: int) -> FeedExtraction: ...


@dataclass(slots=True)
class CycleReport:
    year: int
    events_created: int = 0
    documents_processed: int = 0
    documents_skipped: int = 0
    documents_failed: int = 0
    candidates_skipped: int = 0
    series_failed: list[Series] = field(default_factory=list)
    stopped: bool = False


def compute_cycle_delay(elapsed: float, interval: float, floor: float) -> float:
    """Delay before the next cycle: the rest of ``interval``, never less than ``floor``."""
    return max(interval - elapsed, floor)


def current_year() -> int:
    return datetime.now(timezone.utc).year


class IngestionRunner:
    def __init__(
        self,
        *,
        repository: DocumentRepository,
        cache: LocalCache,
        feeds: FeedSource,
        pipeline: DocumentPipeline,
        scratch_dir: Path,
        stop_token: StopToken,
        series_order: Sequence[Series] = SERIES_ORDER,
    ) -> None:
        self.repository = repository
        self.cache = cache
        self.feeds = feeds
        self.pipeline = pipeline
        self.scratch_dir = scratch_dir
        self.stop_token = stop_token
        self.series_order = tuple(series_order)

    async def run_forever(
        self,
        *,
        interval_seconds: float,
        min_delay_seconds: float,
        year_provider: Callable[[], int] = current_year,
        clock: Callable[[], float] = time.monotonic,
        max_cycles: int | None = None,
    ) -> int:
        """Run cycles until the stop token is set; returns the number of cycles started."""
        cycles = 0
        while not self.stop_token.is_set():
            started_at = clock()
            cycles += 1
            try:
                report = await self.run_cycle(year_provider())
            except Exception as exc:  # cycle-fatal; the next cycle is the retry
                logger.exception("ingestion cycle failed: %s", exc)
            else:
                _log_report(report)

            if max_cycles is not None and cycles >= max_cycles:
                break
            delay = compute_cycle_delay(clock() - started_at, interval_seconds, min_delay_seconds)
            logger.info("next cycle in %.1fs", delay)
            if await self.stop_token.wait(delay):
                break
        logger.info("ingester stopped after %s cycles reason=%s", cycles, self.stop_token.reason)
        return cycles

    async def run_cycle(self, year: int) -> CycleReport:
        report = CycleReport(year=year)
        # Errors escaping this span are recorded on it by the tracer before propagating.
        with tracer.start_as_current_span("ingester.cycle") as span:
            span.set_attribute("fia.year", year)
            await self.cache.populate(self.repository, year)
            for series in self.series_order:
                if self.stop_token.is_set():
                    report.stopped = True
                    break
                await self._run_series(series, year, report)
        return report

    async def _run_series(self, series: Series, year: int, report: CycleReport) -> None:
        with tracer.start_as_current_span("ingester.series") as span:
            span.set_attribute("fia.series", series.value)
            try:
                extraction = await self.feeds.fetch_season(series, year)
            except FeedFetchError as exc:
                logger.warning("skipping series=%s: %s", series.value, exc)
                report_exception(exc)
                report.series_failed.append(series)
                return

            report.candidates_skipped += len(extraction.skipped)
            for feed_event in extraction.events:
                if self.stop_token.is_set():
                    report.stopped = True
                    return
                await self._run_event(series, feed_event, report)

    async def _run_event(self, series: Series, feed_event: FeedEvent, report: CycleReport) -> None:
        with tracer.start_as_current_span("ingester.event") as span:
            span.set_attribute("fia.event", feed_event.title)
            event = await self._resolve_event(series, feed_event, report)

            for index, entry in enumerate(feed_event.documents):
                if self.stop_token.is_set():
                    report.stopped = True
                    break
                await self._run_document(event, entry, index, report)

            clear_scratch_dir(self.scratch_dir)

    async def _resolve_event(self, series: Series, feed_event: FeedEvent, report: CycleReport) -> Event:
        with tracer.start_as_current_span("cache.get") as span:
            span.set_attribute("cache.backend", "memory")
            span.set_attribute("cache.key", feed_event.title)
            cached = self.cache.find_event(feed_event.title, feed_event.year, series)
            span.set_attribute("cache.hit", cached is not None)
            if cached is not None:
                return cached

        event = await self.repository.create_event(
            title=feed_event.title,
            year=feed_event.year,
            series=series,
            status=EventStatus.NOT_ALLOWED,
        )
        self.cache.add_event(event)
        report.events_created += 1
        logger.info("inserted event id=%s title=%r series=%s", event.id, event.title, series.value)
        return event

    async def _run_document(self, event: Event, entry: FeedDocument, index: int, report: CycleReport) -> None:
        with tracer.start_as_current_span("cache.get") as span:
            span.set_attribute("cache.backend", "memory")
            span.set_attribute("cache.key", entry.url)
            seen = self.cache.has_document(entry.url)
            span.set_attribute("cache.hit", seen)
        if seen:
            report.documents_skipped += 1
            return

        try:
            await self.pipeline.process(
                event,
                entry,
                name_prefix=f"doc_{index}",
                on_persisted=self.cache.add_document,
            )
        except DOCUMENT_ERRORS as exc:
            report.documents_failed += 1
            logger.warning("document failed event=%r url=%s: %s", event.title, entry.url, exc)
            report_exception(exc, **{"fia.document_url": entry.url})
            return
        report.documents_processed += 1


def _log_report(report: CycleReport) -> None:
    logger.info(
        "cycle done year=%s events_created=%s documents_processed=%s documents_skipped=%s "
        "documents_failed=%s candidates_skipped=%s series_failed=%s stopped=%s",
        report.year,
        report.events_created,
        report.documents_processed,
        report.documents_skipped,
        report.documents_failed,
        report.candidates_skipped,
        ",".join(series.value for series in report.series_failed) or "-",
        report.stopped,
    )
