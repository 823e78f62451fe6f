from __future__ import annotations

import html
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import httpx

from fia_docs.core.cancellation import StopToken
from fia_docs.core.signing import ObjectStorageSigner, SigningCredentials
from fia_docs.jobs.pipeline import DocumentPipeline
from fia_docs.jobs.runner import IngestionRunner
from fia_docs.schemas.entities import Document, DocumentStatus, Event, EventStatus, Image
from fia_docs.schemas.series import Series
from fia_docs.services.cache import LocalCache
from fia_docs.services.feed_client import FeedClient
from fia_docs.services.renderer import RenderError
from fia_docs.services.repository import RepositoryError
from fia_docs.services.storage_client import ObjectStorageClient

STORAGE_BASE_URL = "https://storage.test"
FEED_TEMPLATES = {series: f"https://feeds.test/{series.value}/{{year}}" for series in Series}
SEASON_NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
EMPTY_FEED = b"<html><body><div class='decision-document-list'></div></body></html>"

FeedSpec = list[tuple[str | None, list[tuple[str | None, str | None]]]]


def feed_html(events: FeedSpec) -> bytes:
    """Render a listing page shaped like the federation's document listing."""
    blocks: list[str] = []
    for event_title, documents in events:
        rows: list[str] = []
        for index, (doc_title, href) in enumerate(documents):
            href_attr = f' href="{html.escape(href)}"' if href is not None else ""
            title_div = f'<div class="title">\n  {html.escape(doc_title)}\n</div>' if doc_title is not None else ""
            rows.append(
                f'<li class="document-row key-{index}"><a{href_attr}>{title_div}'
                '<div class="published"><span class="date-display-single">01.03.25 10:00</span></div></a></li>'
            )
        blocks.append(
            f'<li><div class="event-title active">{html.escape(event_title or "")}</div>'
            f'<ul class="document-row-wrapper">{"".join(rows)}</ul></li>'
        )
    page = (
        "<!DOCTYPE html><html><head><title>Documents</title></head><body>"
        '<div class="decision-document-list"><ul class="event-wrapper">'
        + "".join(blocks)
        + "</ul></div></body></html>"
    )
    return page.encode("utf-8")


class FakeRepository:
    def __init__(self, now: datetime = SEASON_NOW) -> None:
        self.now = now
        self.events: list[Event] = []
        self.documents: list[Document] = []
        self.images: list[Image] = []
        self.writes = 0
        self.calls: list[str] = []
        self.failures: dict[str, Exception] = {}

    def fail_once(self, operation: str, exc: Exception | None = None) -> None:
        self.failures[operation] = exc or RepositoryError(f"{operation} failed")

    def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        failure = self.failures.pop(operation, None)
        if failure is not None:
            raise failure

    async def create_event(self, *, title: str, year: int, series: Series, status: EventStatus) -> Event:
        self._enter("create_event")
        self.writes += 1
        for event in self.events:
            if (event.title, event.year, event.series) == (title, year, series):
                return event
        event = Event(id=len(self.events) + 1, title=title, year=year, series=series, status=status, created_at=self.now)
        self.events.append(event)
        return event

    async def create_document(self, *, event_id: int, title: str, href: str, mirror: str) -> Document:
        self._enter("create_document")
        self.writes += 1
        document = Document(
            id=len(self.documents) + 1,
            event_id=event_id,
            title=title,
            href=href,
            mirror=mirror,
            status=DocumentStatus.INITIAL,
            created_at=self.now,
        )
        self.documents.append(document)
        return document

    async def create_image(self, *, document_id: int, page_number: int, url: str) -> Image:
        self._enter("create_image")
        self.writes += 1
        image = Image(id=len(self.images) + 1, document_id=document_id, page_number=page_number, url=url)
        self.images.append(image)
        return image

    async def update_document_status(self, document_id: int, status: DocumentStatus) -> None:
        self._enter("update_document_status")
        self.writes += 1
        self.documents = [
            document.model_copy(update={"status": status}) if document.id == document_id else document
            for document in self.documents
        ]

    async def list_events(self, year: int) -> list[Event]:
        self._enter("list_events")
        return [event for event in self.events if event.year == year]

    async def list_documents(self, year: int) -> list[Document]:
        self._enter("list_documents")
        return [document for document in self.documents if document.created_at.year == year]

    def document(self, document_id: int) -> Document:
        return next(document for document in self.documents if document.id == document_id)

    def images_for(self, document_id: int) -> list[Image]:
        return [image for image in self.images if image.document_id == document_id]


class FakeRenderer:
    def __init__(self, output_dir: Path, pages: int = 3) -> None:
        self.output_dir = output_dir
        self.pages = pages
        self.calls: list[tuple[Path, str]] = []
        self.fail_prefixes: set[str] = set()
        self.on_render: Callable[[str], None] | None = None

    async def render(self, input_path: Path, name_prefix: str) -> list[Path]:
        assert input_path.is_file()
        self.calls.append((input_path, name_prefix))
        if self.on_render is not None:
            self.on_render(name_prefix)
        if name_prefix in self.fail_prefixes:
            raise RenderError(f"cannot render {input_path.name}")
        pages: list[Path] = []
        for page in range(self.pages):
            path = self.output_dir / f"{name_prefix}-{page}.jpg"
            path.write_bytes(f"{name_prefix} page {page}".encode("utf-8"))
            pages.append(path)
        return pages


@dataclass
class FakeSite:
    """Serves feeds and documents and accepts uploads, recording every request."""

    feeds: dict[str, bytes] = field(default_factory=dict)
    feed_status: dict[str, int] = field(default_factory=dict)
    documents: dict[str, bytes] = field(default_factory=dict)
    failing_put_suffixes: set[str] = field(default_factory=set)
    gets: list[str] = field(default_factory=list)
    puts: list[httpx.Request] = field(default_factory=list)

    def set_feed(self, series: Series, year: int, body: bytes) -> None:
        self.feeds[FEED_TEMPLATES[series].format(year=year)] = body

    def put_urls(self) -> list[str]:
        return [str(request.url) for request in self.puts]

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if request.method == "PUT":
            self.puts.append(request)
            if any(url.endswith(suffix) for suffix in self.failing_put_suffixes):
                return httpx.Response(status_code=403, text="AccessDenied", request=request)
            return httpx.Response(status_code=200, request=request)

        self.gets.append(url)
        if url in self.feed_status:
            return httpx.Response(status_code=self.feed_status[url], request=request)
        if url in self.feeds:
            return httpx.Response(status_code=200, content=self.feeds[url], request=request)
        if url in self.documents:
            return httpx.Response(status_code=200, content=self.documents[url], request=request)
        if url.startswith("https://feeds.test/"):
            return httpx.Response(status_code=200, content=EMPTY_FEED, request=request)
        return httpx.Response(status_code=404, request=request)


@dataclass
class Harness:
    repository: FakeRepository
    cache: LocalCache
    site: FakeSite
    renderer: FakeRenderer
    stop_token: StopToken
    scratch_dir: Path
    pipeline: DocumentPipeline
    runner: IngestionRunner


def build_harness(tmp_path: Path, *, pages: int = 3, repository: FakeRepository | None = None) -> Harness:
    scratch_dir = tmp_path / "scratch"
    scratch_dir.mkdir(parents=True, exist_ok=True)
    repository = repository or FakeRepository()
    site = FakeSite()
    client = httpx.AsyncClient(transport=httpx.MockTransport(site.handler))
    signer = ObjectStorageSigner(SigningCredentials(access_key="test-access", secret_key="test-secret"))
    storage = ObjectStorageClient(client, signer, STORAGE_BASE_URL, clock=lambda: SEASON_NOW)
    renderer = FakeRenderer(scratch_dir, pages=pages)
    pipeline = DocumentPipeline(
        client=client,
        repository=repository,
        storage=storage,
        renderer=renderer,
        scratch_dir=scratch_dir,
    )
    cache = LocalCache()
    stop_token = StopToken()
    runner = IngestionRunner(
        repository=repository,
        cache=cache,
        feeds=FeedClient(client, FEED_TEMPLATES, season_id=2071, user_agent="tests"),
        pipeline=pipeline,
        scratch_dir=scratch_dir,
        stop_token=stop_token,
    )
    return Harness(
        repository=repository,
        cache=cache,
        site=site,
        renderer=renderer,
        stop_token=stop_token,
        scratch_dir=scratch_dir,
        pipeline=pipeline,
        runner=runner,
    )
