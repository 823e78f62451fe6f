from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import httpx
from opentelemetry import trace

from fia_docs.core.keys import image_key, mirror_key
from fia_docs.schemas.entities import Document, DocumentStatus, Event, Image
from fia_docs.services.feed_parser import FeedDocument
from fia_docs.services.renderer import DocumentRenderer
from fia_docs.services.repository import DocumentRepository
from fia_docs.services.scratch import read_scratch_file, write_scratch_file
from fia_docs.services.storage_client import JPEG_CONTENT_TYPE, PDF_CONTENT_TYPE, ObjectStorageClient

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class DownloadError(Exception):
    """Raised when a source document cannot be fetched."""


@dataclass(slots=True)
class PipelineResult:
    document: Document
    images: list[Image]


class DocumentPipeline:
    """Download, mirror, record, render and publish a single document.

    Steps run strictly in order and nothing is rolled back: a failure after the
    document row exists leaves it ``initial`` with whatever image rows were written.
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        repository: DocumentRepository,
        storage: ObjectStorageClient,
        renderer: DocumentRenderer,
        scratch_dir: Path,
        user_agent: str = "fia-docs-ingester/1.1",
    ) -> None:
        self.client = client
        self.repository = repository
        self.storage = storage
        self.renderer = renderer
        self.scratch_dir = scratch_dir
        self.headers = {"User-Agent": user_agent}

    async def download(self, url: str, name: str) -> tuple[Path, bytes]:
        with tracer.start_as_current_span("pipeline.download") as span:
            span.set_attribute("http.url", url)
            span.set_attribute("document_name", name)
            try:
                response = await self.client.get(url, headers=self.headers)
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                raise DownloadError(f"GET {url} failed: {exc}") from exc
            span.set_attribute("http.status_code", response.status_code)
            if not response.is_success:
                raise DownloadError(f"GET {url} returned {response.status_code}")
            body = response.content
            span.set_attribute("http.content_length", len(body))
        path = write_scratch_file(self.scratch_dir, f"{name}.pdf", body)
        return path, body

    async def process(
        self,
        event: Event,
        entry: FeedDocument,
        *,
        name_prefix: str,
        on_persisted: Callable[[Document], None] | None = None,
    ) -> PipelineResult:
        with tracer.start_as_current_span("pipeline.document") as span:
            span.set_attribute("fia.event", event.title)
            span.set_attribute("fia.document", entry.title)
            span.set_attribute("fia.document_url", entry.url)

            path, body = await self.download(entry.url, name_prefix)

            mirror = await self.storage.put_object(
                mirror_key(event.year, event.title, entry.title),
                body,
                PDF_CONTENT_TYPE,
            )
            document = await self.repository.create_document(
                event_id=event.id,
                title=entry.title,
                href=entry.url,
                mirror=mirror,
            )
            if on_persisted is not None:
                on_persisted(document)
            span.set_attribute("fia.document_id", document.id)

            with tracer.start_as_current_span("pipeline.render"):
                pages = await self.renderer.render(path, name_prefix)

            images: list[Image] = []
            for page_number, page_path in enumerate(pages):
                payload = read_scratch_file(page_path)
                url = await self.storage.put_object(
                    image_key(event.year, event.title, document.id, page_number),
                    payload,
                    JPEG_CONTENT_TYPE,
                )
                images.append(
                    await self.repository.create_image(document_id=document.id, page_number=page_number, url=url)
                )

            await self.repository.update_document_status(document.id, DocumentStatus.READY_TO_POST)
            document = document.model_copy(update={"status": DocumentStatus.READY_TO_POST})
            span.set_attribute("fia.pages", len(images))

        logger.info(
            "document ready id=%s event=%r title=%r pages=%s",
            document.id,
            event.title,
            entry.title,
            len(images),
        )
        return PipelineResult(document=document, images=images)
