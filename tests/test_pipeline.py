from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from fia_docs.jobs.pipeline import DownloadError
from fia_docs.schemas.entities import Document, DocumentStatus, EventStatus
from fia_docs.schemas.series import Series
from fia_docs.services.feed_parser import FeedDocument
from fia_docs.services.renderer import RenderError
from fia_docs.services.storage_client import UploadError
from support import STORAGE_BASE_URL, Harness, build_harness

ENTRY_URL = "https://www.fia.com/sites/default/files/entry_list.pdf"
ENTRY = FeedDocument(title="Entry List", url=ENTRY_URL)


def _bahrain(harness: Harness):
    return asyncio.run(
        harness.repository.create_event(
            title="Bahrain GP", year=2025, series=Series.F1, status=EventStatus.NOT_ALLOWED
        )
    )


def test_process_mirrors_renders_and_marks_ready(tmp_path: Path) -> None:
    harness = build_harness(tmp_path, pages=3)
    harness.site.documents[ENTRY_URL] = b"%PDF-1.7 entry list"
    event = _bahrain(harness)

    result = asyncio.run(harness.pipeline.process(event, ENTRY, name_prefix="doc_0"))

    document_id = result.document.id
    assert result.document.status == DocumentStatus.READY_TO_POST
    assert harness.repository.document(document_id).status == DocumentStatus.READY_TO_POST
    assert harness.repository.document(document_id).href == ENTRY_URL
    assert harness.repository.document(document_id).mirror == (
        f"{STORAGE_BASE_URL}/mirror/2025/Bahrain%20GP/Entry%20List.pdf"
    )
    assert harness.site.put_urls() == [
        f"{STORAGE_BASE_URL}/mirror/2025/Bahrain%20GP/Entry%20List.pdf",
        *[f"{STORAGE_BASE_URL}/img/2025/Bahrain%20GP/{document_id}-{page}.jpg" for page in range(3)],
    ]
    assert [(image.page_number, image.url) for image in result.images] == [
        (page, f"{STORAGE_BASE_URL}/img/2025/Bahrain%20GP/{document_id}-{page}.jpg") for page in range(3)
    ]
    assert harness.site.puts[0].content == b"%PDF-1.7 entry list"
    assert harness.site.puts[0].headers["content-type"] == "application/pdf"
    assert harness.site.puts[1].content == b"doc_0 page 0"
    assert harness.site.puts[1].headers["content-type"] == "image/jpeg"


def test_render_failure_leaves_document_initial_without_images(tmp_path: Path) -> None:
    harness = build_harness(tmp_path)
    harness.site.documents[ENTRY_URL] = b"%PDF"
    harness.renderer.fail_prefixes.add("doc_0")
    event = _bahrain(harness)
    persisted: list[Document] = []

    with pytest.raises(RenderError):
        asyncio.run(harness.pipeline.process(event, ENTRY, name_prefix="doc_0", on_persisted=persisted.append))

    assert [document.href for document in persisted] == [ENTRY_URL]
    assert harness.repository.document(persisted[0].id).status == DocumentStatus.INITIAL
    assert harness.repository.images == []
    assert len(harness.site.puts) == 1


def test_download_failure_writes_nothing(tmp_path: Path) -> None:
    harness = build_harness(tmp_path)
    event = _bahrain(harness)

    with pytest.raises(DownloadError, match="404"):
        asyncio.run(harness.pipeline.process(event, ENTRY, name_prefix="doc_0"))

    assert harness.repository.documents == []
    assert harness.site.puts == []
    assert harness.renderer.calls == []


def test_mirror_upload_failure_writes_no_document_row(tmp_path: Path) -> None:
    harness = build_harness(tmp_path)
    harness.site.documents[ENTRY_URL] = b"%PDF"
    harness.site.failing_put_suffixes.add(".pdf")
    event = _bahrain(harness)

    with pytest.raises(UploadError, match="AccessDenied"):
        asyncio.run(harness.pipeline.process(event, ENTRY, name_prefix="doc_0"))

    assert harness.repository.documents == []
    assert harness.renderer.calls == []


def test_page_upload_failure_stops_at_that_page(tmp_path: Path) -> None:
    harness = build_harness(tmp_path, pages=3)
    harness.site.documents[ENTRY_URL] = b"%PDF"
    harness.site.failing_put_suffixes.add("-1.jpg")
    event = _bahrain(harness)

    with pytest.raises(UploadError):
        asyncio.run(harness.pipeline.process(event, ENTRY, name_prefix="doc_0"))

    document = harness.repository.documents[0]
    assert document.status == DocumentStatus.INITIAL
    assert [image.page_number for image in harness.repository.images_for(document.id)] == [0]
    assert not any(url.endswith("-2.jpg") for url in harness.site.put_urls())


def test_download_keeps_a_scratch_copy(tmp_path: Path) -> None:
    harness = build_harness(tmp_path)
    harness.site.documents[ENTRY_URL] = b"%PDF-scratch"

    path, body = asyncio.run(harness.pipeline.download(ENTRY_URL, "doc_4"))

    assert path == harness.scratch_dir / "doc_4.pdf"
    assert path.read_bytes() == body == b"%PDF-scratch"


def test_malformed_download_url_raises_download_error(tmp_path: Path) -> None:
    harness = build_harness(tmp_path)

    with pytest.raises(DownloadError):
        asyncio.run(harness.pipeline.download("https://www.fia.com/files/a\x01b.pdf", "doc_0"))

    assert harness.site.gets == []
    assert list(harness.scratch_dir.iterdir()) == []
