"""Extraction of events and document links from a federation listing page.

The listing is a flat run of blocks::

    <div class="event-title">Bahrain Grand Prix</div>
    <ul class="document-row-wrapper">
      <li class="document-row">
        <a href="/sites/default/files/....pdf">
          <div class="title">Doc 3 - Entry List</div>
          <div class="published">...</div>
        </a>
      </li>
    </ul>

Every document row belongs to the most recent event title. The extractor is a
single-pass state machine fed by tag-open, tag-close and text tokens; the stdlib
tokenizer is only an adapter in front of it, so swapping tokenizers does not touch
the extraction rules.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from html.parser import HTMLParser
from typing import Literal
from urllib.parse import urljoin, urlparse

import httpx

logger = logging.getLogger(__name__)

FEED_BASE_URL = "https://www.fia.com"

VOID_TAGS = frozenset(
    {"area", "base", "br", "col", "embed", "hr", "img", "input", "link", "meta", "source", "track", "wbr"}
)


class Container(str, Enum):
    EVENT_TITLE = "event_title"
    DOCUMENT_ROW = "document_row"
    DOCUMENT_LINK = "document_link"
    DOCUMENT_TITLE = "document_title"


TEXT_CONTAINERS = frozenset({Container.EVENT_TITLE, Container.DOCUMENT_TITLE})


@dataclass(slots=True)
class DocumentCandidate:
    title: str | None = None
    url: str | None = None
    season: int | None = None
    # Raw attribute value; ``url`` stays None when it cannot be resolved against the base.
    href: str | None = None


@dataclass(slots=True)
class EventCandidate:
    title: str | None = None
    season: int | None = None
    documents: list[DocumentCandidate] = field(default_factory=list)


@dataclass(slots=True)
class Season:
    year: int
    events: list[EventCandidate] = field(default_factory=list)
    orphans: list[DocumentCandidate] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ParseSkip:
    kind: Literal["event", "document"]
    reason: str
    title: str | None = None
    url: str | None = None
    event_title: str | None = None


@dataclass(frozen=True, slots=True)
class FeedDocument:
    title: str
    url: str


@dataclass(frozen=True, slots=True)
class FeedEvent:
    title: str
    year: int
    documents: tuple[FeedDocument, ...]


@dataclass(slots=True)
class FeedExtraction:
    year: int
    events: list[FeedEvent]
    skipped: list[ParseSkip]


class FeedStateMachine:
    def __init__(self, year: int, base_url: str = FEED_BASE_URL) -> None:
        self.season = Season(year=year)
        self.base_url = base_url
        self._stack: list[tuple[str, Container | None]] = []
        self._text: list[str] = []
        self._collecting: Container | None = None
        self._event: EventCandidate | None = None
        self._document: DocumentCandidate | None = None

    def open(self, tag: str, attrs: dict[str, str | None]) -> None:
        if tag in VOID_TAGS:
            return
        marker = self._classify(tag, attrs)
        self._stack.append((tag, marker))
        if marker is not None:
            self._enter(marker, attrs)

    def close(self, tag: str) -> None:
        if tag in VOID_TAGS:
            return
        for index in range(len(self._stack) - 1, -1, -1):
            if self._stack[index][0] == tag:
                break
        else:
            return
        # Unclosed children of ``tag`` are closed implicitly, innermost first.
        while len(self._stack) > index:
            _, marker = self._stack.pop()
            if marker is not None:
                self._exit(marker)

    def text(self, data: str) -> None:
        if self._collecting is not None:
            self._text.append(data)

    def finish(self) -> Season:
        while self._stack:
            _, marker = self._stack.pop()
            if marker is not None:
                self._exit(marker)
        return self.season

    def _inside(self, marker: Container) -> bool:
        return any(open_marker is marker for _, open_marker in self._stack)

    def _classify(self, tag: str, attrs: dict[str, str | None]) -> Container | None:
        classes = set((attrs.get("class") or "").split())
        if "event-title" in classes:
            return Container.EVENT_TITLE
        if "document-row" in classes:
            return Container.DOCUMENT_ROW
        if tag == "a" and self._inside(Container.DOCUMENT_ROW) and not self._inside(Container.DOCUMENT_LINK):
            return Container.DOCUMENT_LINK
        if "title" in classes and self._inside(Container.DOCUMENT_LINK):
            return Container.DOCUMENT_TITLE
        return None

    def _enter(self, marker: Container, attrs: dict[str, str | None]) -> None:
        if marker is Container.EVENT_TITLE:
            self._event = EventCandidate(season=self.season.year)
            self.season.events.append(self._event)
        elif marker is Container.DOCUMENT_LINK:
            href = (attrs.get("href") or "").strip() or None
            self._document = DocumentCandidate(url=self._resolve(href), season=self.season.year, href=href)
        if marker in TEXT_CONTAINERS:
            self._collecting = marker
            self._text = []

    def _exit(self, marker: Container) -> None:
        if marker is Container.EVENT_TITLE and self._event is not None:
            self._event.title = self._flush_text()
        elif marker is Container.DOCUMENT_TITLE and self._document is not None:
            self._document.title = self._flush_text()
        elif marker is Container.DOCUMENT_LINK and self._document is not None:
            if self._event is None:
                self.season.orphans.append(self._document)
            else:
                self._event.documents.append(self._document)
            self._document = None
        if marker is self._collecting:
            self._collecting = None
            self._text = []

    def _resolve(self, href: str | None) -> str | None:
        if href is None:
            return None
        try:
            return urljoin(self.base_url, href)
        except ValueError:
            return None

    def _flush_text(self) -> str | None:
        collapsed = " ".join("".join(self._text).split())
        return collapsed or None


class _TokenAdapter(HTMLParser):
    def __init__(self, machine: FeedStateMachine) -> None:
        super().__init__(convert_charrefs=True)
        self._machine = machine

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        self._machine.open(tag, dict(attrs))

    def handle_startendtag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        self._machine.open(tag, dict(attrs))
        self._machine.close(tag)

    def handle_endtag(self, tag: str) -> None:
        self._machine.close(tag)

    def handle_data(self, data: str) -> None:
        self._machine.text(data)


def parse_season(raw: bytes, year: int, *, base_url: str = FEED_BASE_URL) -> Season:
    machine = FeedStateMachine(year, base_url=base_url)
    tokenizer = _TokenAdapter(machine)
    tokenizer.feed(raw.decode("utf-8", errors="replace"))
    tokenizer.close()
    return machine.finish()


def validate_season(season: Season) -> FeedExtraction:
    """Turn candidates into feed entries, dropping (and logging) incomplete ones."""
    events: list[FeedEvent] = []
    skipped: list[ParseSkip] = []

    for orphan in season.orphans:
        skipped.append(
            ParseSkip(
                kind="document",
                reason="document_outside_event",
                title=orphan.title,
                url=orphan.url or orphan.href,
            )
        )

    for candidate in season.events:
        if not candidate.title:
            skipped.append(ParseSkip(kind="event", reason="missing_event_title"))
            continue

        documents: list[FeedDocument] = []
        for document in candidate.documents:
            if not document.href:
                reason = "missing_document_url"
            elif not document.url:
                reason = "invalid_document_url"
            elif urlparse(document.url).scheme.lower() not in {"http", "https"}:
                reason = "unsupported_document_url"
            elif not _is_fetchable(document.url):
                reason = "invalid_document_url"
            elif not document.title:
                reason = "missing_document_title"
            else:
                documents.append(FeedDocument(title=document.title, url=document.url))
                continue
            skipped.append(
                ParseSkip(
                    kind="document",
                    reason=reason,
                    title=document.title,
                    url=document.url or document.href,
                    event_title=candidate.title,
                )
            )

        events.append(FeedEvent(title=candidate.title, year=season.year, documents=tuple(documents)))

    for skip in skipped:
        logger.warning(
            "dropped feed candidate kind=%s reason=%s title=%r url=%r event=%r",
            skip.kind,
            skip.reason,
            skip.title,
            skip.url,
            skip.event_title,
        )
    return FeedExtraction(year=season.year, events=events, skipped=skipped)


def _is_fetchable(url: str) -> bool:
    try:
        httpx.URL(url)
    except httpx.InvalidURL:
        return False
    return True


def extract_feed(raw: bytes, year: int, *, base_url: str = FEED_BASE_URL) -> FeedExtraction:
    return validate_season(parse_season(raw, year, base_url=base_url))
