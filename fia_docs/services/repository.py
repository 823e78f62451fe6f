from __future__ import annotations

from functools import lru_cache
from typing import Any, Protocol

import asyncpg  # type: ignore[import-untyped]
from opentelemetry import trace

from fia_docs.core.config import get_settings
from fia_docs.schemas.entities import Document, DocumentStatus, Event, EventStatus, Image
from fia_docs.schemas.series import Series
from fia_docs.services.schema import SCHEMA_SQL

tracer = trace.get_tracer(__name__)

_DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


class RepositoryError(Exception):
    """Base repository error. Any read or write failure ends the current cycle."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class DocumentRepository(Protocol):
    async def create_event(self, *, title: str, year: int, series: Series, status: EventStatus) -> Event: ...

    async def create_document(self, *, event_id: int, title: str, href: str, mirror: str) -> Document: ...

    async def create_image(self, *, document_id: int, page_number: int, url: str) -> Image: ...

    async def update_document_status(self, document_id: int, status: DocumentStatus) -> None: ...

    async def list_events(self, year: int) -> list[Event]: ...

    async def list_documents(self, year: int) -> list[Document]: ...


class PostgresRepository:
    def __init__(self, database_url: str | None, min_pool_size: int, max_pool_size: int) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def ping(self) -> None:
        await self._fetchval("select 1")

    async def apply_schema(self) -> None:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute(SCHEMA_SQL)
        except _DB_ERRORS as exc:
            raise RepositoryError(f"schema bootstrap failed: {exc}") from exc

    async def create_event(self, *, title: str, year: int, series: Series, status: EventStatus) -> Event:
        # A concurrent or stale insert returns the existing row, keeping (title, year, series) unique.
        row = await self._fetchrow(
            """
            insert into events (title, year, series, status)
            values ($1, $2, $3, $4)
            on conflict (title, year, series) do update set title = excluded.title
            returning id, title, year, series, status, created_at
            """,
            title,
            year,
            series.value,
            status.value,
        )
        return self._event_from_row(row)

    async def create_document(self, *, event_id: int, title: str, href: str, mirror: str) -> Document:
        row = await self._fetchrow(
            """
            insert into documents (event_id, title, href, mirror, status)
            values ($1, $2, $3, $4, $5)
            on conflict (event_id, href) do update set mirror = excluded.mirror
            returning id, event_id, title, href, mirror, status, created_at
            """,
            event_id,
            title,
            href,
            mirror,
            DocumentStatus.INITIAL.value,
        )
        return self._document_from_row(row)

    async def create_image(self, *, document_id: int, page_number: int, url: str) -> Image:
        row = await self._fetchrow(
            """
            insert into images (document_id, page_number, url)
            values ($1, $2, $3)
            on conflict (document_id, page_number) do update set url = excluded.url
            returning id, document_id, page_number, url
            """,
            document_id,
            page_number,
            url,
        )
        return Image(
            id=row["id"],
            document_id=row["document_id"],
            page_number=row["page_number"],
            url=row["url"],
        )

    async def update_document_status(self, document_id: int, status: DocumentStatus) -> None:
        await self._execute("update documents set status = $1 where id = $2", status.value, document_id)

    async def list_events(self, year: int) -> list[Event]:
        rows = await self._fetch(
            """
            select id, title, year, series, status, created_at
            from events
            where year = $1
            order by id
            """,
            year,
        )
        return [self._event_from_row(row) for row in rows]

    async def list_documents(self, year: int) -> list[Document]:
        rows = await self._fetch(
            """
            select id, event_id, title, href, mirror, status, created_at
            from documents
            where created_at >= make_timestamptz($1, 1, 1, 0, 0, 0, 'UTC')
              and created_at < make_timestamptz($1 + 1, 1, 1, 0, 0, 0, 'UTC')
            order by id
            """,
            year,
        )
        return [self._document_from_row(row) for row in rows]

    async def _fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        pool = await self._get_pool()
        with tracer.start_as_current_span("db.query") as span:
            span.set_attribute("db.statement", " ".join(query.split()))
            try:
                rows = await pool.fetch(query, *args)
            except _DB_ERRORS as exc:
                raise RepositoryError(f"query failed: {exc}") from exc
            span.set_attribute("db.rows_returned", len(rows))
            return rows

    async def _fetchrow(self, query: str, *args: Any) -> asyncpg.Record:
        pool = await self._get_pool()
        with tracer.start_as_current_span("db.query") as span:
            span.set_attribute("db.statement", " ".join(query.split()))
            try:
                row = await pool.fetchrow(query, *args)
            except _DB_ERRORS as exc:
                raise RepositoryError(f"write failed: {exc}") from exc
            if row is None:
                raise RepositoryError("write returned no row")
            return row

    async def _fetchval(self, query: str, *args: Any) -> Any:
        pool = await self._get_pool()
        try:
            return await pool.fetchval(query, *args)
        except _DB_ERRORS as exc:
            raise RepositoryUnavailableError(f"database unavailable: {exc}") from exc

    async def _execute(self, query: str, *args: Any) -> None:
        pool = await self._get_pool()
        with tracer.start_as_current_span("db.query") as span:
            span.set_attribute("db.statement", " ".join(query.split()))
            try:
                await pool.execute(query, *args)
            except _DB_ERRORS as exc:
                raise RepositoryError(f"write failed: {exc}") from exc

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("FIA_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _event_from_row(row: asyncpg.Record) -> Event:
        return Event(
            id=row["id"],
            title=row["title"],
            year=row["year"],
            series=Series(row["series"]),
            status=EventStatus(row["status"]),
            created_at=row["created_at"],
        )

    @staticmethod
    def _document_from_row(row: asyncpg.Record) -> Document:
        return Document(
            id=row["id"],
            event_id=row["event_id"],
            title=row["title"],
            href=row["href"],
            mirror=row["mirror"],
            status=DocumentStatus(row["status"]),
            created_at=row["created_at"],
        )


@lru_cache
def get_repository() -> PostgresRepository:
    settings = get_settings()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
