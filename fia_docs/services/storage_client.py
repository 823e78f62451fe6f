from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

import httpx
from opentelemetry import trace

from fia_docs.core.keys import content_digest, object_url
from fia_docs.core.signing import PutObjectRequest, RequestSigner

tracer = trace.get_tracer(__name__)

PDF_CONTENT_TYPE = "application/pdf"
JPEG_CONTENT_TYPE = "image/jpeg"


class UploadError(Exception):
    """Raised when an object PUT fails to send or is not acknowledged with 2xx."""


class ObjectStorageClient:
    """Signed single-object uploads. No retries: callers decide what a failure means."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        signer: RequestSigner,
        base_url: str,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.client = client
        self.signer = signer
        self.base_url = base_url.rstrip("/")
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def url_for(self, key: str) -> str:
        return object_url(self.base_url, key)

    async def put_object(self, key: str, payload: bytes, content_type: str) -> str:
        url = self.url_for(key)
        request = PutObjectRequest(
            url=url,
            payload_digest=content_digest(payload),
            content_type=content_type,
            timestamp=self._clock(),
        )
        with tracer.start_as_current_span("storage.put") as span:
            span.set_attribute("http.method", "PUT")
            span.set_attribute("http.url", url)
            span.set_attribute("http.request_content_length", len(payload))
            headers = self.signer.sign(request)
            try:
                response = await self.client.put(url, headers=headers, content=payload)
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                raise UploadError(f"PUT {url} failed: {exc}") from exc
            span.set_attribute("http.status_code", response.status_code)
            if not response.is_success:
                raise UploadError(f"PUT {url} returned {response.status_code}: {response.text[:200]}")
        return url
