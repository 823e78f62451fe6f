"""AWS Signature Version 4 for single-object uploads.

Only what a header-signed PUT needs is implemented: no presigning, no chunked
payloads, no session tokens. The object store behind ``storage_base_url`` speaks the
S3 dialect, so the service name is always ``s3``.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Mapping, Protocol
from urllib.parse import parse_qsl, quote, urlsplit

ALGORITHM = "AWS4-HMAC-SHA256"
SERVICE = "s3"
PUBLIC_READ_ACL = "public-read"


@dataclass(frozen=True, slots=True)
class SigningCredentials:
    access_key: str
    secret_key: str = field(repr=False)
    region: str = "us-east-1"


@dataclass(frozen=True, slots=True)
class PutObjectRequest:
    url: str
    payload_digest: str
    content_type: str
    timestamp: datetime


class RequestSigner(Protocol):
    def sign(self, request: PutObjectRequest) -> dict[str, str]: ...


def amz_timestamp(moment: datetime) -> str:
    return _as_utc(moment).strftime("%Y%m%dT%H%M%SZ")


def credential_scope(moment: datetime, region: str) -> str:
    return f"{_as_utc(moment).strftime('%Y%m%d')}/{region}/{SERVICE}/aws4_request"


def canonical_request(
    method: str,
    url: str,
    headers: Mapping[str, str],
    payload_digest: str,
) -> tuple[str, str]:
    """Return ``(canonical_request, signed_headers)`` for ``headers``.

    The url path is taken verbatim: S3 keys are encoded exactly once by the caller.
    """
    parts = urlsplit(url)
    path = parts.path or "/"
    query_pairs = sorted(
        (quote(key, safe="-_.~"), quote(value, safe="-_.~"))
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
    )
    query = "&".join(f"{key}={value}" for key, value in query_pairs)

    normalized = {name.strip().lower(): " ".join(value.split()) for name, value in headers.items()}
    names = sorted(normalized)
    header_block = "".join(f"{name}:{normalized[name]}\n" for name in names)
    signed_headers = ";".join(names)

    request = "\n".join([method.upper(), path, query, header_block, signed_headers, payload_digest])
    return request, signed_headers


def string_to_sign(moment: datetime, region: str, request: str) -> str:
    hashed = hashlib.sha256(request.encode("utf-8")).hexdigest()
    return "\n".join([ALGORITHM, amz_timestamp(moment), credential_scope(moment, region), hashed])


def signing_key(secret_key: str, moment: datetime, region: str) -> bytes:
    key = _hmac(f"AWS4{secret_key}".encode("utf-8"), _as_utc(moment).strftime("%Y%m%d"))
    for part in (region, SERVICE, "aws4_request"):
        key = _hmac(key, part)
    return key


def authorization_header(
    *,
    method: str,
    url: str,
    headers: Mapping[str, str],
    payload_digest: str,
    moment: datetime,
    credentials: SigningCredentials,
) -> str:
    request, signed_headers = canonical_request(method, url, headers, payload_digest)
    to_sign = string_to_sign(moment, credentials.region, request)
    signature = hmac.new(
        signing_key(credentials.secret_key, moment, credentials.region),
        to_sign.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    scope = credential_scope(moment, credentials.region)
    return (
        f"{ALGORITHM} Credential={credentials.access_key}/{scope}, "
        f"SignedHeaders={signed_headers}, Signature={signature}"
    )


class ObjectStorageSigner:
    def __init__(self, credentials: SigningCredentials) -> None:
        self.credentials = credentials

    def sign(self, request: PutObjectRequest) -> dict[str, str]:
        host = urlsplit(request.url).netloc
        headers = {
            "host": host,
            "x-amz-acl": PUBLIC_READ_ACL,
            "x-amz-content-sha256": request.payload_digest,
            "x-amz-date": amz_timestamp(request.timestamp),
        }
        headers["authorization"] = authorization_header(
            method="PUT",
            url=request.url,
            headers=headers,
            payload_digest=request.payload_digest,
            moment=request.timestamp,
            credentials=self.credentials,
        )
        # Unsigned; the store only checks the headers listed in SignedHeaders.
        headers["content-type"] = request.content_type
        return headers


def _hmac(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)
