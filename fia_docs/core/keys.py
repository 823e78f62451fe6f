from __future__ import annotations

import hashlib
from urllib.parse import quote

MIRROR_PREFIX = "mirror"
IMAGE_PREFIX = "img"


def content_digest(payload: bytes) -> str:
    return hashlib.sha256(payload).hexdigest()


def encode_segment(value: str) -> str:
    # Every reserved character is escaped, including "/", so a title can never add a path level.
    return quote(value, safe="")


def mirror_key(year: int, event_title: str, document_title: str) -> str:
    return f"{MIRROR_PREFIX}/{year}/{encode_segment(event_title)}/{encode_segment(document_title)}.pdf"


def image_key(year: int, event_title: str, document_id: int, page_number: int) -> str:
    return f"{IMAGE_PREFIX}/{year}/{encode_segment(event_title)}/{document_id}-{page_number}.jpg"


def object_url(base_url: str, key: str) -> str:
    return f"{base_url.rstrip('/')}/{key}"
