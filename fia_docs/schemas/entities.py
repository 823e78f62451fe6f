from datetime import datetime
from enum import Enum

from pydantic import BaseModel

from fia_docs.schemas.series import Series


class EventStatus(str, Enum):
    NOT_ALLOWED = "not_allowed"
    ALLOWED = "allowed"


class DocumentStatus(str, Enum):
    INITIAL = "initial"
    READY_TO_POST = "ready_to_post"


class Event(BaseModel):
    id: int
    title: str
    year: int
    series: Series
    status: EventStatus = EventStatus.NOT_ALLOWED
    created_at: datetime


class Document(BaseModel):
    id: int
    event_id: int
    title: str
    href: str
    mirror: str
    status: DocumentStatus = DocumentStatus.INITIAL
    created_at: datetime


class Image(BaseModel):
    id: int
    document_id: int
    page_number: int
    url: str
