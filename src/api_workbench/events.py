"""Events emitted by the schedulers, and the sink they are delivered to."""

import logging
import time
import uuid
from datetime import datetime
from typing import Callable, Literal, Union

from pydantic import BaseModel, Field

from api_workbench.parser.base import Collection

logger = logging.getLogger(__name__)

SyncStatus = Literal["idle", "syncing", "updated"]


class HistoryEntry(BaseModel):
    """A completed request, as the caller's history list stores it."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    created_at: int = Field(default_factory=lambda: int(time.time() * 1000))  # epoch ms
    method: str
    url: str  # template as entered
    resolved_url: str
    params: dict[str, str] = {}
    body: str = ""
    body_type: str | None = None
    form_values: dict[str, str] = {}
    file_values: dict[str, list[str]] = {}
    response: str  # formatted response, or "Error: ..."

    @property
    def failed(self) -> bool:
        return self.response.startswith("Error:")


class CollectionUpdated(BaseModel):
    type: Literal["collection_updated"] = "collection_updated"
    collection: Collection


class SyncStatusChanged(BaseModel):
    type: Literal["sync_status_changed"] = "sync_status_changed"
    url: str
    status: SyncStatus
    timestamp: datetime


class PollResult(BaseModel):
    type: Literal["poll_result"] = "poll_result"
    endpoint_key: str
    entry: HistoryEntry


Event = Union[CollectionUpdated, SyncStatusChanged, PollResult]
EventSink = Callable[[Event], None]


def emit(sink: EventSink | None, event: Event) -> None:
    """Deliver *event*; a failing sink is logged and never reaches the caller."""
    if sink is None:
        return
    try:
        sink(event)
    except Exception:
        logger.exception(f"Event sink failed on {event.type}")


class EventLog:
    """In-memory sink that keeps every event it receives."""

    def __init__(self):
        self.events: list[Event] = []

    def __call__(self, event: Event) -> None:
        self.events.append(event)

    def of_type(self, event_type: type) -> list:
        return [e for e in self.events if isinstance(e, event_type)]

    def clear(self) -> None:
        self.events.clear()
