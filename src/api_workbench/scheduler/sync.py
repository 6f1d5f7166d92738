"""Keep imported collections in step with their source documents.

Each registered collection gets its own timer task. A tick performs a
conditional GET with the stored ETag; a changed document is re-normalized
and replaces the caller's Collection. Per-tick failures are logged and
never stop the timer.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Protocol

from pydantic import BaseModel

from api_workbench.config import get_settings
from api_workbench.errors import FetchError, ParseError
from api_workbench.events import CollectionUpdated, EventSink, SyncStatus, SyncStatusChanged, emit
from api_workbench.parser.base import Collection
from api_workbench.parser.openapi import normalize

logger = logging.getLogger(__name__)


class Fetcher(Protocol):
    async def fetch(self, url: str, etag: str | None = None): ...


class SyncState(BaseModel):
    url: str
    etag: str | None = None
    last_synced_at: datetime | None = None
    status: SyncStatus = "idle"


async def import_collection(fetcher: Fetcher, url: str, max_depth: int | None = None) -> tuple[Collection, str | None]:
    """Fetch and normalize a document; returns the collection and its ETag."""
    result = await fetcher.fetch(url)
    if result.not_modified:
        raise FetchError(f"Unexpected 304 for unconditional fetch of {url}", status_code=304)
    collection = normalize(result.content, url, max_depth=max_depth or get_settings().max_schema_depth)
    logger.info(f"Imported {collection.name} from {url}")
    return collection, result.etag


class SyncScheduler:
    """Periodically re-imports registered collections.

    ``collections`` is the caller's mapping of source URL to Collection;
    successful syncs replace entries in it. Must be used from a running
    event loop.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        collections: dict[str, Collection],
        sink: EventSink | None = None,
        interval: float | None = None,
        reset_after: float | None = None,
        max_depth: int | None = None,
    ):
        settings = get_settings()
        self.fetcher = fetcher
        self.collections = collections
        self.sink = sink
        self.interval = interval if interval is not None else settings.sync_interval
        self.reset_after = reset_after if reset_after is not None else settings.status_reset_delay
        self.max_depth = max_depth or settings.max_schema_depth
        self._states: dict[str, SyncState] = {}
        self._timers: dict[str, asyncio.Task] = {}
        self._resets: dict[str, asyncio.TimerHandle] = {}
        self._inflight: set[asyncio.Task] = set()

    # -- registration ---------------------------------------------------------

    def add(self, collection: Collection, etag: str | None = None) -> SyncState:
        """Register *collection*; its timer starts when sync is enabled."""
        url = collection.source_url
        self.remove(url)
        self.collections[url] = collection
        state = SyncState(url=url, etag=etag)
        self._states[url] = state
        if collection.sync_enabled:
            self._start_timer(url)
        return state

    def remove(self, url: str) -> None:
        self._stop_timer(url)
        self._states.pop(url, None)

    def state(self, url: str) -> SyncState | None:
        return self._states.get(url)

    def is_active(self, url: str) -> bool:
        return url in self._timers

    async def set_enabled(self, url: str, enabled: bool) -> None:
        """Disable cancels the timer; enable restarts it and syncs right away."""
        if url not in self._states:
            raise KeyError(f"Collection not registered for sync: {url}")
        collection = self.collections.get(url)
        if collection is not None and collection.sync_enabled != enabled:
            self.collections[url] = collection.model_copy(update={"sync_enabled": enabled})

        if not enabled:
            self._stop_timer(url)
            if self._states[url].status == "updated":
                self._set_status(url, "idle")
            return
        self._start_timer(url)
        await self.sync_now(url)

    # -- syncing --------------------------------------------------------------

    async def sync_now(self, url: str) -> bool:
        """Run one sync for *url*. Returns True when the collection was replaced."""
        state = self._states.get(url)
        if state is None:
            logger.warning(f"Sync requested for unregistered collection {url}")
            return False
        if state.status == "syncing":
            logger.debug(f"Sync for {url} already in flight, dropping tick")
            return False

        self._cancel_reset(url)
        self._set_status(url, "syncing")
        collection = None
        try:
            result = await self.fetcher.fetch(url, state.etag)
            if result.not_modified:
                logger.debug(f"{url} not modified")
            else:
                collection = normalize(result.content, url, max_depth=self.max_depth)
        except asyncio.CancelledError:
            self._set_status(url, "idle")
            raise
        except (FetchError, ParseError) as e:
            logger.warning(f"Sync of {url} failed: {e}")
        except Exception:
            logger.exception(f"Unexpected error while syncing {url}")

        if self._states.get(url) is not state:
            logger.debug(f"{url} was removed during sync, discarding result")
            return False
        if collection is None:
            self._set_status(url, "idle")
            return False
        return self._commit(state, collection, result.etag)

    def _commit(self, state: SyncState, collection: Collection, etag: str | None) -> bool:
        url = state.url
        state.etag = etag
        state.last_synced_at = datetime.now(timezone.utc)

        previous = self.collections.get(url)
        if previous is not None:
            collection = collection.model_copy(update={"sync_enabled": previous.sync_enabled})
            if previous.model_dump() == collection.model_dump():
                logger.debug(f"{url} re-fetched but unchanged")
                self._set_status(url, "idle")
                return False

        self.collections[url] = collection
        logger.info(f"Collection {collection.name} updated from {url}")
        self._set_status(url, "updated")
        emit(self.sink, CollectionUpdated(collection=collection))
        loop = asyncio.get_running_loop()
        self._resets[url] = loop.call_later(self.reset_after, self._reset_status, url)
        return True

    def _set_status(self, url: str, status: SyncStatus) -> None:
        state = self._states.get(url)
        if state is None:
            return
        state.status = status
        emit(self.sink, SyncStatusChanged(url=url, status=status, timestamp=datetime.now(timezone.utc)))

    def _reset_status(self, url: str) -> None:
        self._resets.pop(url, None)
        state = self._states.get(url)
        if state is not None and state.status == "updated":
            self._set_status(url, "idle")

    def _cancel_reset(self, url: str) -> None:
        handle = self._resets.pop(url, None)
        if handle is not None:
            handle.cancel()

    # -- timers ---------------------------------------------------------------

    def _start_timer(self, url: str) -> None:
        if url in self._timers:
            return
        self._timers[url] = asyncio.create_task(self._run_timer(url), name=f"sync:{url}")

    def _stop_timer(self, url: str) -> None:
        task = self._timers.pop(url, None)
        if task is not None:
            task.cancel()
        self._cancel_reset(url)

    async def _run_timer(self, url: str) -> None:
        while True:
            await asyncio.sleep(self.interval)
            # the sync runs on its own task so cancelling the timer never aborts it
            task = asyncio.create_task(self.sync_now(url))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    async def close(self) -> None:
        """Cancel every timer and wait for in-flight syncs to finish."""
        for url in list(self._timers):
            self._stop_timer(url)
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
