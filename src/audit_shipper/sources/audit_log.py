"""Resumable, cursor-paginated reader over the remote audit log.

The reader holds one page and a position inside it.  Its state is one of:

- ``EMPTY``: nothing fetched yet
- ``LOADED``: the page still has undelivered events
- ``PAGE_EXHAUSTED``: every event on the page has been handed out

Leaving ``EMPTY`` or ``PAGE_EXHAUSTED`` always re-fetches the page at the
current cursor and skips everything up to and including the last delivered
event.  If nothing on that page is new and the server gave a next cursor, the
reader flips to the next page and fetches once more within the same call.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from enum import StrEnum

import structlog

from audit_shipper.sources.base import AuditEvent, EventPage, SearchEventsClient

logger = structlog.get_logger()

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(UTC)


class SourceState(StrEnum):
    EMPTY = "empty"
    LOADED = "loaded"
    PAGE_EXHAUSTED = "page_exhausted"


class AuditEventSource:
    """Hands out audit events one by one, in source order."""

    def __init__(
        self,
        client: SearchEventsClient,
        *,
        start_time: datetime,
        namespace: str = "default",
        types: list[str] | None = None,
        batch_size: int = 20,
        cursor: str = "",
        last_delivered_id: str = "",
        clock: Clock = _utc_now,
    ) -> None:
        if batch_size < 1:
            msg = f"batch_size must be positive, got {batch_size}"
            raise ValueError(msg)
        self._client = client
        self._start_time = start_time
        self._namespace = namespace
        self._types = list(types or [])
        self._batch_size = batch_size
        self._cursor = cursor
        self._next_cursor = ""
        # Advanced in memory as events are handed out; the durable copy is
        # committed by the delivery loop after the sink confirms.
        self._last_id = last_delivered_id
        self._clock = clock
        self._page: EventPage | None = None
        self._pos = 0

    @property
    def state(self) -> SourceState:
        if self._page is None:
            return SourceState.EMPTY
        if self._pos < len(self._page):
            return SourceState.LOADED
        return SourceState.PAGE_EXHAUSTED

    @property
    def cursor(self) -> str:
        return self._cursor

    @property
    def last_delivered_id(self) -> str:
        return self._last_id

    async def next(self) -> AuditEvent | None:
        """Return the next undelivered event, or ``None`` if there is none yet.

        ``None`` means the caller should wait before asking again.  Fetch
        errors propagate unchanged.
        """
        if self.state is not SourceState.LOADED and not await self._load():
            return None

        assert self._page is not None
        event = self._page.events[self._pos]
        self._pos += 1
        self._last_id = event.id
        return event

    async def close(self) -> None:
        await self._client.close()

    async def _load(self) -> bool:
        """Fetch the current page, flipping to the next one at most once."""
        page = await self._fetch()
        if len(page) == 0:
            logger.debug("event_source.page_empty", cursor=self._cursor)
            return False
        if self._pos < len(page):
            return True

        # Everything on this page was already delivered
        if not self._next_cursor:
            logger.debug("event_source.no_new_events", cursor=self._cursor)
            return False

        self._flip()
        page = await self._fetch()
        return self._pos < len(page)

    def _flip(self) -> None:
        logger.info(
            "event_source.page_flipped", cursor=self._cursor, next=self._next_cursor
        )
        self._cursor = self._next_cursor
        self._next_cursor = ""
        self._page = None
        self._pos = 0

    async def _fetch(self) -> EventPage:
        raw, next_cursor = await self._client.search_events(
            self._start_time,
            self._clock(),
            self._namespace,
            self._types,
            self._batch_size,
            self._cursor,
        )
        page = EventPage(
            events=tuple(AuditEvent.from_raw(e, self._cursor) for e in raw),
            next_cursor=next_cursor,
        )

        pos = 0
        if self._last_id:
            found = page.find(self._last_id)
            if found is not None:
                pos = found + 1

        self._page = page
        self._next_cursor = next_cursor
        self._pos = pos

        logger.info(
            "event_source.page_fetched",
            cursor=self._cursor,
            next=next_cursor,
            len=len(page),
            position=pos,
            last_id=self._last_id,
        )
        return page
