"""Delivery progress persisted in a checkpoint store.

Three keys are kept per source, all prefixed with the source key:

- ``<source>.start_time``: lower bound of the scan window (RFC 3339)
- ``<source>.cursor``: cursor of the page holding the last delivered event
- ``<source>.id``: ID of the last event confirmed by the sink
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime

import structlog

from audit_shipper.checkpoint.store import CheckpointError, CheckpointStore

logger = structlog.get_logger()

START_TIME_NAME = "start_time"
CURSOR_NAME = "cursor"
ID_NAME = "id"


def _format_time(t: datetime) -> str:
    return t.astimezone(UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _parse_time(value: str) -> datetime:
    t = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if t.tzinfo is None:
        t = t.replace(tzinfo=UTC)
    return t.astimezone(UTC).replace(microsecond=0)


@dataclass(slots=True)
class Progress:
    """Where the shipper is in the remote event stream."""

    start_time: datetime
    cursor: str = ""
    last_delivered_id: str = ""


class ProgressState:
    """Loads, resets and advances :class:`Progress` for one source."""

    def __init__(self, store: CheckpointStore, source_key: str, progress: Progress) -> None:
        self._store = store
        self._source_key = source_key
        self._progress = progress

    @property
    def start_time(self) -> datetime:
        return self._progress.start_time

    @property
    def cursor(self) -> str:
        return self._progress.cursor

    @property
    def last_delivered_id(self) -> str:
        return self._progress.last_delivered_id

    def _key(self, name: str) -> str:
        return f"{self._source_key}.{name}"

    @classmethod
    def load(
        cls,
        store: CheckpointStore,
        source_key: str,
        configured_start_time: datetime | None,
        *,
        now: datetime | None = None,
    ) -> ProgressState:
        """Load progress, resetting it if the configured start time changed.

        When no start time is configured the stored one is kept; on the very
        first run "now" (whole seconds, UTC) is used instead.
        """
        state = cls(store, source_key, Progress(start_time=datetime.now(UTC)))
        stored_raw = store.get(state._key(START_TIME_NAME))
        stored_start: datetime | None = None
        if stored_raw:
            try:
                stored_start = _parse_time(stored_raw)
            except ValueError:
                logger.warning(
                    "progress.invalid_start_time", source=source_key, value=stored_raw
                )

        configured = configured_start_time
        if configured is not None:
            configured = _parse_time(_format_time(configured))

        if stored_start is not None and (configured is None or configured == stored_start):
            state._progress = Progress(
                start_time=stored_start,
                cursor=store.get(state._key(CURSOR_NAME)) or "",
                last_delivered_id=store.get(state._key(ID_NAME)) or "",
            )
            logger.info(
                "progress.loaded",
                source=source_key,
                start_time=_format_time(stored_start),
                cursor=state.cursor,
                id=state.last_delivered_id,
            )
            return state

        start_time = configured
        if start_time is None:
            start_time = (now or datetime.now(UTC)).astimezone(UTC).replace(microsecond=0)

        if stored_start is not None:
            logger.warning(
                "progress.reset",
                source=source_key,
                previous_start_time=_format_time(stored_start),
                start_time=_format_time(start_time),
            )
        state._reset(start_time)
        return state

    def _reset(self, start_time: datetime) -> None:
        self._store.set(self._key(ID_NAME), "")
        self._store.set(self._key(CURSOR_NAME), "")
        self._store.set(self._key(START_TIME_NAME), _format_time(start_time))
        self._progress = Progress(start_time=start_time)
        logger.info(
            "progress.initialized",
            source=self._source_key,
            start_time=_format_time(start_time),
        )

    def advance(self, cursor: str, delivered_id: str) -> None:
        """Record a confirmed delivery.

        The ID is written before the cursor.  A crash between the two writes
        leaves the new ID paired with the previous cursor; that page precedes
        the delivered event's page, so a restart re-reads it and at worst
        re-delivers part of it.
        """
        try:
            self._store.set(self._key(ID_NAME), delivered_id)
            self._store.set(self._key(CURSOR_NAME), cursor)
        except CheckpointError:
            logger.error(
                "progress.write_failed",
                source=self._source_key,
                cursor=cursor,
                id=delivered_id,
            )
            raise
        self._progress.last_delivered_id = delivered_id
        self._progress.cursor = cursor
