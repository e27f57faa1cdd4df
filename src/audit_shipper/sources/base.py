"""Audit event envelope and the search-events protocol.

Defines AuditEvent (one event as seen by the pipeline) and SearchEventsClient
(the paginated search capability every audit log transport must provide).
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

# Field names of the audit event JSON encoding
ID_FIELD = "uid"
TYPE_FIELD = "event"
TIME_FIELD = "time"
INDEX_FIELD = "ei"


def _parse_time(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def event_id(payload: dict[str, Any]) -> str:
    """Return the event ID, hashing the event when the source left it blank."""
    value = payload.get(ID_FIELD)
    if value:
        return str(value)
    data = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


@dataclass(slots=True, eq=False)
class AuditEvent:
    """One audit event together with the cursor of the page it came from.

    Two events are equal when their IDs are equal.
    """

    id: str
    type: str
    time: datetime | None
    cursor: str  # cursor used to fetch the page holding this event
    index: int = 0
    payload: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_raw(cls, payload: dict[str, Any], cursor: str) -> AuditEvent:
        index = payload.get(INDEX_FIELD, 0)
        return cls(
            id=event_id(payload),
            type=str(payload.get(TYPE_FIELD, "")),
            time=_parse_time(payload.get(TIME_FIELD)),
            cursor=cursor,
            index=index if isinstance(index, int) else 0,
            payload=payload,
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AuditEvent):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)


@dataclass(frozen=True, slots=True)
class EventPage:
    """One fetch worth of events plus the cursor for the following page."""

    events: tuple[AuditEvent, ...]
    next_cursor: str

    def __len__(self) -> int:
        return len(self.events)

    def find(self, event_id: str) -> int | None:
        """Return the index of the event with *event_id*, if it is on this page."""
        for i, event in enumerate(self.events):
            if event.id == event_id:
                return i
        return None


@runtime_checkable
class SearchEventsClient(Protocol):
    """Paginated, time-bounded search over the remote audit log.

    Implementations must return the same page for the same
    ``(cursor, limit)`` until new events land on it.
    """

    async def search_events(
        self,
        from_time: datetime,
        to_time: datetime,
        namespace: str,
        types: list[str],
        limit: int,
        cursor: str,
    ) -> tuple[list[dict[str, Any]], str]:
        """Return ``(events, next_cursor)`` for the page at *cursor*."""
        ...

    async def close(self) -> None:
        """Release transport resources."""
        ...
