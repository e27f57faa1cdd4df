"""Event sink protocol.

A sink accepts one JSON-serialisable object at a time and reports success by
returning and failure by raising.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class EventSink(Protocol):
    """Protocol that every log collector sink must satisfy."""

    @property
    def sink_id(self) -> str:
        """Identifier used in logs."""
        ...

    async def start(self) -> None:
        """Initialize resources (HTTP clients, etc.)."""
        ...

    async def send(self, obj: Any) -> None:
        """Transmit one object; raise if the collector did not accept it."""
        ...

    async def stop(self) -> None:
        """Release resources."""
        ...
