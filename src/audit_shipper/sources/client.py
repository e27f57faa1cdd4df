"""HTTPS client for the remote audit log search API."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import httpx
import structlog

from audit_shipper.config.models import SourceConfig
from audit_shipper.tls import build_ssl_context

logger = structlog.get_logger()

SEARCH_PATH = "/v1/events/search"


class SearchEventsError(Exception):
    """Raised when the audit log returns a malformed search response."""


def _rfc3339(t: datetime) -> str:
    if t.tzinfo is None:
        t = t.replace(tzinfo=UTC)
    return t.astimezone(UTC).isoformat().replace("+00:00", "Z")


class AuditLogClient:
    """Thin async wrapper around the audit log search endpoint.

    Transport errors and non-2xx responses propagate as ``httpx`` exceptions;
    retrying them is the delivery loop's job.
    """

    def __init__(
        self,
        config: SourceConfig,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        if client is None:
            client = httpx.AsyncClient(
                base_url=f"https://{config.addr}",
                verify=build_ssl_context(
                    cert=config.cert,
                    key=config.key,
                    ca=config.ca,
                    identity_file=config.identity_file,
                ),
                timeout=config.timeout_seconds,
            )
        self._client = client

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> AuditLogClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def search_events(
        self,
        from_time: datetime,
        to_time: datetime,
        namespace: str,
        types: list[str],
        limit: int,
        cursor: str,
    ) -> tuple[list[dict[str, Any]], str]:
        params: list[tuple[str, str | int]] = [
            ("from", _rfc3339(from_time)),
            ("to", _rfc3339(to_time)),
            ("namespace", namespace),
            ("limit", limit),
        ]
        params.extend(("event_type", t) for t in types)
        if cursor:
            params.append(("start_key", cursor))

        resp = await self._client.get(SEARCH_PATH, params=params)
        resp.raise_for_status()

        try:
            body = resp.json()
        except ValueError as exc:
            msg = f"Search response is not valid JSON: {exc}"
            raise SearchEventsError(msg) from exc
        if not isinstance(body, dict):
            msg = f"Expected a JSON object from search, got {type(body).__name__}"
            raise SearchEventsError(msg)

        events = body.get("events") or []
        if not isinstance(events, list) or not all(isinstance(e, dict) for e in events):
            msg = "Search response 'events' must be a list of objects"
            raise SearchEventsError(msg)
        next_key = body.get("next_key") or ""

        logger.debug(
            "audit_log.searched",
            cursor=cursor,
            next_cursor=next_key,
            count=len(events),
        )
        return events, str(next_key)
