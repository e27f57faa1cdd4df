"""HTTPS log collector sinks."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from audit_shipper.config.models import CollectorConfig
from audit_shipper.tls import build_ssl_context

logger = structlog.get_logger()


class CollectorSink:
    """POSTs each event as JSON to the collector over client-certificate TLS."""

    def __init__(
        self,
        config: CollectorConfig,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._client: httpx.AsyncClient | None = client

    @property
    def sink_id(self) -> str:
        return "collector"

    async def start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                verify=build_ssl_context(
                    cert=self._config.cert,
                    key=self._config.key,
                    ca=self._config.ca,
                ),
                timeout=httpx.Timeout(self._config.timeout_seconds),
            )
        logger.info("collector_sink.started", url=self._config.url)

    async def send(self, obj: Any) -> None:
        if self._client is None:
            msg = "CollectorSink not started; call start() first"
            raise RuntimeError(msg)

        logger.debug("collector_sink.payload", payload=obj)
        response = await self._client.post(self._config.url, json=obj)
        response.raise_for_status()

    async def stop(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        logger.info("collector_sink.stopped")


class DryRunSink:
    """Logs events instead of sending them."""

    def __init__(self) -> None:
        self.sent = 0

    @property
    def sink_id(self) -> str:
        return "dry-run"

    async def start(self) -> None:
        logger.warning("dry_run_sink.started", detail="events are not sent")

    async def send(self, obj: Any) -> None:
        self.sent += 1
        logger.debug("dry_run_sink.event", payload=obj)

    async def stop(self) -> None:
        logger.info("dry_run_sink.stopped", sent=self.sent)
