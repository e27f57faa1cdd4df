"""Delivery loop: audit log to collector, one event at a time."""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Awaitable, Callable
from contextlib import suppress
from typing import Any, TypeVar

import httpx
import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from audit_shipper.checkpoint.progress import ProgressState
from audit_shipper.checkpoint.store import FileCheckpointStore, source_key
from audit_shipper.config.models import ShipperConfig
from audit_shipper.sinks.base import EventSink
from audit_shipper.sinks.factory import create_sink
from audit_shipper.sources.audit_log import AuditEventSource
from audit_shipper.sources.base import AuditEvent
from audit_shipper.sources.client import AuditLogClient

logger = structlog.get_logger()

T = TypeVar("T")

RETRYABLE_ERRORS = (httpx.TransportError, httpx.HTTPStatusError)


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "shipper.retrying",
        attempt=retry_state.attempt_number,
        error=str(exc),
    )


class Shipper:
    """Pulls events from the source, sends them and records progress.

    Strictly sequential: an event is checkpointed only after the sink has
    accepted it, and the next event is not fetched before that.  Fetch or
    send failures that survive the retry policy, and checkpoint write
    failures, propagate out of :meth:`run`.
    """

    def __init__(
        self,
        config: ShipperConfig,
        source: AuditEventSource,
        sink: EventSink,
        progress: ProgressState,
        *,
        handle_signals: bool = True,
    ) -> None:
        self._config = config
        self._source = source
        self._sink = sink
        self._progress = progress
        self._handle_signals = handle_signals
        self._running = False
        self._stop_event: asyncio.Event | None = None
        self.delivered = 0

    @classmethod
    def from_config(cls, config: ShipperConfig) -> Shipper:
        """Wire the checkpoint store, progress, source client and sink."""
        store = FileCheckpointStore(config.storage_dir())
        key = source_key(config.source.addr)
        progress = ProgressState.load(store, key, config.source.start_time)

        source = AuditEventSource(
            AuditLogClient(config.source),
            start_time=progress.start_time,
            namespace=config.source.namespace,
            types=config.source.types,
            batch_size=config.source.batch_size,
            cursor=progress.cursor,
            last_delivered_id=progress.last_delivered_id,
        )
        logger.info(
            "shipper.configured",
            storage=str(store.directory),
            source=config.source.addr,
            collector=config.collector.url,
            batch=config.source.batch_size,
            namespace=config.source.namespace,
            types=config.source.types,
            dry_run=config.dry_run,
        )
        return cls(config, source, create_sink(config), progress)

    def start(self) -> None:
        """Run the delivery loop (blocking)."""
        asyncio.run(self.run())

    async def run(self) -> None:
        self._running = True
        self._stop_event = asyncio.Event()
        if self._handle_signals:
            self._install_signal_handlers()

        try:
            await self._sink.start()
            logger.info(
                "shipper.started",
                cursor=self._progress.cursor,
                id=self._progress.last_delivered_id,
                start_time=self._progress.start_time.isoformat(),
            )
            while self._running:
                event = await self._call_with_retry(self._source.next)
                if event is None:
                    if self._config.exit_on_last_event:
                        logger.info("shipper.drained")
                        break
                    await self._pause()
                    continue
                await self._deliver(event)
        finally:
            if self._handle_signals:
                self._remove_signal_handlers()
            try:
                await self._sink.stop()
            finally:
                await self._source.close()
            logger.info(
                "shipper.stopped",
                delivered=self.delivered,
                cursor=self._progress.cursor,
                id=self._progress.last_delivered_id,
                source_cursor=self._source.cursor,
                handed_out=self._source.last_delivered_id,
            )

    async def _deliver(self, event: AuditEvent) -> None:
        await self._call_with_retry(self._sink.send, event.payload)
        self._progress.advance(event.cursor, event.id)
        self.delivered += 1
        logger.info(
            "shipper.event_sent",
            id=event.id,
            type=event.type,
            ts=event.time.isoformat() if event.time else None,
            index=event.index,
        )

    async def _pause(self) -> None:
        """Sleep for the poll timeout, waking early on stop()."""
        timeout = self._config.poll_timeout_seconds
        logger.debug("shipper.idle", timeout=timeout)
        assert self._stop_event is not None
        with suppress(TimeoutError):
            await asyncio.wait_for(self._stop_event.wait(), timeout=timeout)

    async def _call_with_retry(
        self, fn: Callable[..., Awaitable[T]], *args: Any
    ) -> T:
        retry_cfg = self._config.retry

        @retry(
            stop=stop_after_attempt(retry_cfg.max_attempts),
            wait=wait_exponential_jitter(
                initial=retry_cfg.initial_wait_seconds,
                max=retry_cfg.max_wait_seconds,
                jitter=retry_cfg.initial_wait_seconds if retry_cfg.jitter else 0,
            ),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            before_sleep=_log_retry,
            reraise=True,
        )
        async def _call() -> T:
            return await fn(*args)

        return await _call()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            with suppress(NotImplementedError, RuntimeError):
                loop.add_signal_handler(signum, self._on_signal, signum)

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            with suppress(NotImplementedError, RuntimeError):
                loop.remove_signal_handler(signum)

    def _on_signal(self, signum: int) -> None:
        logger.info("shipper.shutdown_signal", signal=signum)
        self.stop()

    def stop(self) -> None:
        """Signal the loop to stop after the current fetch or send."""
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()
