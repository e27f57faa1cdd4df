"""Sink factory: picks the collector or dry-run sink from configuration."""

from __future__ import annotations

from audit_shipper.config.models import ShipperConfig
from audit_shipper.sinks.base import EventSink
from audit_shipper.sinks.collector import CollectorSink, DryRunSink


def create_sink(config: ShipperConfig) -> EventSink:
    """Create the event sink for this run."""
    if config.dry_run:
        return DryRunSink()
    return CollectorSink(config.collector)
