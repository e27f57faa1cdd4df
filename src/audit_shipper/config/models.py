"""Pydantic configuration models for the audit shipper."""

from __future__ import annotations

import secrets
from datetime import UTC, datetime
from pathlib import Path
from typing import Literal, Self

from pydantic import BaseModel, Field, field_validator, model_validator


def _check_cert_pair(cert: str | None, key: str | None, where: str) -> None:
    if cert and not key:
        msg = f"{where}: cert provided with no private key"
        raise ValueError(msg)
    if key and not cert:
        msg = f"{where}: private key provided with no cert"
        raise ValueError(msg)


class SourceConfig(BaseModel):
    """Remote audit log (event source) connection and query settings.

    Credentials are either an ``identity_file`` (a PEM bundle holding both the
    client certificate and its key) or a ``cert``/``key`` pair.  ``ca`` is
    optional; the system trust store is used when it is not set.
    """

    addr: str
    identity_file: str | None = None
    cert: str | None = None
    key: str | None = None
    ca: str | None = None
    namespace: str = "default"
    # Empty list means "all event types"
    types: list[str] = Field(default_factory=list)
    batch_size: int = Field(default=20, ge=1)
    start_time: datetime | None = None
    timeout_seconds: float = Field(default=30.0, gt=0)

    @field_validator("addr")
    @classmethod
    def validate_addr(cls, v: str) -> str:
        host, sep, port = v.strip().rpartition(":")
        if not sep or not host or not port.isdigit():
            msg = f"addr '{v}' must be in 'host:port' form"
            raise ValueError(msg)
        return v.strip()

    @field_validator("start_time")
    @classmethod
    def normalize_start_time(cls, v: datetime | None) -> datetime | None:
        """Store start times as whole-second UTC datetimes."""
        if v is None:
            return None
        if v.tzinfo is None:
            v = v.replace(tzinfo=UTC)
        return v.astimezone(UTC).replace(microsecond=0)

    @model_validator(mode="after")
    def check_credentials(self) -> Self:
        _check_cert_pair(self.cert, self.key, "source")
        return self


class CollectorConfig(BaseModel):
    """HTTPS log collector (event sink) settings."""

    url: str
    cert: str | None = None
    key: str | None = None
    ca: str | None = None
    timeout_seconds: float = Field(default=30.0, gt=0)

    @model_validator(mode="after")
    def check_credentials(self) -> Self:
        _check_cert_pair(self.cert, self.key, "collector")
        return self


class StorageConfig(BaseModel):
    """Checkpoint storage settings."""

    dir: str


class RetryConfig(BaseModel):
    """Retry / backoff configuration for fetch and send calls."""

    max_attempts: int = Field(default=5, ge=1)
    initial_wait_seconds: float = Field(default=1.0, gt=0)
    max_wait_seconds: float = Field(default=10.0, gt=0)
    jitter: bool = True


class LoggingConfig(BaseModel):
    level: str = "info"
    format: Literal["console", "json"] = "console"

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.lower()
        if level not in ("debug", "info", "warning", "error", "critical"):
            msg = f"Unknown log level '{v}'"
            raise ValueError(msg)
        return level


class ShipperConfig(BaseModel, extra="forbid"):
    """Top-level shipper configuration."""

    source: SourceConfig
    collector: CollectorConfig
    storage: StorageConfig
    retry: RetryConfig = RetryConfig()
    logging: LoggingConfig = LoggingConfig()
    poll_timeout_seconds: float = Field(default=5.0, gt=0)
    # Events are read from the source but not sent; a separate storage is used
    dry_run: bool = False
    exit_on_last_event: bool = False

    def storage_dir(self) -> Path:
        """Return the checkpoint directory for this run.

        Dry runs get a fresh random sub-directory so they never read or
        overwrite the progress of a real run.
        """
        base = Path(self.storage.dir)
        if self.dry_run:
            return base / "dry_run" / secrets.token_hex(16)
        return base
