"""File-per-key checkpoint store.

Every key is one file in a single flat directory; the file contents are the
raw string value.  The directory is owned by one shipper process.
"""

from __future__ import annotations

import os
import re
import tempfile
from contextlib import suppress
from pathlib import Path
from typing import Protocol, runtime_checkable

import structlog

logger = structlog.get_logger()

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]+$")


class CheckpointError(Exception):
    """Raised when a checkpoint value cannot be read or written."""


@runtime_checkable
class CheckpointStore(Protocol):
    """Durable string key/value storage for delivery progress."""

    def get(self, key: str) -> str | None:
        """Return the stored value, or ``None`` if the key was never set."""
        ...

    def set(self, key: str, value: str) -> None:
        """Durably store *value* under *key*."""
        ...


def source_key(addr: str) -> str:
    """Derive the checkpoint key prefix from a source ``host:port`` address."""
    host, _, port = addr.strip().rpartition(":")
    key = f"{host.strip('[]')}_{port}".strip()
    key = re.sub(r"[^A-Za-z0-9_.\-]", "_", key)
    if key.strip("_") == "":
        msg = f"Can not derive a checkpoint key from source address '{addr}'"
        raise ValueError(msg)
    return key


class FileCheckpointStore:
    """Stores each checkpoint key as a file under ``directory``."""

    def __init__(self, directory: str | Path) -> None:
        self._dir = Path(directory)
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            msg = f"Can not create checkpoint directory {self._dir}: {exc}"
            raise CheckpointError(msg) from exc

    @property
    def directory(self) -> Path:
        return self._dir

    def _path(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key) or key in (".", ".."):
            msg = f"Invalid checkpoint key '{key}'"
            raise ValueError(msg)
        return self._dir / key

    def get(self, key: str) -> str | None:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            msg = f"Can not read checkpoint '{key}' from {path}: {exc}"
            raise CheckpointError(msg) from exc

    def set(self, key: str, value: str) -> None:
        """Write *value* to a temp file and rename it over the key file."""
        path = self._path(key)
        try:
            fd, tmp = tempfile.mkstemp(dir=self._dir, prefix=f".{key}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(value)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp, path)
            except BaseException:
                with suppress(FileNotFoundError):
                    os.unlink(tmp)
                raise
        except OSError as exc:
            msg = f"Can not write checkpoint '{key}' to {path}: {exc}"
            raise CheckpointError(msg) from exc
        logger.debug("checkpoint.set", key=key, value=value)

    def keys(self) -> list[str]:
        """List stored keys, skipping in-flight temp files."""
        return sorted(
            p.name
            for p in self._dir.iterdir()
            if p.is_file() and not p.name.startswith(".")
        )

