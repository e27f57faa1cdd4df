from __future__ import annotations

import logging

import pytest
import structlog
from fakes import FakeSearchClient, RecordingSink


@pytest.fixture(autouse=True)
def _reset_logging():
    """Undo configure_logging() calls made by a test."""
    yield
    structlog.reset_defaults()
    root = logging.getLogger()
    for handler in list(root.handlers):
        if type(handler) is logging.StreamHandler:
            root.removeHandler(handler)


@pytest.fixture
def fake_client() -> FakeSearchClient:
    return FakeSearchClient()


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()
