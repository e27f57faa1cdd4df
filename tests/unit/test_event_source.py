"""Unit tests for the resumable audit event source."""

from __future__ import annotations

from datetime import UTC, datetime

import httpx
import pytest
from fakes import START, FakeSearchClient, ev

from audit_shipper.sources.audit_log import AuditEventSource, SourceState

NOW = datetime(2024, 2, 1, tzinfo=UTC)


def _source(
    client: FakeSearchClient,
    *,
    cursor: str = "",
    last_id: str = "",
    batch_size: int = 20,
    types: list[str] | None = None,
) -> AuditEventSource:
    return AuditEventSource(
        client,
        start_time=START,
        namespace="default",
        types=types,
        batch_size=batch_size,
        cursor=cursor,
        last_delivered_id=last_id,
        clock=lambda: NOW,
    )


async def _drain(source: AuditEventSource) -> list[str]:
    ids = []
    while (event := await source.next()) is not None:
        ids.append(event.id)
    return ids


@pytest.mark.asyncio
class TestFetch:
    async def test_initial_state_is_empty(self, fake_client: FakeSearchClient):
        assert _source(fake_client).state is SourceState.EMPTY

    async def test_query_parameters(self, fake_client: FakeSearchClient):
        fake_client.pages[""] = ([ev("a")], "")
        source = _source(fake_client, batch_size=7, types=["user.login"])

        await source.next()

        call = fake_client.calls[0]
        assert call["from_time"] == START
        assert call["to_time"] == NOW
        assert call["namespace"] == "default"
        assert call["types"] == ["user.login"]
        assert call["limit"] == 7
        assert call["cursor"] == ""

    async def test_returns_events_in_order(self, fake_client: FakeSearchClient):
        fake_client.pages[""] = ([ev("a"), ev("b"), ev("c")], "")
        source = _source(fake_client)

        assert await _drain(source) == ["a", "b", "c"]
        assert fake_client.cursors == ["", ""]

    async def test_loaded_page_served_without_refetch(
        self, fake_client: FakeSearchClient
    ):
        fake_client.pages[""] = ([ev("a"), ev("b")], "")
        source = _source(fake_client)

        await source.next()
        assert source.state is SourceState.LOADED
        await source.next()
        assert source.state is SourceState.PAGE_EXHAUSTED
        assert len(fake_client.calls) == 1

    async def test_events_carry_cursor_of_their_page(
        self, fake_client: FakeSearchClient
    ):
        fake_client.pages["p1"] = ([ev("a")], "p2")
        fake_client.pages["p2"] = ([ev("b")], "")
        source = _source(fake_client, cursor="p1")

        first = await source.next()
        second = await source.next()

        assert first is not None and first.cursor == "p1"
        assert second is not None and second.cursor == "p2"

    async def test_in_memory_last_id_advances(self, fake_client: FakeSearchClient):
        fake_client.pages[""] = ([ev("a"), ev("b")], "")
        source = _source(fake_client)

        await source.next()
        assert source.last_delivered_id == "a"
        await source.next()
        assert source.last_delivered_id == "b"


@pytest.mark.asyncio
class TestEmptyPages:
    async def test_empty_source_reports_no_event(self, fake_client: FakeSearchClient):
        source = _source(fake_client)
        assert await source.next() is None
        assert len(fake_client.calls) == 1

    async def test_empty_page_does_not_advance_cursor(
        self, fake_client: FakeSearchClient
    ):
        fake_client.pages["p1"] = ([], "p2")
        source = _source(fake_client, cursor="p1")

        assert await source.next() is None
        assert source.cursor == "p1"
        assert await source.next() is None
        assert fake_client.cursors == ["p1", "p1"]

    async def test_new_events_on_same_page_are_picked_up(
        self, fake_client: FakeSearchClient
    ):
        fake_client.pages[""] = ([ev("a")], "")
        source = _source(fake_client)

        assert await _drain(source) == ["a"]

        fake_client.pages[""] = ([ev("a"), ev("b")], "")
        assert await _drain(source) == ["b"]
        assert source.cursor == ""

    async def test_tail_page_is_not_flipped_without_next_cursor(
        self, fake_client: FakeSearchClient
    ):
        fake_client.pages["p3"] = ([ev("x")], "")
        source = _source(fake_client, cursor="p3", last_id="x")

        assert await source.next() is None
        assert source.cursor == "p3"
        assert fake_client.cursors == ["p3"]


@pytest.mark.asyncio
class TestResume:
    async def test_resume_mid_page_skips_delivered(self, fake_client: FakeSearchClient):
        # a, b delivered before the crash; c was not.
        fake_client.pages[""] = ([ev("a"), ev("b"), ev("c")], "p2")
        source = _source(fake_client, cursor="", last_id="b")

        event = await source.next()

        assert event is not None and event.id == "c"
        assert fake_client.cursors == [""]

    async def test_resume_never_returns_last_delivered_id(
        self, fake_client: FakeSearchClient
    ):
        fake_client.pages[""] = ([ev("a"), ev("b"), ev("c")], "")
        for delivered in ("a", "b", "c"):
            client = FakeSearchClient(dict(fake_client.pages))
            ids = await _drain(_source(client, last_id=delivered))
            assert delivered not in ids

    async def test_unknown_last_id_starts_from_page_head(
        self, fake_client: FakeSearchClient
    ):
        # The delivered event aged off the source: nothing can be skipped.
        fake_client.pages[""] = ([ev("d"), ev("e")], "")
        source = _source(fake_client, last_id="gone")

        assert await _drain(source) == ["d", "e"]

    async def test_fully_delivered_page_flips_within_one_call(
        self, fake_client: FakeSearchClient
    ):
        fake_client.pages[""] = ([ev("a")], "p2")
        fake_client.pages["p2"] = ([ev("b"), ev("c")], "")
        source = _source(fake_client, last_id="a")

        event = await source.next()

        assert event is not None and event.id == "b"
        assert event.cursor == "p2"
        assert source.cursor == "p2"
        assert fake_client.cursors == ["", "p2"]

    async def test_flip_to_empty_next_page_reports_no_event(
        self, fake_client: FakeSearchClient
    ):
        fake_client.pages[""] = ([ev("a")], "p2")
        source = _source(fake_client, last_id="a")

        assert await source.next() is None
        assert source.cursor == "p2"
        # Next poll stays on p2 rather than going back
        assert await source.next() is None
        assert fake_client.cursors == ["", "p2", "p2"]

    async def test_exhausted_in_memory_page_refetches_then_flips(
        self, fake_client: FakeSearchClient
    ):
        fake_client.pages[""] = ([ev("a")], "p2")
        fake_client.pages["p2"] = ([ev("b")], "")
        source = _source(fake_client)

        first = await source.next()
        second = await source.next()

        assert first is not None and first.id == "a"
        assert second is not None and second.id == "b"
        assert fake_client.cursors == ["", "", "p2"]

    async def test_walks_cursor_chain_in_order(self, fake_client: FakeSearchClient):
        fake_client.pages[""] = ([ev("1"), ev("2")], "p2")
        fake_client.pages["p2"] = ([ev("3"), ev("4")], "p3")
        fake_client.pages["p3"] = ([ev("5")], "")
        source = _source(fake_client, batch_size=2)

        assert await _drain(source) == ["1", "2", "3", "4", "5"]
        assert source.cursor == "p3"


@pytest.mark.asyncio
class TestErrors:
    async def test_fetch_error_propagates_unchanged(
        self, fake_client: FakeSearchClient
    ):
        error = httpx.ConnectError("connection refused")
        fake_client.errors.append(error)
        source = _source(fake_client)

        with pytest.raises(httpx.ConnectError) as exc_info:
            await source.next()
        assert exc_info.value is error
        assert len(fake_client.calls) == 1

    async def test_state_intact_after_fetch_error(self, fake_client: FakeSearchClient):
        fake_client.pages[""] = ([ev("a"), ev("b")], "")
        fake_client.errors.append(httpx.ReadTimeout("timeout"))
        source = _source(fake_client, last_id="a")

        with pytest.raises(httpx.ReadTimeout):
            await source.next()
        assert source.state is SourceState.EMPTY

        event = await source.next()
        assert event is not None and event.id == "b"

    async def test_close_closes_client(self, fake_client: FakeSearchClient):
        await _source(fake_client).close()
        assert fake_client.closed


def test_invalid_batch_size(fake_client: FakeSearchClient):
    with pytest.raises(ValueError, match="batch_size"):
        _source(fake_client, batch_size=0)
