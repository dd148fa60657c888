"""Tests for the change feed cursor."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from order_bridge.core.errors import OrderBridgeError, TransientNetworkError
from order_bridge.services.change_feed import (
    CURSOR_KEY,
    ChangeEvent,
    ChangeFeedCursor,
    CursorState,
    StreamCursor,
)
from order_bridge.store.file_store import MemoryStateStore

STREAM = {"id": "stream-1", "partitions": [{"partitionId": 0, "position": "50"}]}


def fake_rithum(events=None, stream=STREAM):
    client = MagicMock()
    client.get_stream = AsyncMock(return_value=stream)
    client.create_order_stream = AsyncMock(return_value={"id": "stream-new", "partitions": []})
    client.get_stream_events = AsyncMock(return_value={"events": events or []})
    client.get_order_by_id = AsyncMock(return_value=None)
    return client


def store_with_cursor(stream_id="stream-1", position="100"):
    return MemoryStateStore({CURSOR_KEY: {"streamId": stream_id, "position": position, "updatedAt": None}})


class TestStreamCursor:
    """Persisted cursor record."""

    def test_reads_legacy_last_position(self):
        """Older files stored the position as lastPosition."""
        cursor = StreamCursor.from_dict({"streamId": "s", "lastPosition": "42"})
        assert cursor.position == "42"

    def test_round_trip_keys(self):
        """The persisted shape is {streamId, position, updatedAt}."""
        data = StreamCursor("s", "7", "2026-01-01T00:00:00+00:00").to_dict()
        assert data == {"streamId": "s", "position": "7", "updatedAt": "2026-01-01T00:00:00+00:00"}


class TestChangeEvent:
    """Event parsing and filtering."""

    def test_order_id_prefers_payload(self):
        """payload.dscoOrderId wins over objectId."""
        event = ChangeEvent.from_api({"id": "1", "eventReasons": ["create"], "objectId": "X", "payload": {"dscoOrderId": 9}})
        assert event.order_id == "9"

    def test_order_id_falls_back_to_object_id(self):
        event = ChangeEvent.from_api({"id": "1", "reasons": ["create"], "objectId": "X1"})
        assert event.order_id == "X1"

    def test_lifecycle_filter_requires_payload(self):
        """A lifecycle filter only matches events whose payload carries that lifecycle."""
        with_payload = ChangeEvent("1", ["create"], "X", {"dscoLifecycle": "acknowledged"})
        without_payload = ChangeEvent("2", ["create"], "Y")

        assert with_payload.matches(["create"], "acknowledged")
        assert not with_payload.matches(["create"], "completed")
        assert not without_payload.matches(["create"], "acknowledged")


class TestInitialize:
    """UNINITIALIZED -> INITIALIZING -> ACTIVE."""

    @pytest.mark.asyncio
    async def test_creates_stream_when_none_persisted(self, clock):
        """With no cursor file a new stream is created and saved without a position."""
        store = MemoryStateStore()
        client = fake_rithum()
        cursor = ChangeFeedCursor(client, store, clock=clock)

        await cursor.initialize()

        assert cursor.state == CursorState.ACTIVE
        client.create_order_stream.assert_awaited_once()
        saved = await store.get(CURSOR_KEY)
        assert saved["streamId"] == "stream-new"
        assert saved["position"] is None

    @pytest.mark.asyncio
    async def test_reuses_verified_stream(self, clock):
        """A persisted stream that still exists is kept with its position."""
        client = fake_rithum()
        cursor = ChangeFeedCursor(client, store_with_cursor(), clock=clock)

        await cursor.initialize()

        assert cursor.cursor.stream_id == "stream-1"
        assert cursor.cursor.position == "100"
        client.create_order_stream.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_recreates_stream_when_verification_fails(self, clock):
        """A missing remote stream is replaced by a new one; the old position is dropped."""
        client = fake_rithum(stream=None)
        store = store_with_cursor()
        cursor = ChangeFeedCursor(client, store, clock=clock)

        await cursor.initialize()

        assert cursor.cursor.stream_id == "stream-new"
        assert cursor.cursor.position is None
        assert (await store.get(CURSOR_KEY))["streamId"] == "stream-new"

    @pytest.mark.asyncio
    async def test_verification_error_counts_as_missing(self, clock):
        """An API error while verifying leads to a new stream too."""
        client = fake_rithum()
        client.get_stream = AsyncMock(side_effect=TransientNetworkError("down"))
        cursor = ChangeFeedCursor(client, store_with_cursor(), clock=clock)

        await cursor.initialize()

        assert cursor.cursor.stream_id == "stream-new"

    @pytest.mark.asyncio
    async def test_failed_creation_resets_state(self, clock):
        """If stream creation fails the cursor goes back to UNINITIALIZED."""
        client = fake_rithum()
        client.create_order_stream = AsyncMock(side_effect=TransientNetworkError("down"))
        cursor = ChangeFeedCursor(client, MemoryStateStore(), clock=clock)

        with pytest.raises(TransientNetworkError):
            await cursor.initialize()

        assert cursor.state == CursorState.UNINITIALIZED


class TestPoll:
    """Polling and cursor advance."""

    @pytest.mark.asyncio
    async def test_advances_to_last_unfiltered_event(self, clock):
        """Matched ids come from the filter; the new position is the last event overall."""
        events = [
            {"id": "101", "reasons": ["create"], "objectId": "X1"},
            {"id": "102", "reasons": ["update"], "objectId": "X1"},
        ]
        client = fake_rithum(events)
        store = store_with_cursor(position="100")
        cursor = ChangeFeedCursor(client, store, clock=clock)

        result = await cursor.poll(event_reasons=["create"])

        assert result.object_ids == ["X1"]
        assert result.position == "102"
        assert result.previous_position == "100"
        assert result.position_saved
        client.get_stream_events.assert_awaited_once_with("stream-1", 0, "100")
        assert (await store.get(CURSOR_KEY))["position"] == "102"

    @pytest.mark.asyncio
    async def test_poll_without_new_events_is_a_no_op(self, clock):
        """Polling with no events leaves the persisted cursor untouched."""
        client = fake_rithum([])
        store = store_with_cursor(position="100")
        before = await store.get(CURSOR_KEY)
        cursor = ChangeFeedCursor(client, store, clock=clock)

        first = await cursor.poll()
        second = await cursor.poll()

        assert not first.position_saved
        assert not second.position_saved
        assert first.position == second.position == "100"
        assert await store.get(CURSOR_KEY) == before

    @pytest.mark.asyncio
    async def test_starts_from_partition_position(self, clock):
        """A fresh cursor starts at the partition's reported position."""
        client = fake_rithum([])
        cursor = ChangeFeedCursor(client, store_with_cursor(position=None), clock=clock)

        await cursor.poll()

        client.get_stream_events.assert_awaited_once_with("stream-1", 0, "50")

    @pytest.mark.asyncio
    async def test_starts_from_sentinel_without_positions(self, clock):
        """Neither cursor nor partition position: start at the sentinel."""
        stream = {"id": "stream-1", "partitions": [{"partitionId": 0}]}
        client = fake_rithum([], stream=stream)
        cursor = ChangeFeedCursor(client, store_with_cursor(position=None), clock=clock)

        await cursor.poll()

        client.get_stream_events.assert_awaited_once_with("stream-1", 0, "0")

    @pytest.mark.asyncio
    async def test_missing_partitions_raise(self, clock):
        """A stream without partitions cannot be polled."""
        client = fake_rithum()
        cursor = ChangeFeedCursor(client, store_with_cursor(), clock=clock)
        await cursor.initialize()
        client.get_stream = AsyncMock(return_value={"id": "stream-1", "partitions": []})

        with pytest.raises(OrderBridgeError):
            await cursor.poll()
        assert cursor.state == CursorState.UNINITIALIZED

    @pytest.mark.asyncio
    async def test_position_from_partition_when_last_event_has_no_id(self, clock):
        """Without an event id the refreshed partition position is used."""
        client = fake_rithum([{"reasons": ["create"], "objectId": "X1"}])
        client.get_stream = AsyncMock(
            side_effect=[STREAM, {"id": "stream-1", "partitions": [{"partitionId": 0, "position": "120"}]}]
        )
        cursor = ChangeFeedCursor(client, store_with_cursor(position="100"), clock=clock)
        cursor.state = CursorState.ACTIVE
        cursor.cursor = StreamCursor("stream-1", "100")

        result = await cursor.poll()

        assert result.position == "120"

    @pytest.mark.asyncio
    async def test_order_details_fetch_missing_line_items(self, clock):
        """Events whose payload lacks line items get the full order fetched."""
        events = [
            {"id": "101", "reasons": ["create"], "objectId": "X1", "payload": {"dscoOrderId": "X1"}},
            {"id": "102", "reasons": ["create"], "objectId": "X2"},
        ]
        client = fake_rithum(events)
        client.get_order_by_id = AsyncMock(side_effect=[{"dscoOrderId": "X1", "lineItems": [{"sku": "A"}]}, None])
        cursor = ChangeFeedCursor(client, store_with_cursor(), clock=clock)

        result = await cursor.poll(include_order_details=True)

        assert result.order_details[0]["lineItems"] == [{"sku": "A"}]
        assert result.order_details[1]["fetchError"] == "Order X2 not found"

    @pytest.mark.asyncio
    async def test_status_reports_stream(self, clock):
        client = fake_rithum()
        cursor = ChangeFeedCursor(client, store_with_cursor(), clock=clock)

        status = await cursor.status()

        assert status["initialized"] is True
        assert status["streamId"] == "stream-1"
        assert status["position"] == "100"
