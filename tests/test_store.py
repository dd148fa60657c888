"""Tests for the state stores and the shipment ledger."""

import asyncio
import json

import pytest

from order_bridge.models.tracking import ReportStatus, TrackedShipment
from order_bridge.store.file_store import JSONFileStore, MemoryStateStore
from order_bridge.store.ledger import LEDGER_KEY, ShipmentLedger


class TestJSONFileStore:

    @pytest.mark.asyncio
    async def test_missing_key_is_none(self, tmp_path):
        store = JSONFileStore(base_dir=str(tmp_path))
        assert await store.get("stream_cursor") is None

    @pytest.mark.asyncio
    async def test_put_then_get(self, tmp_path):
        store = JSONFileStore(base_dir=str(tmp_path))

        await store.put("stream_cursor", {"streamId": "X1", "position": "102"})

        assert await store.get("stream_cursor") == {"streamId": "X1", "position": "102"}
        assert json.loads((tmp_path / "stream_cursor.json").read_text()) == {"streamId": "X1", "position": "102"}

    @pytest.mark.asyncio
    async def test_explicit_file_mapping(self, tmp_path):
        target = tmp_path / "nested" / "stream-config.json"
        store = JSONFileStore(base_dir=str(tmp_path), files={"stream_cursor": str(target)})

        await store.put("stream_cursor", {"streamId": "X1"})

        assert target.exists()
        assert not list(target.parent.glob("*.tmp"))

    @pytest.mark.asyncio
    async def test_concurrent_updates_are_not_lost(self, tmp_path):
        """Every read-modify-write lands, even when started together."""
        store = JSONFileStore(base_dir=str(tmp_path))

        def append(value):
            def mutate(current):
                current = current or []
                current.append(value)
                return current
            return mutate

        await asyncio.gather(*(store.update("items", append(i)) for i in range(20)))

        assert sorted(await store.get("items")) == list(range(20))

    @pytest.mark.asyncio
    async def test_health_check(self, tmp_path):
        assert await JSONFileStore(base_dir=str(tmp_path / "state")).health_check()


class TestMemoryStateStore:

    @pytest.mark.asyncio
    async def test_returns_copies(self):
        store = MemoryStateStore({"k": {"a": 1}})

        value = await store.get("k")
        value["a"] = 2

        assert await store.get("k") == {"a": 1}


def shipped(shipment_id="SHIP-1", source="123", success=True, event="fulfillment_shipped_v2", tracking="TRK-1"):
    return TrackedShipment(
        shipment_id=shipment_id,
        source_order_id=source,
        tracking_number=tracking,
        webhook_event=event,
        report_status=ReportStatus(attempted=source is not None, success=success, tracking_number=tracking),
    )


class TestShipmentLedger:

    @pytest.mark.asyncio
    async def test_record_upserts_by_shipment_id(self, memory_store, clock):
        """Recording the same shipment twice leaves one row holding the latest write."""
        ledger = ShipmentLedger(memory_store, clock=clock)

        await ledger.record(shipped(success=False))
        await ledger.record(shipped(success=True))

        entries = await ledger.entries()
        assert len(entries) == 1
        assert entries[0].report_status.success

        data = await memory_store.get(LEDGER_KEY)
        assert data["totalTracked"] == 1
        assert data["lastUpdated"] is not None

    @pytest.mark.asyncio
    async def test_label_created_does_not_replace_shipped(self, memory_store, clock):
        ledger = ShipmentLedger(memory_store, clock=clock)
        await ledger.record(shipped())

        kept = await ledger.record(shipped(event="label_created_v2", tracking="TRK-2", success=False))

        assert kept.webhook_event == "fulfillment_shipped_v2"
        assert (await ledger.get("SHIP-1")).tracking_number == "TRK-1"

    @pytest.mark.asyncio
    async def test_shipped_replaces_label_created(self, memory_store, clock):
        ledger = ShipmentLedger(memory_store, clock=clock)
        await ledger.record(shipped(event="label_created_v2", success=False))

        await ledger.record(shipped())

        assert (await ledger.get("SHIP-1")).webhook_event == "fulfillment_shipped_v2"

    @pytest.mark.asyncio
    async def test_concurrent_records_keep_every_shipment(self, memory_store, clock):
        ledger = ShipmentLedger(memory_store, clock=clock)

        await asyncio.gather(*(ledger.record(shipped(shipment_id=f"SHIP-{i}")) for i in range(10)))

        assert len(await ledger.entries()) == 10

    @pytest.mark.asyncio
    async def test_summary_counts(self, memory_store, clock):
        ledger = ShipmentLedger(memory_store, clock=clock)
        await ledger.record(shipped(shipment_id="A"))
        await ledger.record(shipped(shipment_id="B", source=None, success=False))
        await ledger.record(shipped(shipment_id="C", success=False))

        summary = await ledger.summary(recent=2)

        assert summary["totalTracked"] == 3
        assert summary["reported"] == 1
        assert summary["unresolved"] == 1
        assert summary["failed"] == 1
        assert [row["shipment_id"] for row in summary["recent"]] == ["C", "B"]

    @pytest.mark.asyncio
    async def test_get_unknown(self, memory_store, clock):
        assert await ShipmentLedger(memory_store, clock=clock).get("nope") is None
