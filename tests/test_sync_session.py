"""Tests for poll cycle bookkeeping in SyncSession."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from order_bridge.config.settings import Settings
from order_bridge.core.errors import AuthError, OrderBridgeError
from order_bridge.services.change_feed import PollResult
from order_bridge.services.delivery import BatchDeliveryResult, DeliveryResult
from order_bridge.services.sync_session import SyncSession
from order_bridge.store.file_store import MemoryStateStore


@pytest.fixture
def session(clock):
    config = Settings(
        rithum_client_id="id", rithum_client_secret="secret", shipstation_api_key="key", sku_weights_file=None
    )
    return SyncSession.create(config, store=MemoryStateStore(), clock=clock)


def poll_result(orders):
    return PollResult(stream_id="X1", previous_position="100", position="104", order_details=orders)


class TestRunPollCycle:

    @pytest.mark.asyncio
    async def test_orders_are_sorted_into_outcomes(self, session, rithum_order):
        """Skipped, invalid, unfetched and rejected orders each land in their own bucket."""
        cancelled = {**rithum_order, "dscoOrderId": "200", "dscoLifecycle": "cancelled"}
        invalid = {**rithum_order, "dscoOrderId": "300", "lineItems": []}
        unfetched = {"id": "400", "fetchError": "Order 400 not found"}
        rejected = {**rithum_order, "dscoOrderId": "500"}

        session.cursor.poll = AsyncMock(return_value=poll_result([rithum_order, cancelled, invalid, unfetched, rejected]))
        session.submitter.create_orders = AsyncMock(return_value=BatchDeliveryResult(results=[
            DeliveryResult(order_number="123", success=True, order_ref={"shipment_id": "SHIP-9"}),
            DeliveryResult(order_number="500", success=False, error="rejected", error_type="DeliveryError"),
        ]))

        result = await session.run_poll_cycle()

        assert result.position == "104"
        assert result.mapped == 2
        assert result.created == [{"dscoOrderId": "123", "shipment_id": "SHIP-9"}]
        assert [s["dscoOrderId"] for s in result.skipped] == ["200"]
        assert [f["dscoOrderId"] for f in result.failed] == ["300", "400"]
        assert result.failed[0]["errors"] == ["Missing or empty lineItems array"]
        assert result.creation_failed[0]["dscoOrderId"] == "500"
        assert not result.success
        assert session.last_cycle is result

    @pytest.mark.asyncio
    async def test_auth_error_is_fatal(self, session):
        session.cursor.poll = AsyncMock(side_effect=AuthError("Credential exchange rejected (HTTP 401)"))

        result = await session.run_poll_cycle()

        assert result.fatal_type == "AuthError"
        assert result.completed_at is not None

    @pytest.mark.asyncio
    async def test_other_errors_reported_not_raised(self, session):
        session.cursor.poll = AsyncMock(side_effect=OrderBridgeError("Stream X1 not found or has no partitions"))

        result = await session.run_poll_cycle()

        assert result.fatal_type == "OrderBridgeError"
        assert "Stream X1 not found or has no partitions" in result.errors

    @pytest.mark.asyncio
    async def test_only_one_cycle_at_a_time(self, session):
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_poll(**kwargs):
            started.set()
            await release.wait()
            return poll_result([])

        session.cursor.poll = slow_poll
        first = asyncio.create_task(session.run_poll_cycle())
        await started.wait()

        assert session.poll_in_progress
        second = await session.run_poll_cycle()
        release.set()
        await first

        assert second.errors == ["Poll cycle already in progress"]
        assert not session.poll_in_progress

    @pytest.mark.asyncio
    async def test_status(self, session):
        session.cursor.status = AsyncMock(return_value={"initialized": False})

        status = await session.status()

        assert status == {"stream": {"initialized": False}, "pollInProgress": False, "lastCycle": None}
