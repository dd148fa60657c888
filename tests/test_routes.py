"""Tests for the HTTP surface: webhooks, manual sync, status."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from order_bridge.core.errors import RequestError
from order_bridge.server.app import create_app
from order_bridge.services.sync_session import PollCycleResult


@pytest.fixture
def session():
    session = MagicMock()
    session.poll_in_progress = False
    session.store.health_check = AsyncMock(return_value=True)
    session.webhooks.handle = AsyncMock(return_value={"event_type": "fulfillment_shipped_v2", "status": "reported"})
    session.run_poll_cycle = AsyncMock(return_value=PollCycleResult(started_at="2026-03-02T15:30:00+00:00"))
    session.ledger.summary = AsyncMock(return_value={"totalTracked": 1, "reported": 1, "recent": []})
    session.status = AsyncMock(return_value={"stream": {"initialized": True}, "pollInProgress": False, "lastCycle": None})
    session.shipstation.list_webhooks = AsyncMock(
        return_value=[{"event": "fulfillment_shipped_v2"}, {"event": "track_event_v2"}]
    )
    session.aclose = AsyncMock()
    return session


@pytest.fixture
def client(session):
    with TestClient(create_app(session=session, start_scheduler=False)) as test_client:
        yield test_client


class TestWebhookEndpoint:

    def test_empty_200_and_processed(self, client, session):
        """The sender gets an empty 200; processing happens after the response."""
        payload = {"event": "fulfillment_shipped_v2", "data": {"shipment_id": "SHIP-9"}}

        response = client.post("/api/shipstation/webhooks/v2", json=payload)

        assert response.status_code == 200
        assert response.content == b""
        session.webhooks.handle.assert_awaited_once_with(payload)

    def test_legacy_path(self, client, session):
        response = client.post(
            "/api/shipstation/webhooks",
            json={"resource_url": "https://x/v2/shipments/se-1", "resource_type": "FULFILLMENT_SHIPPED_V2"},
        )

        assert response.status_code == 200
        session.webhooks.handle.assert_awaited_once()

    def test_invalid_json_still_200(self, client, session):
        response = client.post(
            "/api/shipstation/webhooks/v2", content=b"not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 200
        assert response.content == b""
        session.webhooks.handle.assert_not_awaited()

    def test_processing_error_still_200(self, client, session):
        session.webhooks.handle.side_effect = RuntimeError("boom")

        response = client.post("/api/shipstation/webhooks/v2", json={"event": "fulfillment_shipped_v2"})

        assert response.status_code == 200
        assert response.content == b""


class TestSyncEndpoints:

    def test_run_sync(self, client, session):
        response = client.post("/api/sync/run")

        assert response.status_code == 200
        assert response.json()["success"] is True
        session.run_poll_cycle.assert_awaited_once()

    def test_run_sync_fatal_is_500(self, client, session):
        session.run_poll_cycle.return_value = PollCycleResult(
            started_at="t", fatal="Credential exchange rejected", fatal_type="AuthError"
        )

        response = client.post("/api/sync/run")

        assert response.status_code == 500
        assert response.json()["fatal_type"] == "AuthError"

    def test_run_sync_conflict(self, client, session):
        session.poll_in_progress = True

        response = client.post("/api/sync/run")

        assert response.status_code == 409
        session.run_poll_cycle.assert_not_awaited()

    def test_status(self, client):
        response = client.get("/api/sync/status")

        assert response.status_code == 200
        body = response.json()
        assert body["stream"] == {"initialized": True}
        assert body["nextScheduledPoll"] is None

    def test_tracking_summary(self, client, session):
        response = client.get("/api/tracking?recent=3")

        assert response.json()["totalTracked"] == 1
        session.ledger.summary.assert_awaited_once_with(recent=3)


class TestServiceEndpoints:

    def test_health(self, client):
        body = client.get("/health").json()

        assert body["status"] == "healthy"
        assert body["scheduler"] == "stopped"

    def test_root(self, client):
        assert client.get("/").json()["service"] == "Order Bridge"

    def test_webhook_subscriptions_filtered(self, client):
        body = client.get("/api/shipstation/webhooks?event=track_event_v2").json()

        assert body == {"webhooks": [{"event": "track_event_v2"}], "count": 1}

    def test_webhook_subscriptions_error(self, client, session):
        session.shipstation.list_webhooks.side_effect = RequestError("forbidden", status_code=403)

        response = client.get("/api/shipstation/webhooks")

        assert response.status_code == 502
        assert response.json()["type"] == "RequestError"

    def test_session_closed_on_shutdown(self, session):
        with TestClient(create_app(session=session, start_scheduler=False)):
            pass

        session.aclose.assert_awaited_once()
