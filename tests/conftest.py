"""Shared fixtures for order_bridge tests."""

import copy
from datetime import datetime, timezone
from typing import Any, Dict, List

import pytest

from order_bridge.store.file_store import MemoryStateStore

FIXED_NOW = datetime(2026, 3, 2, 15, 30, tzinfo=timezone.utc)


class Sleeper:
    """Records requested delays instead of sleeping."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def sleeper() -> Sleeper:
    return Sleeper()


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def memory_store() -> MemoryStateStore:
    return MemoryStateStore()


RITHUM_ORDER: Dict[str, Any] = {
    "dscoOrderId": "123",
    "poNumber": "PO-123",
    "dscoStatus": "shipment_pending",
    "dscoLifecycle": "acknowledged",
    "channel": "Marketplace",
    "consumerOrderDate": "2026-03-01T10:00:00Z",
    "currencyCode": "usd",
    "extendedExpectedCostTotal": 40.0,
    "shippingSurcharge": 5.0,
    "requestedShipCarrier": "USPS",
    "requestedShipMethod": "Ground",
    "requestedShippingServiceLevelCode": "GCG",
    "shipping": {
        "firstName": "Ada",
        "lastName": "Lovelace",
        "address1": "1 Main St",
        "address2": "Apt 4",
        "city": "Springfield",
        "state": "IL",
        "postal": "62701",
        "country": "US",
        "phone": "555-0100",
        "email": "ada@example.com",
    },
    "lineItems": [
        {
            "dscoItemId": "LI-1",
            "sku": "SKU-1",
            "title": "Widget",
            "quantity": 2,
            "expectedCost": 20.0,
            "weight": 8,
            "weightUnits": "oz",
        }
    ],
}


@pytest.fixture
def rithum_order() -> Dict[str, Any]:
    return copy.deepcopy(RITHUM_ORDER)
