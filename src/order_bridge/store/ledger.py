"""Ledger of shipments already seen and reported, keyed by shipment_id."""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from order_bridge.config.constants import EVENT_LABEL_CREATED, FULFILLMENT_SHIPPED_ALIASES
from order_bridge.core.logger import setup_logger
from order_bridge.models.tracking import TrackedShipment
from order_bridge.store.base import StateStore

logger = setup_logger(__name__)

LEDGER_KEY = "shipment_ledger"


def _empty_ledger() -> Dict[str, Any]:
    return {"trackedShipments": [], "lastUpdated": None, "totalTracked": 0}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ShipmentLedger:
    """Durable, de-duplicated record of downstream shipments.

    Rows are upserted (last write wins) and never deleted. The one exception to
    last-write-wins: a label_created row never replaces a fulfillment_shipped row.
    """

    def __init__(self, store: StateStore, clock: Callable[[], datetime] = _utc_now):
        self.store = store
        self.clock = clock

    async def load(self) -> Dict[str, Any]:
        return await self.store.get(LEDGER_KEY) or _empty_ledger()

    async def entries(self) -> List[TrackedShipment]:
        data = await self.load()
        return [TrackedShipment.model_validate(row) for row in data.get("trackedShipments") or []]

    async def get(self, shipment_id: str) -> Optional[TrackedShipment]:
        for entry in await self.entries():
            if entry.shipment_id == shipment_id:
                return entry
        return None

    async def record(self, entry: TrackedShipment) -> TrackedShipment:
        """
        Upsert an entry by shipment_id under the store's atomic update.

        Returns:
            The entry now stored for that shipment_id
        """
        kept: Dict[str, TrackedShipment] = {}
        now = self.clock().isoformat()

        def mutate(data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
            data = data or _empty_ledger()
            rows = data.get("trackedShipments") or []
            new_row = entry.model_dump(mode="json")

            for index, row in enumerate(rows):
                if row.get("shipment_id") != entry.shipment_id:
                    continue
                if (
                    entry.webhook_event == EVENT_LABEL_CREATED
                    and row.get("webhook_event") in FULFILLMENT_SHIPPED_ALIASES
                ):
                    kept["entry"] = TrackedShipment.model_validate(row)
                else:
                    rows[index] = new_row
                break
            else:
                rows.append(new_row)

            data["trackedShipments"] = rows
            data["totalTracked"] = len(rows)
            data["lastUpdated"] = now
            return data

        await self.store.update(LEDGER_KEY, mutate)

        if "entry" in kept:
            logger.info(
                f"Shipment {entry.shipment_id} already recorded as shipped; label_created not applied"
            )
            return kept["entry"]
        return entry

    async def summary(self, recent: int = 5) -> Dict[str, Any]:
        """Counts by outcome plus the most recent rows."""
        data = await self.load()
        rows = data.get("trackedShipments") or []
        reported = sum(1 for r in rows if (r.get("report_status") or {}).get("success"))
        unresolved = sum(1 for r in rows if not r.get("source_order_id"))
        return {
            "totalTracked": len(rows),
            "reported": reported,
            "unresolved": unresolved,
            "failed": len(rows) - reported - unresolved,
            "lastUpdated": data.get("lastUpdated"),
            "recent": list(reversed(rows[-recent:])) if recent else [],
        }
