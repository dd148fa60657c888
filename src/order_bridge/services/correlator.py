"""
Reverse Correlator: ShipStation shipment -> Rithum dscoOrderId.

Orders created by this service carry the dscoOrderId as a shipment tag and as
custom_field2, so most shipments resolve from the first two extractors. The
parent order lookup and the id/number heuristics cover shipments created or
edited elsewhere.
"""

import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from order_bridge.api.shipstation_client import ShipStationClient
from order_bridge.core.errors import OrderBridgeError
from order_bridge.core.logger import setup_logger

logger = setup_logger(__name__)

NUMERIC_ID = re.compile(r"^\d+$")
# Test orders are created as 9{dscoOrderId}-{timestamp}
TEST_ORDER_ID = re.compile(r"^9(\d+)-\d+$")
SOURCE_MARKER = "dsco"

Extractor = Callable[[Dict[str, Any]], Optional[str]]


@dataclass
class CorrelationResult:
    source_order_id: Optional[str] = None
    method: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.source_order_id is not None


def _tag_name(tag: Any) -> str:
    if isinstance(tag, dict):
        return str(tag.get("name") or "")
    return str(tag or "")


def from_tags(entity: Dict[str, Any]) -> Optional[str]:
    """First tag that is purely numeric or mentions the source system."""
    for tag in entity.get("tags") or []:
        name = _tag_name(tag).strip()
        if NUMERIC_ID.match(name) or SOURCE_MARKER in name.lower():
            return name
    return None


def from_custom_field(entity: Dict[str, Any]) -> Optional[str]:
    value = (
        entity.get("customField2")
        or entity.get("custom_field2")
        or (entity.get("advanced_options") or {}).get("custom_field2")
    )
    return str(value) if value else None


def from_external_shipment_id(entity: Dict[str, Any]) -> Optional[str]:
    external_id = str(entity.get("external_shipment_id") or "")
    if NUMERIC_ID.match(external_id):
        return external_id
    match = TEST_ORDER_ID.match(external_id)
    return match.group(1) if match else None


def from_shipment_number(entity: Dict[str, Any]) -> Optional[str]:
    number = str(entity.get("shipment_number") or "")
    return number if NUMERIC_ID.match(number) else None


# Extractors that need no extra lookup, in priority order
DIRECT_EXTRACTORS: List[Tuple[str, Extractor]] = [
    ("tags", from_tags),
    ("custom_field", from_custom_field),
]

# Heuristics tried after the parent order lookup
FALLBACK_EXTRACTORS: List[Tuple[str, Extractor]] = [
    ("external_shipment_id", from_external_shipment_id),
    ("shipment_number", from_shipment_number),
]


def first_match(entity: Dict[str, Any], extractors: List[Tuple[str, Extractor]]) -> CorrelationResult:
    """Run extractors in order and return the first hit."""
    for method, extract in extractors:
        value = extract(entity)
        if value:
            return CorrelationResult(source_order_id=value, method=method)
    return CorrelationResult()


class ReverseCorrelator:
    """Ordered strategy chain; the first strategy that yields an id wins."""

    def __init__(self, shipstation: Optional[ShipStationClient] = None):
        self.shipstation = shipstation

    async def resolve(self, entity: Dict[str, Any]) -> CorrelationResult:
        result = first_match(entity, DIRECT_EXTRACTORS)
        if result.resolved:
            return result

        result = await self._from_parent_order(entity)
        if result.resolved:
            return result

        result = first_match(entity, FALLBACK_EXTRACTORS)
        if result.resolved:
            return result

        logger.warning(
            f"Could not resolve source order for shipment {entity.get('shipment_id')} "
            f"(tags={entity.get('tags') or []}, external_shipment_id={entity.get('external_shipment_id')}, "
            f"shipment_number={entity.get('shipment_number')}, sales_order_id={entity.get('sales_order_id')})"
        )
        return CorrelationResult()

    async def resolve_source_order_id(self, entity: Dict[str, Any]) -> Optional[str]:
        return (await self.resolve(entity)).source_order_id

    async def _from_parent_order(self, entity: Dict[str, Any]) -> CorrelationResult:
        sales_order_id = entity.get("sales_order_id")
        if not sales_order_id or not self.shipstation:
            return CorrelationResult()

        try:
            order = await self.shipstation.get_order_by_id(sales_order_id)
        except OrderBridgeError as e:
            logger.warning(f"Could not fetch sales order {sales_order_id}: {e.message}")
            return CorrelationResult()

        result = first_match(order or {}, DIRECT_EXTRACTORS)
        if result.resolved:
            result.method = f"sales_order_{result.method}"
        return result
