"""
Shipment Tracking Reporter.

Reports a shipped ShipStation shipment to Rithum as a single batched shipment
update on the source order. The ledger is consulted first so a re-delivered
webhook for an already reported shipment sends nothing.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from order_bridge.api.rithum_client import RithumClient
from order_bridge.api.shipstation_client import ShipStationClient
from order_bridge.config.constants import NO_TRACKING, REPORTABLE_LIFECYCLES
from order_bridge.core.errors import (
    AuthError,
    CorrelationError,
    DeliveryError,
    OrderBridgeError,
    RequestError,
    ValidationError,
)
from order_bridge.core.logger import setup_logger
from order_bridge.models.tracking import ReportStatus
from order_bridge.services.shipping_codes import (
    carrier_manifest_id,
    is_valid_service_level,
    map_to_rithum_shipping_method,
    rithum_weight_unit,
    ship_method_name,
)
from order_bridge.store.ledger import ShipmentLedger

logger = setup_logger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _to_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def extract_line_items(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Rithum line items for a shipment.

    Identifiers are tried per item: dscoItemId, sku, partnerSku, upc. Items
    with none of them, or without a positive quantity, are dropped.
    """
    line_items = []
    for item in items or []:
        quantity = _to_float(item.get("quantity") or item.get("ordered_quantity") or 1)
        if not quantity or quantity <= 0:
            continue

        line_item: Dict[str, Any] = {"quantity": int(quantity) if quantity.is_integer() else quantity}
        for key in ("external_order_item_id", "sales_order_item_id", "dsco_item_id", "dscoItemId"):
            if item.get(key) not in (None, ""):
                line_item["dscoItemId"] = str(item[key])
                break
        if item.get("sku"):
            line_item["sku"] = str(item["sku"])
        partner_sku = item.get("partner_sku") or item.get("partnerSku")
        if partner_sku:
            line_item["partnerSku"] = str(partner_sku)
        if item.get("upc"):
            line_item["upc"] = str(item["upc"])

        if len(line_item) == 1:
            continue
        line_items.append(line_item)
    return line_items


def _weight_value(weight: Any) -> Optional[tuple]:
    if isinstance(weight, dict):
        value = weight.get("value") or weight.get("amount")
        return (value, weight.get("unit") or "ounce") if value else None
    if weight:
        return (weight, "ounce")
    return None


def ship_weight(shipment: Dict[str, Any]) -> tuple:
    """(weight, Rithum unit): total_weight, then weight, then first package, then 1 OZ."""
    packages = shipment.get("packages") or []
    for candidate in (
        shipment.get("total_weight"),
        shipment.get("weight"),
        packages[0].get("weight") if packages else None,
    ):
        found = _weight_value(candidate)
        if found and _to_float(found[0]) is not None:
            return _to_float(found[0]), rithum_weight_unit(found[1])
    return 1.0, "OZ"


def resolve_ship_date(ship_date: Optional[str], now: datetime) -> str:
    """The shipment's date, or now when it is missing, unparseable or in the future."""
    if ship_date:
        try:
            parsed = datetime.fromisoformat(str(ship_date).replace("Z", "+00:00"))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            if parsed <= now:
                return ship_date
        except ValueError:
            logger.debug(f"Unparseable ship date {ship_date}")
    return now.isoformat()


def first_package_tracking(shipment: Dict[str, Any]) -> Optional[str]:
    for package in shipment.get("packages") or []:
        if package.get("tracking_number"):
            return package["tracking_number"]
    return None


class ShipmentTrackingReporter:
    """Sends shipment tracking to Rithum for a correlated source order."""

    def __init__(
        self,
        rithum: RithumClient,
        shipstation: Optional[ShipStationClient] = None,
        ledger: Optional[ShipmentLedger] = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.rithum = rithum
        self.shipstation = shipstation
        self.ledger = ledger
        self.clock = clock

    async def report(
        self,
        shipment: Dict[str, Any],
        source_order_id: Optional[str],
        tracking_info: Optional[Dict[str, Any]] = None,
        shipment_id: Optional[str] = None,
    ) -> ReportStatus:
        """
        Report one shipment to Rithum.

        Args:
            shipment: ShipStation shipment
            source_order_id: Correlated dscoOrderId
            tracking_info: Tracking summary (overrides fields on the shipment)
            shipment_id: ShipStation shipment id, if not on the shipment

        Returns:
            ReportStatus describing what was sent (or why nothing was)

        Raises:
            CorrelationError: No source order id
            ValidationError: No line item has a usable identifier
            DeliveryError: Rithum rejected the update
        """
        if not source_order_id:
            raise CorrelationError("Missing source order id", details={"shipment_id": shipment_id})

        tracking_info = tracking_info or {}
        shipment_id = shipment_id or shipment.get("shipment_id")
        tracking_number = (
            tracking_info.get("tracking_number")
            or shipment.get("tracking_number")
            or first_package_tracking(shipment)
        )

        cached = await self._cached_report(shipment_id, tracking_number)
        if cached:
            return cached

        line_items = extract_line_items(shipment.get("items") or [])
        if not line_items:
            raise ValidationError(
                "Cannot create shipment: no line item has a dscoItemId, sku, partnerSku or upc",
                errors=[f"Shipment {shipment_id} has no identifiable line items"],
            )

        source_order = await self._source_order(source_order_id)
        if source_order:
            skipped = self._skip_reason(source_order, tracking_number, len(line_items))
            if skipped:
                return skipped

        carrier_name = (
            tracking_info.get("carrier_name")
            or (shipment.get("carrier") or {}).get("name")
            or shipment.get("carrier_name")
            or shipment.get("carrier_id")
        )
        carrier_code = (
            tracking_info.get("carrier_code")
            or (shipment.get("carrier") or {}).get("carrier_code")
            or shipment.get("carrier_code")
        )
        service = (
            tracking_info.get("service_code")
            or (shipment.get("carrier") or {}).get("service")
            or shipment.get("service_code")
            or shipment.get("ship_method")
        )

        requested = (source_order or {}).get("requestedShippingServiceLevelCode")
        if is_valid_service_level(requested):
            service_level = requested
        else:
            service_level = map_to_rithum_shipping_method(carrier_code or carrier_name, service)

        manifest_id = carrier_manifest_id(carrier_name or carrier_code)
        weight, weight_units = ship_weight(shipment)
        now = self.clock()
        ship_date = resolve_ship_date(tracking_info.get("ship_date") or shipment.get("ship_date"), now)

        payload: Dict[str, Any] = {
            "dscoOrderId": str(source_order_id),
            "shipments": [
                {
                    "trackingNumber": tracking_number or NO_TRACKING,
                    "lineItems": line_items,
                    "shipDate": ship_date,
                    "shipCost": await self._ship_cost(shipment, shipment_id),
                    "shipWeight": weight,
                    "shipWeightUnits": weight_units,
                    "carrierManifestId": manifest_id,
                    "shippingServiceLevelCode": service_level,
                    "shipMethod": ship_method_name(service_level),
                    "shipCarrier": manifest_id,
                }
            ],
        }
        if source_order and source_order.get("poNumber"):
            payload["poNumber"] = source_order["poNumber"]

        logger.info(
            f"Reporting shipment {shipment_id} to Rithum order {source_order_id}: "
            f"tracking={tracking_number}, carrier={manifest_id}, service={service_level}, items={len(line_items)}"
        )

        try:
            response = await self.rithum.create_shipments(payload)
        except RequestError as e:
            raise DeliveryError(
                f"Rithum rejected shipment for order {source_order_id}: {e.message}",
                status_code=e.status_code,
                details=e.details,
            ) from e

        if isinstance(response, dict) and response.get("requestId"):
            logger.info(f"Rithum request id {response['requestId']} for order {source_order_id}")

        return ReportStatus(
            attempted=True,
            success=True,
            updated_at=now.isoformat(),
            tracking_number=tracking_number,
            carrier=manifest_id,
            line_item_count=len(line_items),
            response=response,
            ship_date=ship_date,
            shipping_service_level_code=service_level,
        )

    async def _cached_report(self, shipment_id: Optional[str], tracking_number: Optional[str]) -> Optional[ReportStatus]:
        if not self.ledger or not shipment_id:
            return None
        existing = await self.ledger.get(shipment_id)
        if existing and existing.report_status.success and existing.tracking_number == tracking_number:
            logger.info(f"Shipment {shipment_id} already reported with tracking {tracking_number}, skipping")
            return existing.report_status
        return None

    async def _source_order(self, source_order_id: str) -> Optional[Dict[str, Any]]:
        """The Rithum order, or None when it cannot be found (the report still proceeds)."""
        try:
            order = await self.rithum.get_order_by_id(source_order_id)
            if not order:
                order = await self.rithum.find_order_by_scroll(source_order_id, now=self.clock())
        except AuthError:
            raise
        except OrderBridgeError as e:
            logger.warning(f"Could not look up Rithum order {source_order_id}: {e.message}")
            return None

        if not order:
            logger.warning(f"Rithum order {source_order_id} not found, reporting anyway")
        return order

    def _skip_reason(
        self,
        source_order: Dict[str, Any],
        tracking_number: Optional[str],
        line_item_count: int,
    ) -> Optional[ReportStatus]:
        lifecycle = source_order.get("dscoLifecycle")
        if lifecycle and lifecycle not in REPORTABLE_LIFECYCLES:
            logger.info(f"Order {source_order.get('dscoOrderId')} lifecycle is {lifecycle}, not reporting")
            return ReportStatus(
                attempted=True,
                success=False,
                skipped=True,
                error=f"Invalid lifecycle: {lifecycle}",
                updated_at=self.clock().isoformat(),
                tracking_number=tracking_number,
                line_item_count=0,
            )

        for package in source_order.get("packages") or []:
            if tracking_number and package.get("trackingNumber") == tracking_number:
                logger.info(f"Tracking {tracking_number} already on order {source_order.get('dscoOrderId')}")
                return ReportStatus(
                    attempted=True,
                    success=True,
                    skipped=True,
                    updated_at=self.clock().isoformat(),
                    tracking_number=tracking_number,
                    carrier=package.get("shipCarrier"),
                    line_item_count=len(package.get("items") or []) or line_item_count,
                    response={"skipped": True, "reason": "Tracking number already exists"},
                )
        return None

    async def _ship_cost(self, shipment: Dict[str, Any], shipment_id: Optional[str]) -> float:
        """Label cost when available, else the shipment's shipping amount, else 0."""
        if self.shipstation and shipment_id:
            try:
                label = await self.shipstation.get_label_by_shipment_id(shipment_id)
                amount = _to_float(((label or {}).get("shipment_cost") or {}).get("amount"))
                if amount:
                    return amount
            except OrderBridgeError as e:
                logger.warning(f"Could not fetch label cost for {shipment_id}: {e.message}")

        amount = _to_float(
            (shipment.get("shipping_amount") or {}).get("amount")
            or shipment.get("ship_cost")
            or shipment.get("cost")
        )
        return amount or 0.0
