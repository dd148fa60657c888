"""ShipStation API v2 client."""

from typing import Any, Dict, List, Optional
from urllib.parse import quote

from order_bridge.api import endpoints
from order_bridge.api.executor import RequestExecutor
from order_bridge.config.constants import DEFAULT_CURRENCY, SERVICE_TAG_PREFIX
from order_bridge.core.errors import (
    AuthError,
    ConfigurationError,
    DeliveryError,
    OrderBridgeError,
    RequestError,
)
from order_bridge.core.logger import setup_logger

logger = setup_logger(__name__)


def _money(amount: Any, currency: str) -> Dict[str, Any]:
    return {"amount": _to_float(amount), "currency": currency}


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _first_tracking_number(packages: List[Dict[str, Any]]) -> Optional[str]:
    for package in packages or []:
        tracking = package.get("tracking_number") or package.get("tracking") or package.get("tracking_code")
        if tracking:
            return tracking
    return None


def convert_item(item: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a mapped line item to the v2 shipment item shape."""
    converted = {
        "sku": item.get("sku"),
        "name": item.get("name"),
        "quantity": item.get("quantity"),
        "unit_price": _to_float(item.get("unit_price")),
    }
    if item.get("options"):
        converted["options"] = item["options"]
    if item.get("tax_amount") is not None:
        converted["tax_amount"] = _to_float(item["tax_amount"])
    if item.get("external_order_item_id") is not None:
        converted["external_order_item_id"] = str(item["external_order_item_id"])
    return converted


def build_tags(mapped_order: Dict[str, Any]) -> List[Dict[str, str]]:
    """Tags carrying the channel, the source order id and the requested service."""
    tags = []
    if mapped_order.get("custom_field1"):
        tags.append({"name": str(mapped_order["custom_field1"])})
    if mapped_order.get("custom_field2"):
        tags.append({"name": str(mapped_order["custom_field2"])})
    if mapped_order.get("requested_shipment_service"):
        tags.append({"name": f"{SERVICE_TAG_PREFIX}{mapped_order['requested_shipment_service']}"})
    return tags


class ShipStationClient:
    """Async client for ShipStation API v2 (api-key auth)."""

    def __init__(
        self,
        executor: RequestExecutor,
        warehouse_id: Optional[str] = None,
        ship_from: Optional[Dict[str, Any]] = None,
    ):
        self.executor = executor
        self.warehouse_id = warehouse_id
        self.ship_from = ship_from

    def convert_order_to_shipment(self, mapped_order: Dict[str, Any]) -> Dict[str, Any]:
        """
        Build the v2 shipment body for a mapped order.

        create_sales_order makes ShipStation create the order alongside the
        shipment. The source order id travels as external_shipment_id and as a tag.
        """
        currency = (mapped_order.get("currency_code") or DEFAULT_CURRENCY).lower()
        shipment: Dict[str, Any] = {
            "create_sales_order": True,
            "external_shipment_id": mapped_order["order_number"],
            "shipment_number": mapped_order.get("shipment_number") or mapped_order["order_number"],
            "ship_to": mapped_order["ship_to"],
            "items": [convert_item(item) for item in mapped_order.get("items") or []],
        }

        if mapped_order.get("amount_paid") is not None:
            shipment["amount_paid"] = _money(mapped_order["amount_paid"], currency)
        if mapped_order.get("shipping_paid") is not None:
            shipment["shipping_paid"] = _money(mapped_order["shipping_paid"], currency)
        if mapped_order.get("tax_paid") is not None:
            shipment["tax_paid"] = _money(mapped_order["tax_paid"], currency)
        if mapped_order.get("ship_by_date"):
            shipment["ship_date"] = mapped_order["ship_by_date"]
        if mapped_order.get("is_gift") is not None:
            shipment["is_gift"] = bool(mapped_order["is_gift"])
        if mapped_order.get("notes_from_buyer"):
            shipment["notes_from_buyer"] = str(mapped_order["notes_from_buyer"])
        if mapped_order.get("notes_for_gift"):
            shipment["notes_for_gift"] = str(mapped_order["notes_for_gift"])

        ship_from = self.ship_from or mapped_order.get("ship_from")
        if ship_from:
            shipment["ship_from"] = ship_from
        elif self.warehouse_id or mapped_order.get("warehouse_id"):
            shipment["warehouse_id"] = self.warehouse_id or mapped_order["warehouse_id"]

        tags = build_tags(mapped_order)
        if tags:
            shipment["tags"] = tags
        if mapped_order.get("requested_shipment_service"):
            shipment["requested_shipment_service"] = mapped_order["requested_shipment_service"]

        weight = mapped_order.get("weight")
        package_code = mapped_order.get("package_code")
        if weight or package_code:
            package: Dict[str, Any] = {}
            if weight and weight.get("value"):
                package["weight"] = {"value": _to_float(weight["value"]), "unit": weight.get("unit") or "ounce"}
            if package_code:
                package["package_code"] = package_code
            shipment["packages"] = [package]

        if mapped_order.get("service_code"):
            shipment["service_code"] = mapped_order["service_code"]

        return shipment

    async def create_order(self, mapped_order: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create an order-with-shipment in ShipStation.

        Args:
            mapped_order: Output of OrderMapper.map_and_validate

        Returns:
            Dict with order_id, order_number, shipment_id, sales_order_id

        Raises:
            DeliveryError: ShipStation rejected the shipment
            ConfigurationError: Neither ship_from nor a warehouse is available
        """
        shipment = self.convert_order_to_shipment(mapped_order)

        if "ship_from" not in shipment and "warehouse_id" not in shipment:
            warehouse_id = await self.get_default_warehouse_id()
            if not warehouse_id:
                raise ConfigurationError(
                    "Either a ship-from address or a warehouse is required to create shipments"
                )
            shipment["warehouse_id"] = warehouse_id

        logger.info(f"Creating ShipStation shipment for order {shipment['external_shipment_id']}")

        try:
            response = await self.executor.request(
                "POST", endpoints.SHIPSTATION_SHIPMENTS, json={"shipments": [shipment]}
            )
        except RequestError as e:
            raise DeliveryError(
                f"ShipStation rejected order {shipment['external_shipment_id']}: {e.message}",
                status_code=e.status_code,
                details=e.details,
            ) from e

        created_list = (response or {}).get("shipments") or []
        if not created_list:
            raise DeliveryError("Unexpected response format from ShipStation API", details=response)

        created = created_list[0]
        if created.get("errors"):
            raise DeliveryError(
                f"ShipStation API errors: {created['errors']}",
                details=created["errors"],
            )

        result = {
            "order_id": created.get("sales_order_id") or created.get("shipment_id"),
            "order_number": created.get("shipment_number") or mapped_order["order_number"],
            "shipment_id": created.get("shipment_id"),
            "sales_order_id": created.get("sales_order_id"),
        }
        if created.get("ship_from"):
            result["ship_from"] = created["ship_from"]
        elif created.get("warehouse_id"):
            result["warehouse_id"] = created["warehouse_id"]

        if shipment.get("tags"):
            # The shipment exists at this point; a tag failure must not fail the delivery
            try:
                await self.add_shipment_tags(created["shipment_id"], shipment["tags"])
            except AuthError:
                raise
            except OrderBridgeError as e:
                logger.warning(f"Shipment {result['shipment_id']} created but tagging failed: {e.message}")
                result["tags_error"] = e.message

        logger.info(f"Created shipment {result['shipment_id']} for order {mapped_order['order_number']}")
        return result

    async def add_shipment_tags(self, shipment_id: str, tags: List[Dict[str, str]]) -> None:
        """Attach tags one by one; tags that already exist (400/409) are skipped."""
        for tag in tags:
            tag_name = tag.get("name") if isinstance(tag, dict) else tag
            if not tag_name:
                continue
            path = endpoints.SHIPSTATION_SHIPMENT_TAG.format(
                shipment_id=shipment_id, tag_name=quote(str(tag_name), safe="")
            )
            try:
                await self.executor.request("POST", path)
            except RequestError as e:
                if e.status_code in (400, 409):
                    logger.debug(f"Tag '{tag_name}' not added to {shipment_id}: HTTP {e.status_code}")
                    continue
                raise

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_warehouses(self) -> List[Dict[str, Any]]:
        response = await self.executor.request("GET", endpoints.SHIPSTATION_WAREHOUSES)
        return (response or {}).get("warehouses") or []

    async def get_default_warehouse_id(self) -> Optional[str]:
        """Default warehouse id, else the first one, else None."""
        warehouses = await self.get_warehouses()
        if not warehouses:
            return None
        default = next((w for w in warehouses if w.get("is_default")), warehouses[0])
        return default.get("warehouse_id")

    async def get_shipment_by_id(self, shipment_id: str) -> Dict[str, Any]:
        return await self.executor.request(
            "GET", endpoints.SHIPSTATION_SHIPMENT.format(shipment_id=shipment_id)
        )

    async def get_shipment_by_external_id(self, external_id: str) -> Dict[str, Any]:
        return await self.executor.request(
            "GET",
            endpoints.SHIPSTATION_SHIPMENT_BY_EXTERNAL_ID.format(external_id=quote(str(external_id), safe="")),
        )

    async def get_order_by_id(self, order_id: str) -> Dict[str, Any]:
        return await self.executor.request("GET", endpoints.SHIPSTATION_ORDER.format(order_id=order_id))

    async def list_shipments(self, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        response = await self.executor.request("GET", endpoints.SHIPSTATION_SHIPMENTS, params=params)
        return (response or {}).get("shipments") or []

    async def get_shipment_tracking(self, shipment_id: str) -> Dict[str, Any]:
        """Tracking summary for a shipment; the tracking number falls back to its packages."""
        shipment = await self.get_shipment_by_id(shipment_id)
        return self.tracking_from_shipment(shipment)

    @staticmethod
    def tracking_from_shipment(shipment: Dict[str, Any]) -> Dict[str, Any]:
        packages = shipment.get("packages") or []
        tracking_number = (
            shipment.get("tracking_number")
            or shipment.get("tracking")
            or _first_tracking_number(packages)
        )
        return {
            "shipment_id": shipment.get("shipment_id"),
            "shipment_number": shipment.get("shipment_number"),
            "shipment_status": shipment.get("shipment_status"),
            "tracking_number": tracking_number,
            "carrier_id": shipment.get("carrier_id"),
            "carrier_name": shipment.get("carrier_name"),
            "carrier_code": shipment.get("carrier_code"),
            "service_code": shipment.get("service_code"),
            "ship_date": shipment.get("ship_date"),
            "estimated_delivery_date": shipment.get("estimated_delivery_date"),
            "packages": packages,
        }

    async def get_labels(self, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        response = await self.executor.request("GET", endpoints.SHIPSTATION_LABELS, params=params)
        if isinstance(response, list):
            return response
        return (response or {}).get("labels") or []

    async def get_label_by_shipment_id(self, shipment_id: str) -> Optional[Dict[str, Any]]:
        labels = await self.get_labels({"shipment_id": shipment_id, "page_size": 1})
        return labels[0] if labels else None

    async def get_tracking_by_order_number(self, order_number: str) -> Optional[Dict[str, Any]]:
        """Find tracking by external_shipment_id, falling back to a shipment_number search."""
        try:
            shipment = await self.get_shipment_by_external_id(order_number)
            if shipment and shipment.get("shipment_id"):
                return self.tracking_from_shipment(shipment)
        except RequestError as e:
            logger.debug(f"No shipment with external id {order_number}: HTTP {e.status_code}")

        shipments = await self.list_shipments({"shipment_number": order_number, "page_size": 1})
        if shipments:
            return await self.get_shipment_tracking(shipments[0]["shipment_id"])
        return None

    async def get_tracking_by_tracking_number(self, tracking_number: str) -> Optional[Dict[str, Any]]:
        """Find a fulfillment by tracking number, falling back to recent shipments."""
        response = await self.executor.request(
            "GET",
            endpoints.SHIPSTATION_FULFILLMENTS,
            params={"tracking_number": tracking_number, "page_size": 1},
        )
        fulfillments = (response or {}).get("fulfillments") or []
        if fulfillments:
            fulfillment = fulfillments[0]
            return {
                "fulfillment_id": fulfillment.get("fulfillment_id"),
                "shipment_id": fulfillment.get("shipment_id"),
                "shipment_number": fulfillment.get("shipment_number"),
                "tracking_number": fulfillment.get("tracking_number"),
                "carrier_id": fulfillment.get("carrier_id"),
                "carrier_name": fulfillment.get("carrier_name"),
                "ship_date": fulfillment.get("ship_date"),
                "estimated_delivery_date": fulfillment.get("estimated_delivery_date"),
                "packages": fulfillment.get("packages") or [],
            }

        for shipment in await self.list_shipments({"page_size": 100}):
            packages = shipment.get("packages") or []
            if shipment.get("tracking_number") == tracking_number or any(
                p.get("tracking_number") == tracking_number for p in packages
            ):
                return await self.get_shipment_tracking(shipment["shipment_id"])
        return None

    async def get_carriers(self) -> List[Dict[str, Any]]:
        response = await self.executor.request("GET", endpoints.SHIPSTATION_CARRIERS)
        if isinstance(response, list):
            return response
        return (response or {}).get("carriers") or []

    # ------------------------------------------------------------------
    # Webhook subscriptions
    # ------------------------------------------------------------------

    async def list_webhooks(self) -> List[Dict[str, Any]]:
        response = await self.executor.request("GET", endpoints.SHIPSTATION_WEBHOOKS)
        if isinstance(response, list):
            return response
        return (response or {}).get("webhooks") or []

    async def create_webhook(self, name: str, event: str, url: str) -> Dict[str, Any]:
        logger.info(f"Registering webhook '{name}' for {event} -> {url}")
        return await self.executor.request(
            "POST", endpoints.SHIPSTATION_WEBHOOKS, json={"name": name, "event": event, "url": url}
        )

    async def get_webhook(self, webhook_id: str) -> Dict[str, Any]:
        return await self.executor.request("GET", endpoints.SHIPSTATION_WEBHOOK.format(webhook_id=webhook_id))

    async def update_webhook(self, webhook_id: str, url: str) -> Any:
        return await self.executor.request(
            "PUT", endpoints.SHIPSTATION_WEBHOOK.format(webhook_id=webhook_id), json={"url": url}
        )

    async def delete_webhook(self, webhook_id: str) -> None:
        await self.executor.request("DELETE", endpoints.SHIPSTATION_WEBHOOK.format(webhook_id=webhook_id))
