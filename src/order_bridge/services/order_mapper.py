"""
Order Translator/Validator: Rithum order -> ShipStation order.

Every function here is pure. The same Rithum order always produces the same
MappingResult (no clock reads, no I/O after construction).
"""

import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from order_bridge.config.constants import (
    DEFAULT_COUNTRY,
    DEFAULT_CURRENCY,
    DEFAULT_ITEM_WEIGHT_OUNCES,
    DEFAULT_PHONE,
    ORDER_STATUS_MAP,
    POUNDS_PER_UNIT,
    RESIDENTIAL_INDICATORS,
    SHIPPING_SERVICE_MAP,
)
from order_bridge.core.logger import setup_logger

logger = setup_logger(__name__)


@dataclass
class MappingResult:
    """Outcome of map_and_validate. success <=> mapped_order set and no errors."""
    success: bool
    mapped_order: Optional[Dict[str, Any]] = None
    errors: List[str] = field(default_factory=list)

    @classmethod
    def ok(cls, mapped_order: Dict[str, Any]) -> "MappingResult":
        return cls(success=True, mapped_order=mapped_order, errors=[])

    @classmethod
    def failed(cls, errors: List[str]) -> "MappingResult":
        return cls(success=False, mapped_order=None, errors=list(errors))


def load_sku_weights(path: Optional[str]) -> Dict[str, Any]:
    """Load the optional SKU weight catalog: {"defaultWeight": {...}, "skus": {sku: {...}}}."""
    if not path or not Path(path).exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            catalog = json.load(f)
        logger.info(f"Loaded {len(catalog.get('skus') or {})} SKU weights from {path}")
        return catalog
    except (OSError, ValueError) as e:
        logger.warning(f"Could not load SKU weights from {path}: {e}")
        return {}


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _to_pounds(value: Any, unit: Optional[str]) -> float:
    return _to_float(value) * POUNDS_PER_UNIT.get((unit or "lb").lower(), 1.0)


def _lower(value: Any) -> str:
    return str(value or "").lower()


def item_quantity(item: Dict[str, Any]) -> int:
    accepted = item.get("acceptedQuantity")
    if accepted is not None and accepted > 0:
        return accepted
    return item.get("quantity") or 0


def item_sku(item: Dict[str, Any], index: int) -> str:
    return item.get("sku") or item.get("partnerSku") or item.get("productGroup") or f"ITEM-{index + 1}"


def item_price(item: Dict[str, Any]) -> float:
    if item.get("expectedCost") is not None:
        return _to_float(item["expectedCost"])
    if item.get("consumerPrice") is not None:
        return _to_float(item["consumerPrice"])
    if item.get("extendedExpectedCostTotal") is not None:
        quantity = item.get("acceptedQuantity") or item.get("quantity") or 1
        return _to_float(item["extendedExpectedCostTotal"]) / quantity
    return 0.0


def customer_name(shipping: Optional[Dict[str, Any]]) -> str:
    if not shipping:
        return "Customer"
    if shipping.get("name"):
        return shipping["name"]
    first, last = shipping.get("firstName"), shipping.get("lastName")
    if first and last:
        return f"{first} {last}"
    return first or "Customer"


def _requested(order: Dict[str, Any], key: str) -> Optional[str]:
    """requestedX falls back to x (e.g. requestedShipCarrier -> shipCarrier)."""
    return order.get(f"requested{key[0].upper()}{key[1:]}") or order.get(key)


class OrderMapper:
    """Validates Rithum orders and maps them to the ShipStation v2 shape."""

    def __init__(self, skip_test_orders: bool = False, sku_weights: Optional[Dict[str, Any]] = None):
        self.skip_test_orders = skip_test_orders
        self.sku_weights = sku_weights or {}

    # ------------------------------------------------------------------
    # Gating and validation
    # ------------------------------------------------------------------

    def should_process(self, order: Optional[Dict[str, Any]]) -> bool:
        """
        Only acknowledged (or legacy shipment_pending) orders are ready to ship.

        Skips test orders (when configured), cancelled and already shipped orders.
        """
        if not order:
            return False
        if self.skip_test_orders and order.get("testFlag"):
            return False

        status = order.get("dscoStatus")
        lifecycle = order.get("dscoLifecycle")

        if status == "cancelled" or lifecycle == "cancelled":
            return False
        if status == "shipped":
            return False
        if lifecycle:
            return lifecycle == "acknowledged"
        if status:
            return status == "shipment_pending"
        return True

    def validate(self, order: Optional[Dict[str, Any]]) -> List[str]:
        """Return every validation error (empty list = valid)."""
        if not order:
            return ["Order object is required"]

        errors = []
        if not order.get("poNumber") and not order.get("dscoOrderId"):
            errors.append("Missing poNumber or dscoOrderId (required for orderNumber)")

        shipping = order.get("shipping") or order.get("shipTo")
        if not shipping:
            errors.append("Missing shipping address (shipping or shipTo required)")
        else:
            if not shipping.get("address1"):
                errors.append("Missing shipping.address1 (required for address_line1)")
            if not shipping.get("city"):
                errors.append("Missing shipping.city (required for city_locality)")
            if not shipping.get("state") and not shipping.get("region"):
                errors.append("Missing shipping.state or shipping.region (required for state_province)")
            if not shipping.get("postal"):
                errors.append("Missing shipping.postal (required for postal_code)")

        line_items = order.get("lineItems")
        if not isinstance(line_items, list) or not line_items:
            errors.append("Missing or empty lineItems array")
        else:
            for index, item in enumerate(line_items, start=1):
                quantity = item.get("acceptedQuantity") or item.get("quantity") or 0
                if quantity <= 0:
                    errors.append(f"Line item {index}: Invalid quantity ({quantity})")
                if not item.get("sku") and not item.get("partnerSku") and not item.get("productGroup"):
                    errors.append(f"Line item {index}: Missing SKU (sku, partnerSku, or productGroup)")

        if not order.get("dscoOrderId"):
            errors.append("Missing dscoOrderId (required for customField2 tracking)")

        return errors

    def map_and_validate(self, order: Optional[Dict[str, Any]]) -> MappingResult:
        errors = self.validate(order)
        if errors:
            return MappingResult.failed(errors)
        return MappingResult.ok(self.map_to_shipstation(order))

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    def map_to_shipstation(self, order: Dict[str, Any]) -> Dict[str, Any]:
        """Build the mapped order. Assumes validate() returned no errors."""
        dsco_order_id = str(order["dscoOrderId"])
        line_items = order.get("lineItems") or []

        mapped: Dict[str, Any] = {
            "order_number": dsco_order_id,
            "shipment_number": order.get("poNumber") or dsco_order_id,
            "order_key": dsco_order_id,
            "order_status": ORDER_STATUS_MAP.get(order.get("dscoStatus"), "awaiting_shipment"),
            "amount_paid": self.amount_paid(order),
            "currency_code": self.currency_code(order),
            "customer_username": customer_name(order.get("shipping")),
            "ship_to": self.ship_to(order.get("shipping") or order.get("shipTo")),
            "items": self.line_items(line_items),
        }

        order_date = order.get("consumerOrderDate") or order.get("retailerCreateDate") or order.get("dscoCreateDate")
        if order_date:
            mapped["order_date"] = order_date

        weight = self.total_weight(line_items)
        if weight:
            mapped["weight"] = weight
        mapped["package_code"] = self.package_code(order, weight)
        service_code = self.service_code(order, mapped["package_code"])
        if service_code:
            mapped["service_code"] = service_code

        if order.get("shipByDate"):
            mapped["ship_by_date"] = order["shipByDate"]
        if order.get("shippingSurcharge") is not None:
            mapped["shipping_paid"] = _to_float(order["shippingSurcharge"])
        if order.get("amountOfSalesTaxCollected") is not None:
            mapped["tax_paid"] = _to_float(order["amountOfSalesTaxCollected"])
        if order.get("giftFlag") is not None:
            mapped["is_gift"] = bool(order["giftFlag"])
        if order.get("shipInstructions"):
            mapped["notes_from_buyer"] = order["shipInstructions"]
        if order.get("giftMessage"):
            mapped["notes_for_gift"] = order["giftMessage"]

        service_level = _requested(order, "shippingServiceLevelCode")
        if service_level:
            mapped["requested_shipment_service"] = self.shipping_service(
                service_level,
                _requested(order, "shipCarrier"),
                _requested(order, "shipMethod"),
            )

        # Correlation hints: custom_field2 / its tag carry the source order id back
        if order.get("channel"):
            mapped["custom_field1"] = order["channel"]
        mapped["custom_field2"] = dsco_order_id
        if order.get("poNumber"):
            mapped["custom_field3"] = order["poNumber"]

        return mapped

    def amount_paid(self, order: Dict[str, Any]) -> float:
        amount = _to_float(order.get("extendedExpectedCostTotal"))
        if order.get("shippingSurcharge") is not None:
            amount += _to_float(order["shippingSurcharge"])
        if order.get("amountOfSalesTaxCollected") is not None:
            amount += _to_float(order["amountOfSalesTaxCollected"])
        if amount == 0 and order.get("orderTotalAmount") is not None:
            amount = _to_float(order["orderTotalAmount"])
        return amount

    def currency_code(self, order: Dict[str, Any]) -> str:
        currency = order.get("currencyCode") or order.get("consumerOrderCurrencyCode")
        return currency.upper() if currency else DEFAULT_CURRENCY

    def ship_to(self, shipping: Dict[str, Any]) -> Dict[str, Any]:
        indicator = _lower(shipping.get("addressResidentialIndicator"))
        address = {
            "name": customer_name(shipping),
            "address_line1": shipping.get("address1") or "",
            "city_locality": shipping.get("city") or "",
            "state_province": shipping.get("state") or shipping.get("region") or "",
            "postal_code": shipping.get("postal") or "",
            "country_code": shipping.get("country") or DEFAULT_COUNTRY,
            "phone": shipping.get("phone") or DEFAULT_PHONE,
            "address_residential_indicator": indicator if indicator in RESIDENTIAL_INDICATORS else "unknown",
        }

        address2 = shipping.get("address2")
        if not address2 and isinstance(shipping.get("address"), list) and len(shipping["address"]) > 1:
            address2 = shipping["address"][1]
        if address2:
            address["address_line2"] = address2
        if shipping.get("email"):
            address["email"] = shipping["email"]
        if shipping.get("companyName") or shipping.get("company"):
            address["company_name"] = shipping.get("companyName") or shipping.get("company")
        return address

    def line_items(self, line_items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Map items with a positive quantity; SKU falls back to ITEM-n by position."""
        mapped_items = []
        for index, item in enumerate(line_items):
            quantity = item_quantity(item)
            if quantity <= 0:
                continue

            mapped_item = {
                "sku": item_sku(item, index),
                "name": item.get("title") or "Unknown Item",
                "quantity": quantity,
                "unit_price": item_price(item),
            }
            if item.get("dscoItemId"):
                mapped_item["external_order_item_id"] = str(item["dscoItemId"])
            if item.get("personalization"):
                mapped_item["options"] = [{"name": "Personalization", "value": str(item["personalization"])}]
            if item.get("taxAmount") is not None:
                mapped_item["tax_amount"] = _to_float(item["taxAmount"])
            mapped_items.append(mapped_item)
        return mapped_items

    def sku_weight(self, sku: Optional[str]) -> Optional[float]:
        """Catalog weight for a SKU in pounds."""
        entry = (self.sku_weights.get("skus") or {}).get(sku) if sku else None
        if entry and entry.get("weight") and entry.get("unit"):
            return _to_pounds(entry["weight"], entry["unit"])
        return None

    def total_weight(self, line_items: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """Total order weight in whole ounces (rounded up, at least 1)."""
        if not line_items:
            return None

        total_pounds = 0.0
        for item in line_items:
            quantity = item_quantity(item)
            if item.get("weight") and _to_float(item["weight"]) > 0:
                total_pounds += _to_pounds(item["weight"], item.get("weightUnits")) * quantity
                continue
            catalog_pounds = self.sku_weight(item.get("sku") or item.get("partnerSku"))
            if catalog_pounds:
                total_pounds += catalog_pounds * quantity

        if total_pounds <= 0:
            default = self.sku_weights.get("defaultWeight") or {"value": DEFAULT_ITEM_WEIGHT_OUNCES, "unit": "ounce"}
            total_pounds = _to_pounds(default.get("value"), default.get("unit")) * len(line_items)

        if total_pounds <= 0:
            return None
        return {"value": max(1, math.ceil(total_pounds * 16)), "unit": "ounce"}

    def package_code(self, order: Dict[str, Any], weight: Optional[Dict[str, Any]]) -> str:
        """Pick a package type from carrier, requested service and weight."""
        if not weight or weight["value"] <= 0:
            return "package"

        carrier = _lower(_requested(order, "shipCarrier"))
        service = _lower(_requested(order, "shippingServiceLevelCode"))
        method = _lower(_requested(order, "shipMethod"))
        ounces = weight["value"]

        if not carrier or any(name in carrier for name in ("usps", "postal", "generic")):
            if service == "pm" or "priority" in method or "flat rate" in method:
                if ounces <= 8:
                    return "flat_rate_padded_envelope"
                if ounces <= 16:
                    return "small_flat_rate_box"
                if ounces <= 48:
                    return "medium_flat_rate_box"
                return "large_flat_rate_box"
            if ounces <= 4:
                return "thick_envelope"
            if ounces <= 48:
                return "package"
            return "large_package"

        if "fedex" in carrier:
            if ounces <= 8:
                return "fedex_envelope"
            if ounces <= 16:
                return "fedex_small_box"
            if ounces <= 32:
                return "fedex_medium_box"
            return "fedex_large_box"

        if "ups" in carrier:
            if ounces <= 8:
                return "ups_express_pak"
            if ounces <= 16:
                return "ups_express_box_small"
            if ounces <= 32:
                return "ups_express_box"
            return "ups_express_box_medium"

        return "package"

    def service_code(self, order: Dict[str, Any], package_code: Optional[str]) -> Optional[str]:
        """Pick a ShipStation service code from carrier and ship method."""
        carrier = _lower(_requested(order, "shipCarrier"))
        service = _lower(_requested(order, "shippingServiceLevelCode"))
        method = _lower(_requested(order, "shipMethod"))

        if not carrier or any(name in carrier for name in ("usps", "postal", "generic")):
            if package_code and "flat_rate" in package_code:
                return "usps_priority_mail"
            if service == "gcg" or "ground" in method:
                return "usps_ground_advantage"
            if service == "pm" or "priority" in method:
                return "usps_priority_mail"
            return "usps_ground_advantage"

        if "fedex" in carrier or "fed ex" in carrier:
            if "ground" in method or "gnd" in service or "ground" in service:
                return "fedex_ground"
            if "home delivery" in method:
                return "fedex_home_delivery"
            if "2day" in method or "2 day" in method:
                return "fedex_2day_am" if "am" in method else "fedex_2day"
            if "overnight" in method or "next day" in method:
                if "first" in method or "early" in method:
                    return "fedex_first_overnight"
                if "priority" in method:
                    return "fedex_priority_overnight"
                return "fedex_standard_overnight"
            if "express" in method:
                return "fedex_express_saver"
            return "fedex_ground"

        if "ups" in carrier:
            if "ground" in method:
                return "ups_ground"
            if any(term in method for term in ("3 day", "3day", "three day")):
                return "ups_3_day_select"
            if any(term in method for term in ("2nd day", "2 day", "two day")):
                return "ups_2nd_day_air_am" if "am" in method else "ups_2nd_day_air"
            if "next day" in method or "overnight" in method:
                if "early" in method or "am" in method:
                    return "ups_next_day_air_early_am"
                if "saver" in method:
                    return "ups_next_day_air_saver"
                return "ups_next_day_air"
            return "ups_ground"

        if "dhl" in carrier:
            return "dhl_express_worldwide"
        return None

    def shipping_service(self, service_level: str, carrier: Optional[str], method: Optional[str]) -> str:
        """Map a Rithum service level to a ShipStation requested service name."""
        mapped = SHIPPING_SERVICE_MAP.get(service_level.upper())
        if mapped:
            return mapped

        carrier_name = _lower(carrier or "Generic")
        method_name = _lower(method or "Ground")
        if carrier_name == "generic" and method_name == "ground":
            return "usps_ground_advantage"
        return f"{carrier_name}_{method_name}"
