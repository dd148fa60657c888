"""ShipStation carrier/service -> Rithum shipment codes."""

from typing import Any, Optional

from order_bridge.config.constants import (
    CARRIER_MANIFEST_IDS,
    DEFAULT_SERVICE_LEVEL_CODE,
    RITHUM_SERVICE_LEVEL_CODES,
    SHIP_METHOD_NAMES,
    WEIGHT_UNITS,
)
from order_bridge.core.logger import setup_logger

logger = setup_logger(__name__)


def is_valid_service_level(code: Optional[str]) -> bool:
    return bool(code) and code in RITHUM_SERVICE_LEVEL_CODES


def map_to_rithum_shipping_method(carrier_code: Any, service_code: Any) -> str:
    """
    Map a ShipStation carrier and service to a Rithum shippingServiceLevelCode.

    A service that is already a Rithum code is passed through. Unknown
    combinations fall back to UPS Ground.
    """
    carrier = str(carrier_code or "").lower().strip()
    service = str(service_code or "").lower().strip()

    upper_service = service.upper()
    if is_valid_service_level(upper_service):
        return upper_service

    if "ups" in carrier or "ups" in service:
        if "ground" in service:
            return "UPCG"
        if "next_day" in service or "nextday" in service or "overnight" in service:
            return "UPSV"
        if "2nd_day" in service or "2day" in service:
            return "UPSP"
        return "UPCG"

    if carrier == "usps" or "usps" in service:
        if "priority" in service or "first" in service or "fcm" in service:
            return "USPM"
        return "USGA"

    if carrier in ("fedex", "fedex_uk") or "fedex" in service:
        if "ground" in service or "home_delivery" in service:
            return "FECG"
        if "2day" in service or "2_day" in service:
            return "FEHD"
        if "express" in service or "overnight" in service or "priority" in service:
            return "FESP"
        return "FECG"

    if carrier == "ontrac" or "ontrac" in service:
        return "ONCG"

    logger.warning(f"Unknown carrier/service combination {carrier}/{service}, defaulting to {DEFAULT_SERVICE_LEVEL_CODE}")
    return DEFAULT_SERVICE_LEVEL_CODE


def carrier_manifest_id(carrier: Optional[str]) -> str:
    if not carrier:
        return "USPS"
    return CARRIER_MANIFEST_IDS.get(carrier.lower(), carrier.upper())


def ship_method_name(service_level_code: str) -> str:
    return SHIP_METHOD_NAMES.get(service_level_code, "Ground")


def rithum_weight_unit(unit: Optional[str]) -> str:
    return WEIGHT_UNITS.get(str(unit or "").lower(), "OZ")
