"""
Delivery Submitter.

Pushes mapped orders into ShipStation. Each order in a batch succeeds or fails
on its own; a rejected order is recorded with its cause and never re-submitted
here (the request executor already retried transient failures).
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from order_bridge.api.shipstation_client import ShipStationClient
from order_bridge.core.errors import AuthError, ConfigurationError, OrderBridgeError
from order_bridge.core.logger import setup_logger

logger = setup_logger(__name__)


@dataclass
class DeliveryResult:
    """Outcome of delivering one mapped order."""
    order_number: str
    success: bool
    order_ref: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    details: Any = None


@dataclass
class BatchDeliveryResult:
    """Outcome of delivering a batch of mapped orders."""
    results: List[DeliveryResult] = field(default_factory=list)

    @property
    def created(self) -> List[DeliveryResult]:
        return [r for r in self.results if r.success]

    @property
    def failed(self) -> List[DeliveryResult]:
        return [r for r in self.results if not r.success]


class DeliverySubmitter:
    """Creates ShipStation orders from mapped orders."""

    def __init__(self, client: ShipStationClient):
        self.client = client

    async def create_order(self, mapped_order: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create one order downstream.

        Returns:
            Downstream order reference (order_id, shipment_id, ...)

        Raises:
            DeliveryError: ShipStation rejected the order
        """
        return await self.client.create_order(mapped_order)

    async def create_orders(self, mapped_orders: List[Dict[str, Any]]) -> BatchDeliveryResult:
        """
        Create a batch of orders, isolating per-order failures.

        Credential and configuration errors affect every order alike, so they
        abort the batch instead of being recorded once per order.
        """
        batch = BatchDeliveryResult()

        for mapped_order in mapped_orders:
            order_number = str(mapped_order.get("order_number"))
            try:
                order_ref = await self.create_order(mapped_order)
                batch.results.append(DeliveryResult(order_number=order_number, success=True, order_ref=order_ref))
            except (AuthError, ConfigurationError):
                raise
            except OrderBridgeError as e:
                logger.error(f"Failed to deliver order {order_number}: {e.message}")
                batch.results.append(
                    DeliveryResult(
                        order_number=order_number,
                        success=False,
                        error=e.message,
                        error_type=type(e).__name__,
                        details=e.details,
                    )
                )

        logger.info(f"Delivered {len(batch.created)}/{len(batch.results)} order(s)")
        return batch
