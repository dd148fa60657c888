"""Rithum (DSCO) API v3 client."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Union
from urllib.parse import quote

from order_bridge.api import endpoints
from order_bridge.api.executor import RequestExecutor
from order_bridge.config.constants import (
    ORDER_INCLUDE_FIELDS,
    ORDER_SEARCH_DAYS,
    ORDER_SEARCH_MAX_PAGES,
    ORDERS_PER_PAGE,
)
from order_bridge.core.errors import RequestError
from order_bridge.core.logger import setup_logger

logger = setup_logger(__name__)


def _as_list(value: Union[Dict[str, Any], List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    return value if isinstance(value, list) else [value]


class RithumClient:
    """Async client for the Rithum order, shipment and stream APIs.

    All calls go through the shared RequestExecutor, which attaches the
    bearer token and handles retries.
    """

    def __init__(self, executor: RequestExecutor):
        self.executor = executor

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    async def fetch_orders(self, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Fetch one page of orders (ordersUpdatedSince/until/ordersPerPage or scrollId)."""
        return await self.executor.request("GET", endpoints.RITHUM_ORDER_PAGE, params=params) or {}

    async def get_order_by_id(
        self,
        order_id: str,
        order_key: str = "dscoOrderId",
        include: Optional[List[str]] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Fetch a single order.

        Args:
            order_id: Order identifier value
            order_key: Which identifier order_id is (dscoOrderId, poNumber, ...)
            include: Related collections to embed

        Returns:
            Order dict, or None when no order matches
        """
        params = {"orderKey": order_key, "value": order_id}
        include = ORDER_INCLUDE_FIELDS if include is None else include
        if include:
            params["include"] = ",".join(include)

        try:
            response = await self.executor.request("GET", endpoints.RITHUM_ORDERS, params=params)
        except RequestError as e:
            if e.status_code == 404:
                logger.info(f"Order {order_id} not found")
                return None
            raise

        if isinstance(response, list):
            return response[0] if response else None
        if isinstance(response, dict) and "order" in response:
            return response["order"]
        return response

    async def find_order_by_scroll(
        self,
        dsco_order_id: str,
        now: datetime,
        max_pages: int = ORDER_SEARCH_MAX_PAGES,
    ) -> Optional[Dict[str, Any]]:
        """Scroll through recently updated orders looking for dsco_order_id."""
        until = (now - timedelta(seconds=5)).astimezone(timezone.utc).isoformat()
        since = (now - timedelta(days=ORDER_SEARCH_DAYS)).astimezone(timezone.utc).isoformat()
        scroll_id = None

        for page in range(1, max_pages + 1):
            params = (
                {"scrollId": scroll_id}
                if scroll_id
                else {"ordersUpdatedSince": since, "until": until, "ordersPerPage": ORDERS_PER_PAGE}
            )
            response = await self.fetch_orders(params)
            for order in response.get("orders") or []:
                if str(order.get("dscoOrderId")) == str(dsco_order_id):
                    logger.info(f"Found order {dsco_order_id} on page {page}")
                    return order

            scroll_id = response.get("scrollId")
            if not scroll_id:
                break

        return None

    async def update_order(self, order_id: str, update_data: Dict[str, Any]) -> Any:
        return await self.executor.request(
            "PUT", endpoints.RITHUM_ORDER.format(order_id=order_id), json=update_data
        )

    async def create_shipments(self, order_shipments: Union[Dict[str, Any], List[Dict[str, Any]]]) -> Any:
        """Submit shipment/tracking updates (small batch, async on the Rithum side)."""
        payload = _as_list(order_shipments)
        logger.info(f"Submitting {len(payload)} order shipment update(s) to Rithum")
        return await self.executor.request("POST", endpoints.RITHUM_SHIPMENT_BATCH, json=payload)

    async def submit_order_updates(self, updates: Union[Dict[str, Any], List[Dict[str, Any]]]) -> Any:
        return await self.executor.request("POST", endpoints.RITHUM_ORDER_UPDATE_BATCH, json=_as_list(updates))

    async def create_order(self, order: Dict[str, Any]) -> Any:
        return await self.executor.request("POST", endpoints.RITHUM_ORDER_CREATE, json=order)

    async def create_orders_batch(self, orders: Union[Dict[str, Any], List[Dict[str, Any]]]) -> Any:
        response = await self.executor.request("POST", endpoints.RITHUM_ORDER_BATCH, json=_as_list(orders))
        if isinstance(response, dict) and response.get("requestId"):
            logger.info(f"Order batch accepted: requestId={response['requestId']}")
        return response

    async def get_order_change_log(self, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.executor.request("GET", endpoints.RITHUM_ORDER_CHANGELOG, params=params)

    # ------------------------------------------------------------------
    # Event streams
    # ------------------------------------------------------------------

    async def create_order_stream(self, description: str) -> Dict[str, Any]:
        stream_data = {
            "objectType": "order",
            "description": description,
            "query": {"queryType": "order"},
        }
        stream = await self.executor.request("POST", endpoints.RITHUM_STREAM, json=stream_data)
        logger.info(f"Created order stream {stream.get('id') if stream else None}")
        return stream or {}

    async def get_stream(self, stream_id: str) -> Optional[Dict[str, Any]]:
        """Return the stream definition, or None if it no longer exists."""
        response = await self.executor.request("GET", endpoints.RITHUM_STREAM, params={"id": stream_id})
        if isinstance(response, list):
            return response[0] if response else None
        return response or None

    async def get_stream_events(self, stream_id: str, partition_id: Any, position: str) -> Dict[str, Any]:
        """Fetch the batch of events after position in one partition."""
        path = endpoints.RITHUM_STREAM_EVENTS.format(
            stream_id=stream_id,
            partition_id=partition_id,
            position=quote(str(position), safe=""),
        )
        return await self.executor.request("GET", path) or {}
