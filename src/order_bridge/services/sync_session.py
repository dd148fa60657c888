"""
SyncSession: one explicit owner for the sync engine's state.

Holds the credential manager, both request executors, API clients, change feed
cursor, state store and shipment ledger. The poller and the webhook routes are
handed the same session instead of sharing module-level clients.
"""

import asyncio
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx

from order_bridge.api import endpoints
from order_bridge.api.credentials import CredentialManager
from order_bridge.api.executor import RequestExecutor
from order_bridge.api.rithum_client import RithumClient
from order_bridge.api.shipstation_client import ShipStationClient
from order_bridge.config.settings import Settings, settings as default_settings
from order_bridge.core.errors import AuthError, ConfigurationError, OrderBridgeError
from order_bridge.core.logger import setup_logger
from order_bridge.handlers.webhook import ShipmentWebhookHandler
from order_bridge.services.change_feed import CURSOR_KEY, ChangeFeedCursor
from order_bridge.services.correlator import ReverseCorrelator
from order_bridge.services.delivery import DeliverySubmitter
from order_bridge.services.order_mapper import OrderMapper, load_sku_weights
from order_bridge.services.tracking_reporter import ShipmentTrackingReporter
from order_bridge.store.base import StateStore
from order_bridge.store.file_store import JSONFileStore
from order_bridge.store.ledger import LEDGER_KEY, ShipmentLedger

logger = setup_logger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PollCycleResult:
    """Result of one poll cycle."""
    started_at: str
    completed_at: Optional[str] = None
    stream_id: Optional[str] = None
    position: Optional[str] = None
    events_fetched: int = 0
    events_matched: int = 0
    mapped: int = 0
    created: List[Dict[str, Any]] = field(default_factory=list)
    skipped: List[Dict[str, Any]] = field(default_factory=list)
    failed: List[Dict[str, Any]] = field(default_factory=list)
    creation_failed: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    fatal: Optional[str] = None
    fatal_type: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.fatal is None and not self.creation_failed

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["success"] = self.success
        return data


class SyncSession:
    """Owns the engine's collaborators and runs poll cycles one at a time."""

    def __init__(
        self,
        credentials: CredentialManager,
        rithum_executor: RequestExecutor,
        shipstation_executor: RequestExecutor,
        store: StateStore,
        mapper: OrderMapper,
        clock: Callable[[], datetime] = _utc_now,
        warehouse_id: Optional[str] = None,
        ship_from: Optional[Dict[str, Any]] = None,
        config: Optional[Settings] = None,
    ):
        self.credentials = credentials
        self.rithum_executor = rithum_executor
        self.shipstation_executor = shipstation_executor
        self.store = store
        self.mapper = mapper
        self.clock = clock
        self.config = config

        self.rithum = RithumClient(rithum_executor)
        self.shipstation = ShipStationClient(shipstation_executor, warehouse_id=warehouse_id, ship_from=ship_from)
        self.cursor = ChangeFeedCursor(self.rithum, store, clock=clock)
        self.ledger = ShipmentLedger(store, clock=clock)
        self.submitter = DeliverySubmitter(self.shipstation)
        self.correlator = ReverseCorrelator(self.shipstation)
        self.reporter = ShipmentTrackingReporter(self.rithum, self.shipstation, self.ledger, clock=clock)
        self.webhooks = ShipmentWebhookHandler(
            self.shipstation, self.correlator, self.reporter, self.ledger, clock=clock
        )

        self._poll_lock = asyncio.Lock()
        self.last_cycle: Optional[PollCycleResult] = None

    @classmethod
    def create(
        cls,
        config: Optional[Settings] = None,
        store: Optional[StateStore] = None,
        rithum_transport: Optional[httpx.AsyncBaseTransport] = None,
        shipstation_transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> "SyncSession":
        """Build a session from settings. Credentials are validated lazily, per use."""
        config = config or default_settings
        store = store or JSONFileStore(
            files={CURSOR_KEY: config.stream_config_file, LEDGER_KEY: config.tracking_file}
        )

        credentials = CredentialManager(
            token_url=f"{config.rithum_api_url.rstrip('/')}{endpoints.RITHUM_TOKEN}",
            client_id=config.rithum_client_id,
            client_secret=config.rithum_client_secret,
            transport=rithum_transport,
        )
        rithum_executor = RequestExecutor(
            base_url=config.rithum_api_url.rstrip("/"),
            credentials=credentials,
            transport=rithum_transport,
        )
        shipstation_executor = RequestExecutor(
            base_url=config.shipstation_base_url.rstrip("/"),
            headers={"API-Key": config.shipstation_api_key or "", "Content-Type": "application/json"},
            transport=shipstation_transport,
        )
        mapper = OrderMapper(
            skip_test_orders=config.skip_test_orders,
            sku_weights=load_sku_weights(config.sku_weights_file),
        )

        return cls(
            credentials=credentials,
            rithum_executor=rithum_executor,
            shipstation_executor=shipstation_executor,
            store=store,
            mapper=mapper,
            clock=clock,
            warehouse_id=config.shipstation_warehouse_id,
            ship_from=config.ship_from,
            config=config,
        )

    @property
    def poll_in_progress(self) -> bool:
        return self._poll_lock.locked()

    async def run_poll_cycle(self, event_reasons: Optional[List[str]] = None) -> PollCycleResult:
        """
        Poll the change feed once and deliver new orders to ShipStation.

        Steps:
        1. Poll the stream for create events (with full order details)
        2. Gate each order with should_process
        3. Map and validate; invalid orders are recorded with every error
        4. Deliver the valid orders; each failure is isolated

        Errors never escape: they are returned in the result. An AuthError or
        ConfigurationError ends the cycle and is reported as fatal.
        """
        result = PollCycleResult(started_at=self.clock().isoformat())

        if self._poll_lock.locked():
            logger.warning("Poll cycle already in progress, skipping")
            result.errors.append("Poll cycle already in progress")
            result.completed_at = self.clock().isoformat()
            return result

        async with self._poll_lock:
            try:
                await self._poll_and_deliver(result, event_reasons)
            except (AuthError, ConfigurationError) as e:
                logger.error(f"Poll cycle aborted: {e.message}")
                result.fatal = e.message
                result.fatal_type = type(e).__name__
            except OrderBridgeError as e:
                logger.error(f"Poll cycle failed: {e.message}", exc_info=True)
                result.fatal = e.message
                result.fatal_type = type(e).__name__
                result.errors.append(e.message)

        result.completed_at = self.clock().isoformat()
        self.last_cycle = result

        logger.info(
            f"Poll cycle completed: {len(result.created)} created, {len(result.skipped)} skipped, "
            f"{len(result.failed)} invalid, {len(result.creation_failed)} failed"
        )
        return result

    async def _poll_and_deliver(self, result: PollCycleResult, event_reasons: Optional[List[str]]) -> None:
        if self.config:
            self.config.validate_rithum()
            self.config.validate_shipstation()

        poll = await self.cursor.poll(event_reasons=event_reasons, include_order_details=True)
        result.stream_id = poll.stream_id
        result.position = poll.position
        result.events_fetched = len(poll.all_events)
        result.events_matched = len(poll.events)

        mapped_orders = []
        for order in poll.order_details:
            order_id = order.get("dscoOrderId") or order.get("id")

            if order.get("fetchError") or order.get("error"):
                error = order.get("fetchError") or order.get("error")
                result.failed.append({"dscoOrderId": order_id, "errors": [error]})
                result.errors.append(f"Order {order_id}: {error}")
                continue

            if not self.mapper.should_process(order):
                result.skipped.append({
                    "dscoOrderId": order_id,
                    "status": order.get("dscoStatus"),
                    "lifecycle": order.get("dscoLifecycle"),
                })
                continue

            mapping = self.mapper.map_and_validate(order)
            if not mapping.success:
                logger.warning(f"Order {order_id} failed validation: {mapping.errors}")
                result.failed.append({"dscoOrderId": order_id, "errors": mapping.errors})
                continue
            mapped_orders.append(mapping.mapped_order)

        result.mapped = len(mapped_orders)
        if not mapped_orders:
            return

        batch = await self.submitter.create_orders(mapped_orders)
        for delivery in batch.results:
            if delivery.success:
                result.created.append({"dscoOrderId": delivery.order_number, **(delivery.order_ref or {})})
            else:
                result.creation_failed.append({
                    "dscoOrderId": delivery.order_number,
                    "error": delivery.error,
                    "errorType": delivery.error_type,
                    "details": delivery.details,
                })
                result.errors.append(f"Order {delivery.order_number}: {delivery.error}")

    async def status(self) -> Dict[str, Any]:
        stream = await self.cursor.status()
        return {
            "stream": stream,
            "pollInProgress": self.poll_in_progress,
            "lastCycle": self.last_cycle.to_dict() if self.last_cycle else None,
        }

    async def aclose(self) -> None:
        await self.rithum_executor.aclose()
        await self.shipstation_executor.aclose()
