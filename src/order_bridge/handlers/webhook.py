"""ShipStation webhook handling: normalize, correlate, report, record."""

import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from urllib.parse import parse_qs, urlparse

from order_bridge.api.shipstation_client import ShipStationClient
from order_bridge.config.constants import (
    EVENT_BATCH_PROCESSED,
    EVENT_FULFILLMENT_REJECTED,
    EVENT_LABEL_CREATED,
    EVENT_SHIPMENT_CREATED,
    EVENT_TRACK,
    FULFILLMENT_SHIPPED_ALIASES,
)
from order_bridge.core.errors import OrderBridgeError
from order_bridge.core.logger import setup_logger
from order_bridge.core.monitoring import capture_exception, set_webhook_context
from order_bridge.models.tracking import ReportStatus, TrackedShipment
from order_bridge.models.webhook import ShipmentReference, WebhookEnvelope
from order_bridge.services.correlator import CorrelationResult, ReverseCorrelator
from order_bridge.services.tracking_reporter import ShipmentTrackingReporter
from order_bridge.store.ledger import ShipmentLedger

logger = setup_logger(__name__)

SHIPMENT_PATH = re.compile(r"/shipments/([^/?#]+)")
ENTITY_KEYS = ("data", "fulfillment", "shipment", "label")
ACKNOWLEDGED_EVENTS = (EVENT_SHIPMENT_CREATED, EVENT_TRACK, EVENT_BATCH_PROCESSED)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_event_type(raw_type: Any) -> Optional[str]:
    return str(raw_type).lower() if raw_type else None


def normalize_envelope(payload: Dict[str, Any]) -> WebhookEnvelope:
    """Accept both the legacy {resource_url, resource_type} and the typed {event, data} shapes."""
    payload = payload or {}
    event_type = normalize_event_type(
        payload.get("event")
        or payload.get("webhook_event")
        or payload.get("type")
        or payload.get("resource_type")
    )
    data: Dict[str, Any] = {}
    for key in ENTITY_KEYS:
        if isinstance(payload.get(key), dict):
            data = payload[key]
            break
    return WebhookEnvelope(
        event_type=event_type,
        resource_url=payload.get("resource_url"),
        data=data,
        raw=payload,
    )


def _query_param(url: Optional[str], name: str) -> Optional[str]:
    if not url:
        return None
    values = parse_qs(urlparse(url).query).get(name)
    return values[0] if values else None


def shipment_id_from_resource_url(url: Optional[str]) -> Optional[str]:
    """/shipments/{id} path segment, else the shipment_id query param."""
    if not url:
        return None
    match = SHIPMENT_PATH.search(urlparse(url).path)
    if match:
        return match.group(1)
    return _query_param(url, "shipment_id")


def extract_reference(envelope: WebhookEnvelope) -> ShipmentReference:
    """Where the webhook points. Inline data wins over the resource URL."""
    data = envelope.data
    raw = envelope.raw
    url = envelope.resource_url

    return ShipmentReference(
        shipment_id=data.get("shipment_id") or shipment_id_from_resource_url(url),
        fulfillment_id=data.get("fulfillment_id") or _query_param(url, "fulfillment_id"),
        batch_id=data.get("batch_id") or _query_param(url, "batch_id"),
        tracking_number=(
            data.get("tracking_number") or raw.get("tracking_number") or raw.get("tracking")
        ),
        carrier_name=data.get("carrier_name") or raw.get("carrier_name") or raw.get("carrier"),
        carrier_id=data.get("carrier_id") or raw.get("carrier_id"),
        ship_date=data.get("ship_date"),
    )


def merge_tracking(tracking: Dict[str, Any], reference: ShipmentReference) -> Dict[str, Any]:
    """Tracking from the shipment, with gaps filled from the webhook."""
    merged = dict(tracking)
    for key in ("tracking_number", "carrier_name", "carrier_id", "ship_date"):
        if not merged.get(key) and getattr(reference, key):
            merged[key] = getattr(reference, key)
    return merged


class ShipmentWebhookHandler:
    """Turns a ShipStation webhook into (at most) one ledger upsert.

    handle() never raises for expected failures: the sender always gets a 200,
    and the outcome is recorded in the ledger and the logs instead.
    """

    def __init__(
        self,
        shipstation: ShipStationClient,
        correlator: ReverseCorrelator,
        reporter: ShipmentTrackingReporter,
        ledger: ShipmentLedger,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.shipstation = shipstation
        self.correlator = correlator
        self.reporter = reporter
        self.ledger = ledger
        self.clock = clock

    async def handle(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        envelope = normalize_envelope(payload)
        event_type = envelope.event_type
        logger.info(
            f"Processing webhook: event={event_type}, legacy={envelope.is_legacy}",
            extra={"event_type": event_type},
        )
        set_webhook_context(event_type)

        if event_type in FULFILLMENT_SHIPPED_ALIASES or event_type == EVENT_LABEL_CREATED:
            return await self.process_shipment_event(envelope)
        if event_type == EVENT_FULFILLMENT_REJECTED:
            return await self.process_rejection(envelope)
        if event_type in ACKNOWLEDGED_EVENTS:
            logger.info(f"Acknowledged {event_type} webhook: {envelope.data or envelope.resource_url}")
            return {"event_type": event_type, "status": "acknowledged"}

        logger.info(f"Ignoring unhandled webhook event: {event_type}")
        return {"event_type": event_type, "status": "ignored"}

    async def resolve_reference(self, envelope: WebhookEnvelope) -> ShipmentReference:
        """Fill in the shipment id (via the batch's labels) and label tracking when missing."""
        reference = extract_reference(envelope)

        if not reference.shipment_id and reference.batch_id:
            labels = await self.shipstation.get_labels({"batch_id": reference.batch_id})
            if labels:
                label = labels[0]
                reference.shipment_id = label.get("shipment_id")
                reference.tracking_number = reference.tracking_number or label.get("tracking_number")
                reference.carrier_id = reference.carrier_id or label.get("carrier_id")
                reference.carrier_name = reference.carrier_name or label.get("carrier_code")
                logger.info(f"Resolved batch {reference.batch_id} to shipment {reference.shipment_id}")

        if reference.shipment_id and not reference.tracking_number and envelope.event_type == EVENT_LABEL_CREATED:
            label = await self.shipstation.get_label_by_shipment_id(reference.shipment_id)
            if label:
                reference.tracking_number = label.get("tracking_number")
                reference.carrier_name = reference.carrier_name or label.get("carrier_code")

        return reference

    async def process_shipment_event(self, envelope: WebhookEnvelope) -> Dict[str, Any]:
        """fulfillment_shipped / label_created: fetch, correlate, report, record."""
        event_type = envelope.event_type
        try:
            reference = await self.resolve_reference(envelope)
        except OrderBridgeError as e:
            logger.error(f"Could not resolve shipment for {event_type} webhook: {e.message}")
            capture_exception(e, context={"event_type": event_type, "payload": envelope.raw})
            return {"event_type": event_type, "status": "failed", "error": e.message}

        shipment_id = reference.shipment_id
        if not shipment_id:
            logger.warning(f"No shipment id in {event_type} webhook: {envelope.raw}")
            return {"event_type": event_type, "status": "ignored", "error": "No shipment id in webhook"}

        set_webhook_context(event_type, shipment_id=shipment_id)
        log_context = {"event_type": event_type, "shipment_id": shipment_id}

        try:
            shipment = await self.shipstation.get_shipment_by_id(shipment_id) or {}
        except OrderBridgeError as e:
            logger.error(f"Failed to fetch shipment {shipment_id}: {e.message}", extra=log_context)
            entry = await self._record(
                envelope, shipment_id, {}, merge_tracking({}, reference), CorrelationResult(),
                ReportStatus(attempted=False, error=f"Shipment lookup failed: {e.message}", updated_at=self._now()),
            )
            return {"event_type": event_type, "status": "failed", "shipment_id": shipment_id, "entry": entry}

        tracking = merge_tracking(ShipStationClient.tracking_from_shipment(shipment), reference)
        correlation = await self.correlator.resolve(shipment)

        if not correlation.resolved:
            entry = await self._record(
                envelope, shipment_id, shipment, tracking, correlation,
                ReportStatus(attempted=False, error="unresolved", updated_at=self._now()),
            )
            return {"event_type": event_type, "status": "unresolved", "shipment_id": shipment_id, "entry": entry}

        set_webhook_context(event_type, shipment_id=shipment_id, source_order_id=correlation.source_order_id)
        log_context["source_order_id"] = correlation.source_order_id
        logger.info(
            f"Shipment {shipment_id} -> Rithum order {correlation.source_order_id} (via {correlation.method})",
            extra=log_context,
        )

        try:
            report = await self.reporter.report(
                shipment, correlation.source_order_id, tracking_info=tracking, shipment_id=shipment_id
            )
        except OrderBridgeError as e:
            logger.error(
                f"Failed to report shipment {shipment_id}: {type(e).__name__}: {e.message}", extra=log_context
            )
            capture_exception(e, context={"shipment_id": shipment_id, "source_order_id": correlation.source_order_id})
            report = ReportStatus(
                attempted=True,
                success=False,
                error=e.to_dict(),
                updated_at=self._now(),
                tracking_number=tracking.get("tracking_number"),
            )

        entry = await self._record(envelope, shipment_id, shipment, tracking, correlation, report)
        status = "reported" if report.success else "failed"
        return {"event_type": event_type, "status": status, "shipment_id": shipment_id, "entry": entry}

    async def process_rejection(self, envelope: WebhookEnvelope) -> Dict[str, Any]:
        """fulfillment_rejected: nothing to report, but the failure is kept in the ledger."""
        event_type = envelope.event_type
        reference = extract_reference(envelope)
        reason = envelope.data.get("reason") or envelope.data.get("rejection_reason") or "Fulfillment rejected"
        logger.warning(
            f"Fulfillment rejected for shipment {reference.shipment_id}: {reason}",
            extra={"event_type": event_type, "shipment_id": reference.shipment_id},
        )

        if not reference.shipment_id:
            return {"event_type": event_type, "status": "ignored", "error": "No shipment id in webhook"}

        correlation = await self.correlator.resolve(envelope.data)
        entry = await self._record(
            envelope,
            reference.shipment_id,
            envelope.data,
            merge_tracking({}, reference),
            correlation,
            ReportStatus(attempted=False, error=reason, updated_at=self._now()),
        )
        return {"event_type": event_type, "status": "rejected", "shipment_id": reference.shipment_id, "entry": entry}

    async def _record(
        self,
        envelope: WebhookEnvelope,
        shipment_id: str,
        shipment: Dict[str, Any],
        tracking: Dict[str, Any],
        correlation: CorrelationResult,
        report: ReportStatus,
    ) -> TrackedShipment:
        entry = TrackedShipment(
            shipment_id=str(shipment_id),
            source_order_id=correlation.source_order_id,
            tracking_number=report.tracking_number or tracking.get("tracking_number"),
            carrier=report.carrier or tracking.get("carrier_name") or tracking.get("carrier_code"),
            ship_date=getattr(report, "ship_date", None) or tracking.get("ship_date"),
            correlation_method=correlation.method,
            webhook_event=envelope.event_type,
            shipment_number=shipment.get("shipment_number"),
            external_shipment_id=shipment.get("external_shipment_id"),
            sales_order_id=shipment.get("sales_order_id"),
            shipment_status=shipment.get("shipment_status"),
            recorded_at=self._now(),
            report_status=report,
        )
        return await self.ledger.record(entry)

    def _now(self) -> str:
        return self.clock().isoformat()
