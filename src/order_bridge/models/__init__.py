"""Data models for the shipment ledger and webhook payloads."""

from .tracking import ReportStatus, TrackedShipment
from .webhook import ShipmentReference, WebhookEnvelope

__all__ = ["ReportStatus", "TrackedShipment", "ShipmentReference", "WebhookEnvelope"]
