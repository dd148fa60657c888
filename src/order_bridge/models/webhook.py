"""Pydantic models for ShipStation webhook payloads."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class WebhookEnvelope(BaseModel):
    """Normalized webhook, built from either the legacy or the typed shape.

    Legacy: {"resource_url": "...", "resource_type": "FULFILLMENT_SHIPPED_V2"}
    Typed:  {"event": "fulfillment_shipped_v2", "data": {...}} (or the entity
            under its own key such as "fulfillment", "shipment", "label")
    """

    event_type: Optional[str] = Field(None, description="Lower-cased event name")
    resource_url: Optional[str] = Field(None, description="Resource URL to dereference (legacy shape)")
    data: Dict[str, Any] = Field(default_factory=dict, description="Inline entity, if any")
    raw: Dict[str, Any] = Field(default_factory=dict, description="Original payload")

    class Config:
        extra = "allow"

    @property
    def is_legacy(self) -> bool:
        return bool(self.resource_url) and not self.data


class ShipmentReference(BaseModel):
    """Where a webhook points: a shipment plus whatever tracking it carried inline."""

    shipment_id: Optional[str] = None
    fulfillment_id: Optional[str] = None
    batch_id: Optional[str] = None
    tracking_number: Optional[str] = None
    carrier_name: Optional[str] = None
    carrier_id: Optional[str] = None
    ship_date: Optional[str] = None
