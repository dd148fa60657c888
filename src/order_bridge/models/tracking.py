"""Pydantic models for the shipment ledger."""

from typing import Any, Optional

from pydantic import BaseModel, Field


class ReportStatus(BaseModel):
    """Outcome of reporting a shipment back to Rithum."""

    attempted: bool = Field(False, description="A report call was made (or skipped on purpose)")
    success: bool = Field(False, description="Rithum accepted the update")
    skipped: bool = Field(False, description="Nothing sent because Rithum already had it")
    error: Optional[Any] = Field(None, description="Error message/details when not successful")
    updated_at: Optional[str] = Field(None, description="When the report finished (ISO 8601)")
    tracking_number: Optional[str] = Field(None, description="Tracking number actually sent")
    carrier: Optional[str] = Field(None, description="Carrier actually sent")
    line_item_count: int = Field(0, description="Line items included in the update")
    response: Optional[Any] = Field(None, description="Raw Rithum response")

    class Config:
        extra = "allow"


class TrackedShipment(BaseModel):
    """One ledger row, keyed uniquely by shipment_id."""

    shipment_id: str = Field(..., description="ShipStation shipment id")
    source_order_id: Optional[str] = Field(None, description="Correlated dscoOrderId (None = unresolved)")
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    ship_date: Optional[str] = None
    correlation_method: Optional[str] = Field(None, description="Strategy that resolved the order id")
    webhook_event: Optional[str] = Field(None, description="Event type that produced this row")
    shipment_number: Optional[str] = None
    external_shipment_id: Optional[str] = None
    sales_order_id: Optional[str] = None
    shipment_status: Optional[str] = None
    recorded_at: Optional[str] = None
    report_status: ReportStatus = Field(default_factory=ReportStatus)

    class Config:
        extra = "allow"
