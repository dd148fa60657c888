"""State store module - cursor and shipment ledger persistence."""

from .base import StateStore
from .file_store import JSONFileStore, MemoryStateStore
from .ledger import ShipmentLedger

__all__ = ["StateStore", "JSONFileStore", "MemoryStateStore", "ShipmentLedger"]
