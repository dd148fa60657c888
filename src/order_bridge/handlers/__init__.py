"""Handlers module - ShipStation webhook handling."""

from order_bridge.handlers.webhook import ShipmentWebhookHandler, normalize_envelope

__all__ = ["ShipmentWebhookHandler", "normalize_envelope"]
