"""Configuration module - Settings and business constants."""

from order_bridge.config.settings import Settings, settings

__all__ = ["Settings", "settings"]
