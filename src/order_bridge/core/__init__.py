"""Core module - Logging, error taxonomy, and error monitoring."""

from order_bridge.core.logger import setup_logger

__all__ = ["setup_logger"]
