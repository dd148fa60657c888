"""
GlitchTip Error Monitoring Utilities

Sentry-compatible initialisation plus helpers for tagging and capturing errors.
"""

import logging
from typing import Any, Dict, Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from order_bridge.core.logger import setup_logger

logger = setup_logger(__name__)


def init_monitoring(dsn: Optional[str], environment: str) -> bool:
    """
    Initialise GlitchTip error monitoring if a DSN is configured.

    Args:
        dsn: GlitchTip/Sentry DSN (None = disabled)
        environment: Deployment environment name

    Returns:
        True if monitoring was initialised
    """
    if not dsn:
        return False

    try:
        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                LoggingIntegration(
                    level=None,  # Capture all log levels as breadcrumbs
                    event_level=logging.ERROR,  # Send ERROR logs as events
                ),
            ],
            traces_sample_rate=0.1,
            profiles_sample_rate=0.0,
            send_default_pii=False,
        )
        logger.info("GlitchTip error monitoring initialized")
        return True
    except Exception as e:
        logger.error(f"Failed to initialize GlitchTip: {e}")
        return False


def set_webhook_context(
    event_type: Optional[str],
    shipment_id: Optional[str] = None,
    source_order_id: Optional[str] = None,
    **extra_tags
) -> None:
    """
    Set webhook-specific context for error tracking.

    Args:
        event_type: ShipStation webhook event type
        shipment_id: Downstream shipment id
        source_order_id: Correlated Rithum order id
        **extra_tags: Additional tags to add
    """
    try:
        sentry_sdk.set_tag("webhook.event_type", event_type or "unknown")
        if shipment_id:
            sentry_sdk.set_tag("webhook.shipment_id", shipment_id)
        if source_order_id:
            sentry_sdk.set_tag("webhook.source_order_id", source_order_id)

        for key, value in extra_tags.items():
            sentry_sdk.set_tag(key, value)

        context_data = {
            "event_type": event_type,
            "shipment_id": shipment_id,
            "source_order_id": source_order_id,
        }
        context_data.update(extra_tags)
        sentry_sdk.set_context("webhook", context_data)

    except Exception as e:
        logger.warning(f"Failed to set webhook context: {e}")


def capture_exception(
    error: Exception,
    context: Optional[Dict[str, Any]] = None,
    level: str = "error"
) -> None:
    """
    Capture an exception and send to GlitchTip.

    Args:
        error: The exception to capture
        context: Additional context data
        level: Error level (error, warning, info)
    """
    try:
        with sentry_sdk.new_scope() as scope:
            if context:
                scope.set_context("custom", context)
            scope.set_level(level)
            sentry_sdk.capture_exception(error)

    except Exception as e:
        logger.warning(f"Failed to capture exception in GlitchTip: {e}")
