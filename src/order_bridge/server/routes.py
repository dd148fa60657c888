"""API routes: ShipStation webhooks, manual sync and status."""

import asyncio
import json
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Query, Request, Response
from fastapi.responses import JSONResponse

from order_bridge import __version__
from order_bridge.core.errors import OrderBridgeError
from order_bridge.core.logger import setup_logger
from order_bridge.core.monitoring import capture_exception
from order_bridge.server.app import track_task

logger = setup_logger(__name__)
router = APIRouter()

# Global instances (initialized in app.py on startup)
sync_session = None
poll_scheduler = None


def set_sync_session(session) -> None:
    """Set the global SyncSession. Called by app.py during startup."""
    global sync_session
    sync_session = session


def set_poll_scheduler(scheduler) -> None:
    """Set the global PollScheduler instance."""
    global poll_scheduler
    poll_scheduler = scheduler


def _not_ready() -> JSONResponse:
    return JSONResponse(status_code=503, content={"error": "Sync session not initialized"})


def _error_response(error: OrderBridgeError) -> JSONResponse:
    return JSONResponse(status_code=502, content=error.to_dict())


@router.get("/")
async def root() -> dict:
    """Root endpoint with basic service info."""
    return {
        "service": "Order Bridge",
        "version": __version__,
        "endpoints": {
            "webhook": "POST /api/shipstation/webhooks/v2",
            "legacy_webhook": "POST /api/shipstation/webhooks",
            "health": "GET /health",
            "sync_run": "POST /api/sync/run",
            "sync_status": "GET /api/sync/status",
            "tracking": "GET /api/tracking",
            "subscriptions": "GET /api/shipstation/webhooks",
            "docs": "GET /docs",
        },
    }


@router.get("/health")
async def health_check() -> dict:
    """Health check endpoint for monitoring."""
    if not sync_session:
        return {"status": "unhealthy", "service": "order-bridge", "error": "Sync session not initialized"}

    try:
        storage_ok = await sync_session.store.health_check()
    except Exception as e:
        logger.error(f"Health check error: {e}")
        storage_ok = False

    return {
        "status": "healthy" if storage_ok else "degraded",
        "service": "order-bridge",
        "storage": "ok" if storage_ok else "error",
        "scheduler": "running" if poll_scheduler and poll_scheduler.is_running else "stopped",
    }


async def _process_webhook_background(event_payload: Dict[str, Any]) -> None:
    """Background task for processing a webhook after 200 OK is returned."""
    try:
        outcome = await sync_session.webhooks.handle(event_payload)
        logger.info(
            f"Background processing completed: event={outcome.get('event_type')}, "
            f"status={outcome.get('status')}, shipment={outcome.get('shipment_id')}"
        )
    except Exception as e:
        logger.error(f"Error in background webhook processing: {e}", exc_info=True)
        capture_exception(e, context={"payload": event_payload})


@router.post("/api/shipstation/webhooks/v2")
@router.post("/api/shipstation/webhooks")
async def shipstation_webhook(request: Request, background_tasks: BackgroundTasks) -> Response:
    """
    ShipStation webhook endpoint (typed v2 events and legacy resource_url notifications).

    **CRITICAL**: Always returns 200 with an EMPTY body, whatever happens while
    processing. Failures are logged and recorded in the shipment ledger instead,
    so ShipStation never re-delivers because of our errors.
    """
    try:
        event_payload = json.loads(await request.body() or b"{}")
        if not isinstance(event_payload, dict):
            raise ValueError("Webhook body is not a JSON object")

        logger.info(
            f"Webhook received: event={event_payload.get('event') or event_payload.get('resource_type')} "
            "- queuing for background processing"
        )

        if sync_session:
            background_tasks.add_task(_process_webhook_background, event_payload)
        else:
            logger.error("Sync session not initialized, webhook dropped")

    except Exception as e:
        logger.error(f"Webhook parse error: {e}")

    return Response(content="", status_code=200)


@router.post("/api/sync/run")
async def run_sync(background: bool = Query(False, description="Start the cycle and return immediately")):
    """Run one poll cycle now (Rithum change feed -> ShipStation)."""
    if not sync_session:
        return _not_ready()

    if sync_session.poll_in_progress:
        return JSONResponse(status_code=409, content={"error": "Poll cycle already in progress"})

    if background:
        track_task(asyncio.create_task(sync_session.run_poll_cycle()))
        return {"status": "started"}

    result = await sync_session.run_poll_cycle()
    return JSONResponse(status_code=200 if result.fatal is None else 500, content=result.to_dict())


@router.get("/api/sync/status")
async def sync_status():
    """Stream cursor status and the next scheduled poll."""
    if not sync_session:
        return _not_ready()

    try:
        status = await sync_session.status()
    except OrderBridgeError as e:
        return _error_response(e)

    status["nextScheduledPoll"] = poll_scheduler.get_next_scheduled_poll() if poll_scheduler else None
    return status


@router.get("/api/tracking")
async def tracking_summary(recent: int = Query(5, ge=0, le=100)):
    """Shipment ledger summary."""
    if not sync_session:
        return _not_ready()
    return await sync_session.ledger.summary(recent=recent)


@router.get("/api/shipstation/webhooks")
async def list_webhook_subscriptions(event: Optional[str] = None):
    """ShipStation webhook subscriptions (optionally filtered by event)."""
    if not sync_session:
        return _not_ready()

    try:
        webhooks = await sync_session.shipstation.list_webhooks()
    except OrderBridgeError as e:
        return _error_response(e)

    if event:
        webhooks = [w for w in webhooks if w.get("event") == event]
    return {"webhooks": webhooks, "count": len(webhooks)}
