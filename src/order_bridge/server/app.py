"""FastAPI application setup and configuration."""

import asyncio
from typing import Optional

from fastapi import FastAPI

from order_bridge import __version__
from order_bridge.config.settings import settings
from order_bridge.core.logger import setup_logger
from order_bridge.core.monitoring import init_monitoring
from order_bridge.services.scheduler import PollScheduler
from order_bridge.services.sync_session import SyncSession

logger = setup_logger(__name__)

# Background tasks still running (drained on shutdown)
_pending_tasks = set()


def track_task(task: asyncio.Task) -> None:
    """
    Track a background task for graceful shutdown.

    Args:
        task: The asyncio Task to track
    """
    _pending_tasks.add(task)
    task.add_done_callback(_pending_tasks.discard)


def create_app(
    session: Optional[SyncSession] = None,
    start_scheduler: Optional[bool] = None,
) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        session: Pre-built SyncSession (built from settings on startup if None)
        start_scheduler: Override settings.scheduler_enabled

    Returns:
        Configured FastAPI app instance
    """
    app = FastAPI(
        title="Order Bridge",
        version=__version__,
        description="Syncs Rithum orders into ShipStation and reports shipments back to Rithum",
    )

    init_monitoring(settings.glitchtip_dsn, settings.environment)

    from order_bridge.server import routes

    app.include_router(routes.router)

    @app.on_event("startup")
    async def startup_handler():
        """
        Initialize the sync session and the poll scheduler.

        Steps:
        1. Build the SyncSession (clients, cursor, ledger)
        2. Register it with the routes
        3. Start the APScheduler poll job (if enabled)
        """
        logger.info("Starting Order Bridge...")

        app.state.session = session or SyncSession.create(settings)
        routes.set_sync_session(app.state.session)

        scheduler_enabled = settings.scheduler_enabled if start_scheduler is None else start_scheduler
        app.state.scheduler = None
        if scheduler_enabled:
            scheduler = PollScheduler(app.state.session, interval_minutes=settings.poll_interval_minutes)
            try:
                await scheduler.start(run_on_startup=settings.poll_on_startup)
                app.state.scheduler = scheduler
                routes.set_poll_scheduler(scheduler)
            except Exception as e:
                logger.error(f"Error starting poll scheduler: {e}", exc_info=True)
        else:
            logger.info("Poll scheduler disabled, polling only via POST /api/sync/run")

        logger.info("Application startup completed")

    @app.on_event("shutdown")
    async def shutdown_handler():
        """
        Gracefully shut down all resources.

        1. Stop the poll scheduler
        2. Wait for pending background tasks
        3. Close the HTTP clients
        """
        logger.info("Starting graceful shutdown...")

        try:
            if getattr(app.state, "scheduler", None):
                await app.state.scheduler.stop()

            if _pending_tasks:
                logger.info(f"Waiting for {len(_pending_tasks)} pending tasks to complete...")
                await asyncio.gather(*_pending_tasks, return_exceptions=True)
                logger.info("All pending tasks completed")

            if getattr(app.state, "session", None):
                await app.state.session.aclose()

            routes.set_poll_scheduler(None)
            routes.set_sync_session(None)
            logger.info("Graceful shutdown completed successfully")

        except Exception as e:
            logger.error(f"Error during shutdown: {e}", exc_info=True)

    return app
