"""Order Bridge - Main Entry Point (webhook server plus poll scheduler)."""

import os

from dotenv import load_dotenv

# Load .env before settings and logging read the environment
load_dotenv()

from order_bridge.config.settings import settings  # noqa: E402
from order_bridge.server.app import create_app  # noqa: E402

# Create FastAPI application
app = create_app()


def run() -> None:
    """Run the server with uvicorn."""
    import uvicorn

    reload = os.getenv("RELOAD", "false").lower() == "true"

    uvicorn.run(
        "order_bridge.main:app",
        host=settings.host,
        port=settings.port,
        reload=reload,
        log_level=settings.log_level.lower(),
        timeout_graceful_shutdown=120,
        timeout_keep_alive=5,
        access_log=False,  # structured logging instead
    )


if __name__ == "__main__":
    run()
