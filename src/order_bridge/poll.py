"""
One-shot poll: run a single change feed cycle and print its summary as JSON.

Exit codes: 0 on success, 1 when the cycle was aborted by an AuthError or a
ConfigurationError (or any other fatal error), 2 when some orders failed.
"""

import asyncio
import json
import sys
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

from order_bridge.config.settings import Settings, settings  # noqa: E402
from order_bridge.core.errors import OrderBridgeError  # noqa: E402
from order_bridge.core.logger import setup_logger  # noqa: E402
from order_bridge.services.sync_session import PollCycleResult, SyncSession  # noqa: E402

logger = setup_logger(__name__)


async def run_once(config: Optional[Settings] = None, session: Optional[SyncSession] = None) -> PollCycleResult:
    session = session or SyncSession.create(config or settings)
    try:
        return await session.run_poll_cycle()
    finally:
        await session.aclose()


def exit_code(result: PollCycleResult) -> int:
    if result.fatal is not None:
        return 1
    if result.creation_failed or result.failed:
        return 2
    return 0


def main() -> int:
    try:
        result = asyncio.run(run_once())
    except OrderBridgeError as e:
        logger.error(f"Poll failed: {e.message}", exc_info=True)
        print(json.dumps({"success": False, "error": e.to_dict()}, indent=2))
        return 1

    print(json.dumps(result.to_dict(), indent=2, default=str))
    return exit_code(result)


if __name__ == "__main__":
    sys.exit(main())
