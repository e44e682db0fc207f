"""
Deadline Watchdog Runner
Run this as a separate process when the API runs with WATCHDOG_ENABLED=false:
    python run_watchdog.py
"""

import asyncio
import logging
import signal
import sys

from bookingflow.config import WATCHDOG_INTERVAL_SECONDS
from bookingflow.database import SessionLocal
from bookingflow.services.deadline_watchdog import DeadlineWatchdog, WatchdogScheduler

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)


async def run_watchdog():
    scheduler = WatchdogScheduler(
        DeadlineWatchdog(SessionLocal).scan_and_expire, WATCHDOG_INTERVAL_SECONDS
    )
    shutdown = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown.set)
        except NotImplementedError:
            pass

    scheduler.start()
    await shutdown.wait()
    await scheduler.stop()


if __name__ == "__main__":
    logger.info("🚀 Starting deadline watchdog...")
    try:
        asyncio.run(run_watchdog())
    except KeyboardInterrupt:
        logger.info("👋 Deadline watchdog stopped by user")
    except Exception as e:
        logger.error(f"❌ Deadline watchdog crashed: {e}")
        sys.exit(1)
