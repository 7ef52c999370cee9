"""
Background worker that runs the follow-up scheduler.

Usage:
    python -m followups.worker

Sweeps due executions every SCHEDULER_INTERVAL_SECONDS.
For production, run this as a separate process (e.g., systemd service, Docker container).
"""

import asyncio
import logging
import signal

from followups.core.config import settings
from followups.services.scheduler import Scheduler

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


async def worker_loop() -> None:
    """Run sweeps until SIGINT/SIGTERM."""
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows: KeyboardInterrupt handling in main() still applies
            pass

    # Raises TransportConfigError before the first sweep when the transport is misconfigured
    scheduler = Scheduler()
    logger.info(
        "Follow-up worker starting (transport=%s)",
        type(scheduler.dispatcher).__name__,
    )
    await scheduler.run_forever(stop_event)


def main() -> None:
    try:
        asyncio.run(worker_loop())
    except KeyboardInterrupt:
        logger.info("Worker stopped by user")


if __name__ == "__main__":
    main()
