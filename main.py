"""
Haulage Trip Lifecycle Engine
=============================
Entry point for the automation process. Run with: python main.py

Starts the scheduler (trip auto-start, maintenance checks, salary
payouts) and runs until SIGINT / SIGTERM.
"""

import asyncio
import logging
import signal

from haulage.config import settings
from haulage.container import build_services
from haulage.infrastructure.database import make_engine, make_session_factory

logger = logging.getLogger("haulage")


async def run() -> None:
    engine = make_engine()
    services = await build_services(make_session_factory(engine))
    scheduler = services.scheduler()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await scheduler.start()
    try:
        await stop.wait()
    finally:
        await scheduler.stop()
        await engine.dispose()
    logger.info("Shutdown complete")


if __name__ == "__main__":
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
    asyncio.run(run())
