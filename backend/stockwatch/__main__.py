"""Background service entry point: ``python -m stockwatch``."""

import asyncio
import signal

import structlog

from stockwatch.config import settings
from stockwatch.core.logging import configure_logging
from stockwatch.db.session import async_session_factory, engine
from stockwatch.db.utils import check_database_health, init_db
from stockwatch.scheduler import AvailabilityScheduler

logger = structlog.get_logger(__name__)


async def serve() -> None:
    """Start the scheduler and run until SIGINT or SIGTERM."""
    logger.info("stockwatch_starting", environment=settings.ENVIRONMENT, debug=settings.DEBUG)

    await init_db(engine)
    health = await check_database_health(async_session_factory)
    if not health["healthy"]:
        raise RuntimeError(f"Database unavailable: {health.get('error')}")

    scheduler = AvailabilityScheduler(async_session_factory)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still raises
            pass

    scheduler.start()
    try:
        await stop.wait()
    finally:
        scheduler.stop()
        await engine.dispose()
        logger.info("stockwatch_stopped")


def main() -> None:
    configure_logging()
    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
