import asyncio
import signal

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from certwatch.config.settings import settings
from certwatch.db.db import create_tables, seed_db
from certwatch.db.session import engine
from certwatch.scheduler.jobs import setup_scheduler, shutdown_scheduler
from certwatch.utils.logging import get_logger

logger = get_logger()


async def main() -> None:
    logger.info(
        f"Starting {settings.NAME} {settings.VERSION} worker {settings.WORKER_ID} "
        f"({settings.ENVIRONMENT}), tick every {settings.SCHEDULER_INTERVAL_SECONDS}s"
    )

    if settings.INIT_DB_ON_START:
        await create_tables()
        await seed_db()

    scheduler = AsyncIOScheduler(timezone="UTC")
    setup_scheduler(scheduler, settings.SCHEDULER_INTERVAL_SECONDS)
    scheduler.start()

    stop_evt = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _stop(*_: object) -> None:
        stop_evt.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, _stop)
        except NotImplementedError:
            # Windows event loops have no signal handlers
            pass

    await stop_evt.wait()

    logger.info("Shutting down worker")
    try:
        await shutdown_scheduler(scheduler)
    except Exception:
        logger.exception("Scheduler shutdown failed")

    await engine.dispose()
    logger.info("Worker stopped")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
