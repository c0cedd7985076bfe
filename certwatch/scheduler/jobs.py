from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from certwatch.config.settings import settings
from certwatch.tasks.scheduler_tick import run_scheduler_tick, wait_for_running_ticks
from certwatch.utils.logging import get_logger
from certwatch.utils.datetime_utils import utc_now

logger = get_logger()

SCHEDULER_TICK_JOB_ID = "certwatch_scheduler_tick"


def setup_scheduler(
    scheduler: AsyncIOScheduler, interval_seconds: Optional[int] = None
) -> None:
    """
    Register the periodic scheduler tick.
    Called once at worker start-up; the first tick runs immediately.

    max_instances=1 keeps ticks from overlapping; a tick that is still running when
    the next one is due makes APScheduler skip that run.
    """
    scheduler.add_job(
        run_scheduler_tick,
        trigger="interval",
        seconds=interval_seconds or settings.SCHEDULER_INTERVAL_SECONDS,
        id=SCHEDULER_TICK_JOB_ID,
        replace_existing=True,
        coalesce=True,
        max_instances=1,
        misfire_grace_time=60,
        next_run_time=utc_now(),
    )


async def shutdown_scheduler(scheduler: AsyncIOScheduler) -> None:
    """
    Stop the scheduler without cutting a tick short.

    New runs are paused first, then a tick that is still running is awaited, and only
    then is the scheduler shut down. APScheduler cancels running coroutine jobs on
    shutdown, so the order matters.
    """
    scheduler.pause()
    drained = await wait_for_running_ticks()
    if drained:
        logger.info(f"Waited for {drained} running scheduler tick(s) to finish")
    scheduler.shutdown(wait=False)
