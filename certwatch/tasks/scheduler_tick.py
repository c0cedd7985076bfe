import asyncio
from datetime import datetime
from typing import Optional, Set
import uuid

from certwatch.db.session import session_scope
from certwatch.services.notifications import EmailTransport, get_email_transport
from certwatch.tasks.reminder_dispatcher import dispatch_due_reminders
from certwatch.tasks.status_refresher import refresh_certification_statuses
from certwatch.utils.context import reset_request_id, set_request_id
from certwatch.utils.datetime_utils import naive_utc_now, to_naive_utc
from certwatch.utils.logging import get_logger

# Ticks that have started and not finished yet
_running_ticks: Set[asyncio.Task] = set()


async def run_scheduler_tick(
    request_id: Optional[str] = None,
    now: Optional[datetime] = None,
    transport: Optional[EmailTransport] = None,
):
    """
    One pass of the background scheduler: refresh certification statuses, then
    dispatch the reminders that are due.

    Both steps see the same `now`. Any exception aborts only this tick; it is logged
    and reported in the result, and the next tick starts from the database again.

    The pass runs in its own task and is shielded from cancellation of the caller,
    so a scheduler shutdown never stops a reminder between sending and recording it.
    Use `wait_for_running_ticks` to let it finish.

    Args:
        request_id: The request ID for tracking purposes (generated when omitted)
        now: Tick time, defaults to the current UTC time
        transport: Email transport, defaults to the one selected by EMAIL_TRANSPORT
    """
    task = asyncio.ensure_future(_run_tick(request_id, now, transport))
    _running_ticks.add(task)
    task.add_done_callback(_running_ticks.discard)
    return await asyncio.shield(task)


async def wait_for_running_ticks() -> int:
    """Wait until every started tick has completed. Returns how many were awaited."""
    pending = list(_running_ticks)
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
    return len(pending)


async def _run_tick(
    request_id: Optional[str],
    now: Optional[datetime],
    transport: Optional[EmailTransport],
):
    request_id = request_id or f"tick-{uuid.uuid4().hex[:12]}"
    token = set_request_id(request_id)
    logger = get_logger().bind(request_id=request_id)

    now = to_naive_utc(now) if now else naive_utc_now()

    try:
        transport = transport or get_email_transport()

        async with session_scope() as db_session:
            refresh_result = await refresh_certification_statuses(
                db_session, now=now, request_id=request_id
            )
            dispatch_result = await dispatch_due_reminders(
                db_session, transport, now=now, request_id=request_id
            )

        logger.info(
            "Scheduler tick completed",
            statuses_updated=refresh_result["updated"],
            reminders_sent=dispatch_result["sent"],
            reminders_failed=dispatch_result["failed"],
        )

        return {
            "success": True,
            "now": now.isoformat(),
            "refresh": refresh_result,
            "dispatch": dispatch_result,
            "request_id": request_id,
        }

    except Exception as e:
        logger.exception("Scheduler tick exception", error=str(e))
        return {
            "success": False,
            "error": str(e),
            "now": now.isoformat(),
            "request_id": request_id,
        }

    finally:
        reset_request_id(token)
