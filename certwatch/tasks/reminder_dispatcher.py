from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
import uuid

from sqlalchemy import select, update, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from certwatch.config.settings import settings
from certwatch.db.models import (
    Certification,
    CertificationType,
    Provider,
    ReminderEvent,
    ReminderEventStatus,
)
from certwatch.services.notifications import EmailTransport, render_reminder_notification
from certwatch.utils.datetime_utils import days_until, naive_utc_now, to_naive_utc
from certwatch.utils.errors import EmailTransportError
from certwatch.utils.logging import get_logger


async def dispatch_due_reminders(
    db_session: AsyncSession,
    transport: EmailTransport,
    now: Optional[datetime] = None,
    batch_size: Optional[int] = None,
    worker_id: Optional[str] = None,
    lease_seconds: Optional[int] = None,
    request_id: Optional[str] = None,
):
    """
    Send the reminder emails that are due.

    Selects up to `batch_size` scheduled events whose time has come, oldest first.
    Each event is claimed with a conditional update before sending, so two workers
    never send the same reminder, then moved to exactly one terminal status: SENT
    or FAILED with an error message. A failing event never stops the batch.
Events of deactivated providers are held back until the provider is active again.

    Args:
        db_session: Open async session
        transport: Email transport used for delivery
        now: Dispatch time, defaults to the current UTC time
        batch_size: Maximum events handled, defaults to DISPATCH_BATCH_SIZE
        worker_id: Lease owner, defaults to WORKER_ID
        lease_seconds: Age after which a claim is abandoned, defaults to DISPATCH_LEASE_SECONDS
        request_id: The request ID for tracking purposes
    """
    logger = get_logger().bind(request_id=request_id or "worker")

    now = to_naive_utc(now) if now else naive_utc_now()
    batch_size = batch_size if batch_size is not None else settings.DISPATCH_BATCH_SIZE
    worker_id = worker_id or settings.WORKER_ID
    lease_seconds = lease_seconds if lease_seconds is not None else settings.DISPATCH_LEASE_SECONDS
    stale_before = now - timedelta(seconds=lease_seconds)

    due_events = await _select_due_events(db_session, now, stale_before, batch_size)

    if not due_events:
        return {
            "success": True,
            "selected": 0,
            "sent": 0,
            "failed": 0,
            "skipped": 0,
            "results": [],
            "request_id": request_id,
        }

    results: List[Dict[str, Any]] = []
    for row in due_events:
        event_id = row.event_id

        if not await _claim_event(db_session, event_id, worker_id, now, stale_before):
            logger.info("Reminder event claimed by another worker", event_id=str(event_id))
            results.append(_result(event_id, "skipped"))
            continue

        days_remaining = None
        error = None
        try:
            if row.expiration_at is None:
                raise EmailTransportError(
                    "Certification has no expiration date", error_code="NO_EXPIRATION_DATE"
                )
            if not row.email:
                raise EmailTransportError(
                    "Provider has no email address", error_code="NO_CONTACT_ADDRESS"
                )

            days_remaining = days_until(row.expiration_at, now)
            message = render_reminder_notification(
                certification_name=row.type_name or row.custom_name or "Certification",
                expiration_date=row.expiration_at,
                days_remaining=days_remaining,
            )
            delivered = await transport.send(row.email, message["subject"], message["body"])
            if not delivered:
                error = "Email transport reported failure"
        except EmailTransportError as e:
            error = e.message
        except Exception as e:
            error = f"{e.__class__.__name__}: {e}"

        if error is None:
            finalized = await _finalize_event(
                db_session,
                event_id,
                worker_id,
                status=ReminderEventStatus.SENT,
                sent_at=now,
                error_message=None,
            )
            status = "sent"
        else:
            logger.warning(
                "Reminder delivery failed", event_id=str(event_id), error=error
            )
            finalized = await _finalize_event(
                db_session,
                event_id,
                worker_id,
                status=ReminderEventStatus.FAILED,
                sent_at=None,
                error_message=error,
            )
            status = "failed"

        if not finalized:
            # Lease expired and another worker took the event over
            logger.warning("Reminder event lease lost", event_id=str(event_id))
            status = "skipped"

        results.append(_result(event_id, status, days_remaining, error))

    sent = sum(1 for r in results if r["status"] == "sent")
    failed = sum(1 for r in results if r["status"] == "failed")
    skipped = sum(1 for r in results if r["status"] == "skipped")

    logger.info(
        "Reminder dispatch completed",
        selected=len(due_events),
        sent=sent,
        failed=failed,
        skipped=skipped,
    )

    return {
        "success": True,
        "selected": len(due_events),
        "sent": sent,
        "failed": failed,
        "skipped": skipped,
        "results": results,
        "request_id": request_id,
    }


async def _select_due_events(
    db_session: AsyncSession, now: datetime, stale_before: datetime, batch_size: int
):
    stmt = (
        select(
            ReminderEvent.id.label("event_id"),
            ReminderEvent.scheduled_for,
            Certification.id.label("certification_id"),
            Certification.expiration_at,
            Certification.custom_name,
            CertificationType.name.label("type_name"),
            Provider.email,
        )
        .join(Certification, Certification.id == ReminderEvent.certification_id)
        .join(Provider, Provider.id == Certification.provider_id)
        .outerjoin(
            CertificationType,
            CertificationType.id == Certification.certification_type_id,
        )
        .where(
            and_(
                ReminderEvent.status == ReminderEventStatus.SCHEDULED,
                ReminderEvent.scheduled_for <= now,
                Provider.is_active == True,
                _lease_free(stale_before),
            )
        )
        .order_by(ReminderEvent.scheduled_for.asc(), ReminderEvent.id.asc())
        .limit(batch_size)
    )
    result = await db_session.execute(stmt)
    return result.all()


def _lease_free(stale_before: datetime):
    return or_(
        ReminderEvent.claimed_at.is_(None),
        ReminderEvent.claimed_at < stale_before,
    )


async def _claim_event(
    db_session: AsyncSession,
    event_id: uuid.UUID,
    worker_id: str,
    now: datetime,
    stale_before: datetime,
) -> bool:
    result = await db_session.execute(
        update(ReminderEvent)
        .where(
            and_(
                ReminderEvent.id == event_id,
                ReminderEvent.status == ReminderEventStatus.SCHEDULED,
                _lease_free(stale_before),
            )
        )
        .values(claimed_by=worker_id, claimed_at=now)
        .execution_options(synchronize_session=False)
    )
    await db_session.commit()
    return result.rowcount == 1


async def _finalize_event(
    db_session: AsyncSession,
    event_id: uuid.UUID,
    worker_id: str,
    status: ReminderEventStatus,
    sent_at: Optional[datetime],
    error_message: Optional[str],
) -> bool:
    result = await db_session.execute(
        update(ReminderEvent)
        .where(
            and_(
                ReminderEvent.id == event_id,
                ReminderEvent.status == ReminderEventStatus.SCHEDULED,
                ReminderEvent.claimed_by == worker_id,
            )
        )
        .values(
            status=status,
            sent_at=sent_at,
            error_message=error_message,
            updated_at=naive_utc_now(),
        )
        .execution_options(synchronize_session=False)
    )
    await db_session.commit()
    return result.rowcount == 1


def _result(
    event_id: uuid.UUID,
    status: str,
    days_remaining: Optional[int] = None,
    error: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "event_id": str(event_id),
        "status": status,
        "days_remaining": days_remaining,
        "error": error,
    }
