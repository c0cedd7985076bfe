from datetime import datetime
from typing import Optional

from sqlalchemy import update, and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from certwatch.db.models import Certification, CertificationStatus
from certwatch.services.certification_status import expiring_soon_cutoff
from certwatch.utils.datetime_utils import naive_utc_now, to_naive_utc
from certwatch.utils.errors import DatabaseError
from certwatch.utils.logging import get_logger


async def refresh_certification_statuses(
    db_session: AsyncSession,
    now: Optional[datetime] = None,
    window_days: Optional[int] = None,
    request_id: Optional[str] = None,
):
    """
    Bring every cached certification status in line with its expiration date.

    Runs three set-based updates (expired, expiring soon, active). Each one only
    matches rows whose cached status differs from the target, so running again with
    the same `now` writes nothing. MISSING placeholders are never touched.

    Args:
        db_session: Open async session; committed on success
        now: Reference time, defaults to the current UTC time
        window_days: Expiring-soon window, defaults to EXPIRING_SOON_WINDOW_DAYS
        request_id: The request ID for tracking purposes

    Raises:
        DatabaseError: the updates could not be applied; the session is rolled back
    """
    logger = get_logger().bind(request_id=request_id or "worker")

    now = to_naive_utc(now) if now else naive_utc_now()
    today = now.date()
    cutoff = expiring_soon_cutoff(now, window_days)

    untouched = [CertificationStatus.MISSING]

    try:
        expired = await db_session.execute(
            update(Certification)
            .where(
                and_(
                    Certification.expiration_at.is_not(None),
                    Certification.expiration_at < today,
                    Certification.status.not_in(
                        untouched + [CertificationStatus.EXPIRED]
                    ),
                )
            )
            .values(status=CertificationStatus.EXPIRED, updated_at=now)
            .execution_options(synchronize_session=False)
        )

        expiring_soon = await db_session.execute(
            update(Certification)
            .where(
                and_(
                    Certification.expiration_at.is_not(None),
                    Certification.expiration_at >= today,
                    Certification.expiration_at <= cutoff,
                    Certification.status.not_in(
                        untouched + [CertificationStatus.EXPIRING_SOON]
                    ),
                )
            )
            .values(status=CertificationStatus.EXPIRING_SOON, updated_at=now)
            .execution_options(synchronize_session=False)
        )

        active = await db_session.execute(
            update(Certification)
            .where(
                and_(
                    or_(
                        Certification.expiration_at.is_(None),
                        Certification.expiration_at > cutoff,
                    ),
                    Certification.status.not_in(
                        untouched + [CertificationStatus.ACTIVE]
                    ),
                )
            )
            .values(status=CertificationStatus.ACTIVE, updated_at=now)
            .execution_options(synchronize_session=False)
        )

        await db_session.commit()
    except SQLAlchemyError as e:
        await db_session.rollback()
        logger.error("Certification status refresh failed", error=str(e), exc_info=True)
        raise DatabaseError(f"Certification status refresh failed: {e}")

    counts = {
        "expired": expired.rowcount or 0,
        "expiring_soon": expiring_soon.rowcount or 0,
        "active": active.rowcount or 0,
    }
    updated = sum(counts.values())

    logger.info(
        "Certification status refresh completed",
        updated=updated,
        current_date=today.isoformat(),
        **counts,
    )

    return {
        "success": True,
        "updated": updated,
        **counts,
        "current_date": today.isoformat(),
        "request_id": request_id,
    }
