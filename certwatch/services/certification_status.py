from datetime import date, datetime, timedelta
from typing import Optional

from certwatch.config.settings import settings
from certwatch.db.models import CertificationStatus
from certwatch.utils.datetime_utils import to_naive_utc


def expiring_soon_cutoff(now: datetime, window_days: Optional[int] = None) -> date:
    """Last expiration date that still counts as expiring soon."""
    if window_days is None:
        window_days = settings.EXPIRING_SOON_WINDOW_DAYS
    return to_naive_utc(now).date() + timedelta(days=window_days)


def derive_status(
    expiration_at: Optional[date],
    now: datetime,
    window_days: Optional[int] = None,
) -> CertificationStatus:
    """
    Lifecycle status of a certification from its expiration date.

    Dates are compared at day granularity in UTC: a certification that expires
    today is still valid for the rest of the day.

    - no expiration date -> ACTIVE
    - expired before today -> EXPIRED
    - expires between today and today + window (inclusive) -> EXPIRING_SOON
    - otherwise -> ACTIVE

    MISSING is never produced here.
    """
    if expiration_at is None:
        return CertificationStatus.ACTIVE

    today = to_naive_utc(now).date()
    if expiration_at < today:
        return CertificationStatus.EXPIRED
    if expiration_at <= expiring_soon_cutoff(now, window_days):
        return CertificationStatus.EXPIRING_SOON
    return CertificationStatus.ACTIVE


def current_status(
    cached_status: Optional[CertificationStatus],
    expiration_at: Optional[date],
    now: datetime,
    window_days: Optional[int] = None,
) -> CertificationStatus:
    """Fresh status for a read path; MISSING placeholders keep their status."""
    if cached_status == CertificationStatus.MISSING:
        return CertificationStatus.MISSING
    return derive_status(expiration_at, now, window_days)
