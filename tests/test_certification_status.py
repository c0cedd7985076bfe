from datetime import date, datetime, timezone, timedelta

from certwatch.db.models import CertificationStatus
from certwatch.services.certification_status import (
    current_status,
    derive_status,
    expiring_soon_cutoff,
)


NOW = datetime(2025, 3, 1, 10, 30)


class TestDeriveStatus:
    """Test the expiration date to status rule."""

    def test_no_expiration_date_is_active(self):
        assert derive_status(None, NOW) == CertificationStatus.ACTIVE

    def test_past_expiration_is_expired(self):
        assert derive_status(date(2025, 2, 28), NOW) == CertificationStatus.EXPIRED
        assert derive_status(date(2020, 1, 1), NOW) == CertificationStatus.EXPIRED

    def test_expiring_today_is_expiring_soon(self):
        """A certification is valid through its expiration day."""
        assert derive_status(date(2025, 3, 1), NOW) == CertificationStatus.EXPIRING_SOON

    def test_window_boundary_is_inclusive(self):
        """Day 30 is inside the window, day 31 is not."""
        assert derive_status(date(2025, 3, 31), NOW) == CertificationStatus.EXPIRING_SOON
        assert derive_status(date(2025, 4, 1), NOW) == CertificationStatus.ACTIVE

    def test_far_future_is_active(self):
        assert derive_status(date(2026, 3, 1), NOW) == CertificationStatus.ACTIVE

    def test_custom_window(self):
        assert (
            derive_status(date(2025, 3, 10), NOW, window_days=7)
            == CertificationStatus.ACTIVE
        )
        assert (
            derive_status(date(2025, 3, 8), NOW, window_days=7)
            == CertificationStatus.EXPIRING_SOON
        )

    def test_aware_now_is_converted_to_utc(self):
        """23:30 on March 1st in UTC-5 is already March 2nd in UTC."""
        tz = timezone(timedelta(hours=-5))
        aware_now = datetime(2025, 3, 1, 23, 30, tzinfo=tz)
        assert derive_status(date(2025, 3, 1), aware_now) == CertificationStatus.EXPIRED

    def test_never_returns_missing(self):
        for offset in range(-40, 40):
            assert derive_status(
                NOW.date() + timedelta(days=offset), NOW
            ) != CertificationStatus.MISSING


class TestCurrentStatus:
    """Test the status shown on read paths."""

    def test_missing_is_kept(self):
        assert (
            current_status(CertificationStatus.MISSING, None, NOW)
            == CertificationStatus.MISSING
        )

    def test_stale_cached_status_is_recomputed(self):
        assert (
            current_status(CertificationStatus.ACTIVE, date(2025, 2, 1), NOW)
            == CertificationStatus.EXPIRED
        )

    def test_cutoff(self):
        assert expiring_soon_cutoff(NOW, 30) == date(2025, 3, 31)
