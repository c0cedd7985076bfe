import pytest
import uuid
from datetime import date, datetime
from typing import List

from sqlalchemy.ext.asyncio import AsyncSession

from certwatch.db.models import (
    Certification,
    CertificationType,
    CertificationStatus,
    Provider,
    ReminderEventStatus,
    ReminderRule,
)
from certwatch.services.reminder_scheduler import ReminderEventScheduler
from certwatch.utils.errors import MaterializationError


MARCH_1 = datetime(2025, 3, 1, 0, 0)


class TestMaterialize:
    """Test reminder event materialization."""

    @pytest.mark.asyncio
    async def test_creates_events_for_each_offset(
        self,
        db_session: AsyncSession,
        cpr_certification: Certification,
        default_rules: List[ReminderRule],
        fetch_events,
    ):
        """Expiration 2025-03-31 with 30/7/1 rules at 2025-03-01."""
        scheduler = ReminderEventScheduler(db_session)

        created = await scheduler.materialize(cpr_certification, now=MARCH_1)

        assert created == 3
        events = await fetch_events(cpr_certification.id)
        assert [e.scheduled_for for e in events] == [
            datetime(2025, 3, 1),
            datetime(2025, 3, 24),
            datetime(2025, 3, 30),
        ]
        assert [e.days_before_expiration for e in events] == [30, 7, 1]
        assert all(e.status == ReminderEventStatus.SCHEDULED for e in events)

    @pytest.mark.asyncio
    async def test_materialize_twice_creates_no_duplicates(
        self,
        db_session: AsyncSession,
        cpr_certification: Certification,
        default_rules: List[ReminderRule],
        fetch_events,
    ):
        scheduler = ReminderEventScheduler(db_session)

        assert await scheduler.materialize(cpr_certification, now=MARCH_1) == 3
        assert await scheduler.materialize(cpr_certification, now=MARCH_1) == 0

        assert len(await fetch_events(cpr_certification.id)) == 3

    @pytest.mark.asyncio
    async def test_past_candidates_are_skipped(
        self,
        db_session: AsyncSession,
        cpr_certification: Certification,
        default_rules: List[ReminderRule],
        fetch_events,
    ):
        """At 2025-03-25 only the 1-day reminder is still ahead."""
        scheduler = ReminderEventScheduler(db_session)

        created = await scheduler.materialize(
            cpr_certification, now=datetime(2025, 3, 25, 14, 0)
        )

        assert created == 1
        events = await fetch_events(cpr_certification.id)
        assert [e.scheduled_for for e in events] == [datetime(2025, 3, 30)]

    @pytest.mark.asyncio
    async def test_expired_certification_gets_no_events(
        self,
        db_session: AsyncSession,
        cpr_certification: Certification,
        default_rules: List[ReminderRule],
        fetch_events,
    ):
        scheduler = ReminderEventScheduler(db_session)

        created = await scheduler.materialize(
            cpr_certification, now=datetime(2025, 4, 2)
        )

        assert created == 0
        assert await fetch_events(cpr_certification.id) == []

    @pytest.mark.asyncio
    async def test_explicit_offsets(
        self,
        db_session: AsyncSession,
        cpr_certification: Certification,
        fetch_events,
    ):
        scheduler = ReminderEventScheduler(db_session)

        created = await scheduler.materialize(
            cpr_certification, rules=[14, 3], now=MARCH_1
        )

        assert created == 2
        events = await fetch_events(cpr_certification.id)
        assert [e.scheduled_for for e in events] == [
            datetime(2025, 3, 17),
            datetime(2025, 3, 28),
        ]

    @pytest.mark.asyncio
    async def test_missing_expiration_is_rejected(
        self,
        db_session: AsyncSession,
        sample_provider: Provider,
        fetch_events,
    ):
        certification = Certification(
            id=uuid.uuid4(),
            provider_id=sample_provider.id,
            custom_name="Dementia care",
            expiration_at=None,
        )
        db_session.add(certification)
        await db_session.commit()

        scheduler = ReminderEventScheduler(db_session)
        with pytest.raises(MaterializationError) as exc_info:
            await scheduler.materialize(certification, rules=[30], now=MARCH_1)

        assert exc_info.value.error_code == "MATERIALIZATION_ERROR"
        assert await fetch_events(certification.id) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_offset", [0, -7, "7", None])
    async def test_malformed_offset_rejects_everything(
        self,
        db_session: AsyncSession,
        cpr_certification: Certification,
        fetch_events,
        bad_offset,
    ):
        """A single malformed offset means nothing is written."""
        scheduler = ReminderEventScheduler(db_session)

        with pytest.raises(MaterializationError):
            await scheduler.materialize(
                cpr_certification, rules=[30, bad_offset, 1], now=MARCH_1
            )

        assert await fetch_events(cpr_certification.id) == []

    @pytest.mark.asyncio
    async def test_existing_sent_event_blocks_same_date(
        self,
        db_session: AsyncSession,
        cpr_certification: Certification,
        default_rules: List[ReminderRule],
        fetch_events,
        make_event,
    ):
        await make_event(
            cpr_certification.id,
            datetime(2025, 3, 24),
            status=ReminderEventStatus.SENT,
            sent_at=datetime(2025, 3, 24, 9, 0),
        )
        scheduler = ReminderEventScheduler(db_session)

        created = await scheduler.materialize(cpr_certification, now=MARCH_1)

        assert created == 2
        events = await fetch_events(cpr_certification.id)
        assert len(events) == 3
        assert events[1].status == ReminderEventStatus.SENT


class TestApplicableOffsets:
    """Test which rules apply to a certification."""

    @pytest.mark.asyncio
    async def test_provider_without_rules_uses_defaults(
        self, db_session: AsyncSession, cpr_certification: Certification
    ):
        scheduler = ReminderEventScheduler(db_session, default_days=[30, 7, 1])

        offsets = await scheduler.get_applicable_offsets(cpr_certification)

        assert sorted(offsets) == [1, 7, 30]

    @pytest.mark.asyncio
    async def test_disabled_rules_are_ignored(
        self,
        db_session: AsyncSession,
        cpr_certification: Certification,
        default_rules: List[ReminderRule],
    ):
        default_rules[0].enabled = False
        await db_session.commit()
        scheduler = ReminderEventScheduler(db_session)

        offsets = await scheduler.get_applicable_offsets(cpr_certification)

        assert sorted(offsets) == [1, 7]

    @pytest.mark.asyncio
    async def test_all_rules_disabled_means_no_reminders(
        self,
        db_session: AsyncSession,
        cpr_certification: Certification,
        default_rules: List[ReminderRule],
    ):
        for rule in default_rules:
            rule.enabled = False
        await db_session.commit()
        scheduler = ReminderEventScheduler(db_session)

        assert await scheduler.get_applicable_offsets(cpr_certification) == []
        assert await scheduler.materialize(cpr_certification, now=MARCH_1) == 0

    @pytest.mark.asyncio
    async def test_type_scoped_rule(
        self,
        db_session: AsyncSession,
        sample_provider: Provider,
        cpr_certification: Certification,
        food_handler_type: CertificationType,
    ):
        db_session.add_all(
            [
                ReminderRule(
                    provider_id=sample_provider.id, days_before_expiration=30
                ),
                ReminderRule(
                    provider_id=sample_provider.id,
                    certification_type_id=food_handler_type.id,
                    days_before_expiration=60,
                ),
            ]
        )
        await db_session.commit()
        scheduler = ReminderEventScheduler(db_session)

        assert await scheduler.get_applicable_offsets(cpr_certification) == [30]


class TestRematerialize:
    """Test regeneration after an expiration date change."""

    @pytest.mark.asyncio
    async def test_new_expiration_replaces_scheduled_events_only(
        self,
        db_session: AsyncSession,
        cpr_certification: Certification,
        default_rules: List[ReminderRule],
        fetch_events,
    ):
        """Moving 2025-03-31 to 2025-04-15 after the first reminder went out."""
        scheduler = ReminderEventScheduler(db_session)
        await scheduler.materialize(cpr_certification, now=MARCH_1)

        events = await fetch_events(cpr_certification.id)
        events[0].status = ReminderEventStatus.SENT
        events[0].sent_at = datetime(2025, 3, 1, 9, 0)
        await db_session.commit()

        cpr_certification.expiration_at = date(2025, 4, 15)
        await db_session.commit()

        counts = await scheduler.rematerialize(cpr_certification, now=MARCH_1)

        assert counts == {"invalidated": 2, "created": 3}
        events = await fetch_events(cpr_certification.id)
        assert [(e.scheduled_for, e.status) for e in events] == [
            (datetime(2025, 3, 1), ReminderEventStatus.SENT),
            (datetime(2025, 3, 16), ReminderEventStatus.SCHEDULED),
            (datetime(2025, 4, 8), ReminderEventStatus.SCHEDULED),
            (datetime(2025, 4, 14), ReminderEventStatus.SCHEDULED),
        ]

    @pytest.mark.asyncio
    async def test_failed_events_survive_regeneration(
        self,
        db_session: AsyncSession,
        cpr_certification: Certification,
        default_rules: List[ReminderRule],
        fetch_events,
        make_event,
    ):
        await make_event(
            cpr_certification.id,
            datetime(2025, 2, 20),
            days_before_expiration=30,
            status=ReminderEventStatus.FAILED,
            error_message="mailbox unavailable",
        )
        scheduler = ReminderEventScheduler(db_session)

        await scheduler.rematerialize(cpr_certification, now=MARCH_1)

        events = await fetch_events(cpr_certification.id)
        assert events[0].status == ReminderEventStatus.FAILED
        assert events[0].error_message == "mailbox unavailable"

    @pytest.mark.asyncio
    async def test_cleared_expiration_removes_scheduled_events(
        self,
        db_session: AsyncSession,
        cpr_certification: Certification,
        default_rules: List[ReminderRule],
        fetch_events,
    ):
        scheduler = ReminderEventScheduler(db_session)
        await scheduler.materialize(cpr_certification, now=MARCH_1)

        cpr_certification.expiration_at = None
        await db_session.commit()

        counts = await scheduler.rematerialize(cpr_certification, now=MARCH_1)

        assert counts == {"invalidated": 3, "created": 0}
        assert await fetch_events(cpr_certification.id) == []
