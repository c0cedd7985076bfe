from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Set, Union
import uuid

from sqlalchemy import select, delete, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from certwatch.config.settings import settings
from certwatch.db.models import (
    Certification,
    ReminderEvent,
    ReminderEventStatus,
    ReminderRule,
)
from certwatch.utils.datetime_utils import naive_utc_now, to_naive_utc, start_of_day
from certwatch.utils.errors import DatabaseError, MaterializationError
from certwatch.utils.logging import get_logger

logger = get_logger()

RuleLike = Union[ReminderRule, int]


class ReminderEventScheduler:
    """
    Turns a certification's expiration date and its provider's reminder rules into
    concrete ReminderEvent rows.

    Materialization only writes rows; sending is the dispatcher's job. Every event is
    dated at UTC midnight of `expiration_at - days_before_expiration`. Dates before
    today are skipped, a date of today is created and is due immediately.
    """

    def __init__(
        self, db: AsyncSession, default_days: Optional[Sequence[int]] = None
    ):
        self.db = db
        self.default_days = list(
            default_days if default_days is not None else settings.DEFAULT_REMINDER_DAYS
        )

    async def get_applicable_offsets(self, certification: Certification) -> List[int]:
        """
        Offsets of the provider's enabled rules that apply to the certification type.
        A provider without any rule at all gets the default offsets.
        """
        result = await self.db.execute(
            select(ReminderRule).where(
                ReminderRule.provider_id == certification.provider_id
            )
        )
        rules = list(result.scalars().all())

        if not rules:
            return list(self.default_days)

        return [
            rule.days_before_expiration
            for rule in rules
            if rule.enabled
            and (
                rule.certification_type_id is None
                or rule.certification_type_id == certification.certification_type_id
            )
        ]

    async def materialize(
        self,
        certification: Certification,
        rules: Optional[Sequence[RuleLike]] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Create the missing future reminder events for a certification.

        Args:
            certification: Certification with an expiration date
            rules: Rules (or raw offsets) to apply; looked up when omitted
            now: Materialization time, defaults to the current UTC time

        Returns:
            Number of events created

        Raises:
            MaterializationError: no expiration date or a malformed rule offset;
                nothing is written in that case
        """
        if certification.expiration_at is None:
            raise MaterializationError(
                f"Certification {certification.id} has no expiration date"
            )

        # Plain values; the instance is expired if the session rolls back
        certification_id = certification.id
        expiration_at = certification.expiration_at
        current = to_naive_utc(now) if now else naive_utc_now()

        if rules is None:
            offsets = await self.get_applicable_offsets(certification)
        else:
            offsets = _offsets_from_rules(rules)
        offsets = _validate_offsets(offsets)

        today = current.date()
        existing = await self._existing_event_times(certification_id)

        events: List[ReminderEvent] = []
        for days in sorted(set(offsets), reverse=True):
            candidate = expiration_at - timedelta(days=days)
            if candidate < today:
                logger.debug(
                    f"Skipping past reminder for certification {certification_id}: "
                    f"{days} days before {expiration_at.isoformat()}"
                )
                continue

            scheduled_for = start_of_day(candidate)
            if scheduled_for in existing:
                continue

            existing.add(scheduled_for)
            events.append(
                ReminderEvent(
                    id=uuid.uuid4(),
                    certification_id=certification_id,
                    days_before_expiration=days,
                    scheduled_for=scheduled_for,
                    status=ReminderEventStatus.SCHEDULED,
                )
            )

        if not events:
            await self.db.commit()
            return 0

        self.db.add_all(events)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            # Only a concurrent materialization for the same certification gets here
            raise DatabaseError(
                f"Reminder events for certification {certification_id} changed concurrently: {e.orig}",
                error_code="REMINDER_EVENT_CONFLICT",
            )

        logger.info(
            f"Materialized {len(events)} reminder events for certification {certification_id}"
        )
        return len(events)

    async def invalidate_scheduled_events(self, certification_id: uuid.UUID) -> int:
        """Delete not-yet-sent events of a certification. Sent and failed rows stay."""
        result = await self.db.execute(
            delete(ReminderEvent)
            .where(
                and_(
                    ReminderEvent.certification_id == certification_id,
                    ReminderEvent.status == ReminderEventStatus.SCHEDULED,
                )
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def rematerialize(
        self, certification: Certification, now: Optional[datetime] = None
    ) -> Dict[str, int]:
        """Replace the scheduled events of a certification after its expiration date changed."""
        invalidated = await self.invalidate_scheduled_events(certification.id)

        if certification.expiration_at is None:
            await self.db.commit()
            logger.info(
                f"Expiration cleared for certification {certification.id}; "
                f"removed {invalidated} scheduled reminder events"
            )
            return {"invalidated": invalidated, "created": 0}

        created = await self.materialize(certification, now=now)
        return {"invalidated": invalidated, "created": created}

    async def _existing_event_times(self, certification_id: uuid.UUID) -> Set[datetime]:
        """scheduled_for values already taken for this certification, any status."""
        result = await self.db.execute(
            select(ReminderEvent.scheduled_for).where(
                ReminderEvent.certification_id == certification_id
            )
        )
        return set(result.scalars().all())


def _offsets_from_rules(rules: Sequence[RuleLike]) -> List[int]:
    offsets = []
    for rule in rules:
        if isinstance(rule, ReminderRule):
            if rule.enabled:
                offsets.append(rule.days_before_expiration)
        else:
            offsets.append(rule)
    return offsets


def _validate_offsets(offsets: Sequence[object]) -> List[int]:
    for days in offsets:
        # bool is an int subclass but never a meaningful offset
        if isinstance(days, bool) or not isinstance(days, int) or days <= 0:
            raise MaterializationError(f"Malformed reminder rule offset: {days!r}")
    return list(offsets)  # type: ignore[arg-type]


def get_reminder_event_scheduler(db_session: AsyncSession) -> ReminderEventScheduler:
    return ReminderEventScheduler(db_session)
