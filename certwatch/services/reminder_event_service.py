from typing import List, Optional
import uuid

from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from certwatch.db.models import Certification, ReminderEvent, ReminderEventStatus
from certwatch.schemas.reminder_schemas import ReminderEventResponse
from certwatch.utils.errors import BusinessLogicError, NotFoundError
from certwatch.utils.logging import get_logger

logger = get_logger()


class ReminderEventService:
    """Read access to reminder events and the operator actions on failed ones"""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def list_events(
        self, provider_id: uuid.UUID, certification_id: uuid.UUID
    ) -> List[ReminderEventResponse]:
        """Events of one of the provider's certifications, in schedule order"""
        owner = await self.db.execute(
            select(Certification.id).where(
                and_(
                    Certification.id == certification_id,
                    Certification.provider_id == provider_id,
                )
            )
        )
        if owner.scalar_one_or_none() is None:
            raise NotFoundError(f"Certification {certification_id} not found")

        result = await self.db.execute(
            select(ReminderEvent)
            .where(ReminderEvent.certification_id == certification_id)
            .order_by(ReminderEvent.scheduled_for.asc())
        )
        return [
            ReminderEventResponse.model_validate(event)
            for event in result.scalars().all()
        ]

    async def list_failed_events(
        self, provider_id: Optional[uuid.UUID] = None, limit: int = 100
    ) -> List[ReminderEventResponse]:
        """Failed deliveries, most recent first; optionally limited to one provider"""
        query = select(ReminderEvent).where(
            ReminderEvent.status == ReminderEventStatus.FAILED
        )
        if provider_id is not None:
            query = query.join(
                Certification, Certification.id == ReminderEvent.certification_id
            ).where(Certification.provider_id == provider_id)

        result = await self.db.execute(
            query.order_by(ReminderEvent.scheduled_for.desc()).limit(limit)
        )
        return [
            ReminderEventResponse.model_validate(event)
            for event in result.scalars().all()
        ]

    async def rearm_failed_event(self, event_id: uuid.UUID) -> ReminderEventResponse:
        """
        Put a failed event back in the dispatch queue.

        The transition is guarded on status so an event that is not failed (or was
        re-armed concurrently) is left alone.

        Raises:
            NotFoundError: unknown event
            BusinessLogicError: the event is not failed
        """
        result = await self.db.execute(
            update(ReminderEvent)
            .where(
                and_(
                    ReminderEvent.id == event_id,
                    ReminderEvent.status == ReminderEventStatus.FAILED,
                )
            )
            .values(
                status=ReminderEventStatus.SCHEDULED,
                error_message=None,
                claimed_by=None,
                claimed_at=None,
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            exists = await self.db.execute(
                select(ReminderEvent.id).where(ReminderEvent.id == event_id)
            )
            if exists.scalar_one_or_none() is None:
                raise NotFoundError(f"Reminder event {event_id} not found")
            raise BusinessLogicError(
                f"Reminder event {event_id} is not failed",
                error_code="REMINDER_EVENT_NOT_FAILED",
            )

        await self.db.commit()
        logger.info(f"Re-armed failed reminder event {event_id}")

        event = await self.db.execute(
            select(ReminderEvent)
            .where(ReminderEvent.id == event_id)
            .execution_options(populate_existing=True)
        )
        return ReminderEventResponse.model_validate(event.scalar_one())


def get_reminder_event_service(db_session: AsyncSession) -> ReminderEventService:
    return ReminderEventService(db_session)
