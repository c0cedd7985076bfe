from collections import Counter
from datetime import datetime
from typing import List, Optional
import uuid

from sqlalchemy import select, delete, and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from certwatch.db.models import (
    Certification,
    CertificationStatus,
    CertificationType,
    Provider,
    ReminderEvent,
)
from certwatch.schemas.certification_schemas import (
    CreateCertificationRequest,
    UpdateCertificationRequest,
    CertificationTypeResponse,
    CertificationResponse,
    CertificationSummary,
    CertificationListResponse,
)
from certwatch.schemas.reminder_schemas import ReminderEventResponse
from certwatch.services.certification_status import current_status, derive_status
from certwatch.services.reminder_rule_service import ReminderRuleService
from certwatch.services.reminder_scheduler import ReminderEventScheduler
from certwatch.utils.datetime_utils import naive_utc_now, to_naive_utc
from certwatch.utils.errors import CertificationValidationError, NotFoundError
from certwatch.utils.logging import get_logger

logger = get_logger()


class CertificationService:
    """Service provider for a provider's certifications and their reminder schedule"""

    def __init__(
        self,
        db_session: AsyncSession,
        scheduler: Optional[ReminderEventScheduler] = None,
        rule_service: Optional[ReminderRuleService] = None,
    ):
        self.db = db_session
        self.scheduler = scheduler or ReminderEventScheduler(db_session)
        self.rule_service = rule_service or ReminderRuleService(db_session)

    async def list_certification_types(self) -> List[CertificationTypeResponse]:
        """Active certification types, common ones first"""
        result = await self.db.execute(
            select(CertificationType)
            .where(CertificationType.is_active == True)
            .order_by(CertificationType.is_common.desc(), CertificationType.name.asc())
        )
        return [
            CertificationTypeResponse(
                id=cert_type.id,
                code=cert_type.code,
                name=cert_type.name,
                description=cert_type.description,
                is_common=cert_type.is_common,
                is_required=cert_type.is_required,
            )
            for cert_type in result.scalars().all()
        ]

    async def create_certification(
        self,
        provider_id: uuid.UUID,
        cert_data: CreateCertificationRequest,
        now: Optional[datetime] = None,
    ) -> CertificationResponse:
        """
        Record a certification and schedule its reminders.

        The status is derived at write time. When an expiration date is present the
        provider gets the default rules (if it has none yet) and the reminder events
        are materialized right away.
        """
        now = to_naive_utc(now) if now else naive_utc_now()

        await self._ensure_provider_exists(provider_id)
        self._validate_identity(cert_data.certification_type_id, cert_data.custom_name)
        if cert_data.certification_type_id is not None:
            await self._ensure_certification_type_exists(cert_data.certification_type_id)

        certification = Certification(
            provider_id=provider_id,
            certification_type_id=cert_data.certification_type_id,
            custom_name=cert_data.custom_name,
            issued_at=cert_data.issued_at,
            expiration_at=cert_data.expiration_at,
            status=derive_status(cert_data.expiration_at, now),
            notes=cert_data.notes,
        )
        self.db.add(certification)
        await self.db.commit()

        certification_id = certification.id
        logger.info(
            f"Created certification {certification_id} for provider {provider_id} "
            f"(status={certification.status.value})"
        )

        if certification.expiration_at is not None:
            await self.rule_service.ensure_default_rules(provider_id)
            await self.scheduler.materialize(certification, now=now)

        return await self.get_certification(provider_id, certification_id, now=now)

    async def get_certification(
        self,
        provider_id: uuid.UUID,
        certification_id: uuid.UUID,
        now: Optional[datetime] = None,
    ) -> CertificationResponse:
        """Certification with a freshly derived status and its reminder events"""
        now = to_naive_utc(now) if now else naive_utc_now()
        certification = await self._get_certification_model(
            provider_id, certification_id
        )
        return self._create_certification_response(certification, now)

    async def list_certifications(
        self,
        provider_id: uuid.UUID,
        status: Optional[CertificationStatus] = None,
        now: Optional[datetime] = None,
    ) -> CertificationListResponse:
        """
        All certifications of a provider with fresh statuses, soonest expiration first.

        The summary always counts every certification; the status filter only narrows
        the returned list.
        """
        now = to_naive_utc(now) if now else naive_utc_now()

        result = await self.db.execute(
            select(Certification)
            .options(
                selectinload(Certification.certification_type),
                selectinload(Certification.reminder_events),
            )
            .where(Certification.provider_id == provider_id)
            .order_by(
                Certification.expiration_at.asc().nulls_last(),
                Certification.created_at.desc(),
            )
        )
        responses = [
            self._create_certification_response(certification, now)
            for certification in result.scalars().all()
        ]

        counts = Counter(response.status for response in responses)
        summary = CertificationSummary(
            total=len(responses),
            active=counts[CertificationStatus.ACTIVE],
            expiring_soon=counts[CertificationStatus.EXPIRING_SOON],
            expired=counts[CertificationStatus.EXPIRED],
            missing=counts[CertificationStatus.MISSING],
        )

        if status is not None:
            responses = [response for response in responses if response.status == status]

        return CertificationListResponse(certifications=responses, summary=summary)

    async def update_certification(
        self,
        provider_id: uuid.UUID,
        certification_id: uuid.UUID,
        cert_data: UpdateCertificationRequest,
        now: Optional[datetime] = None,
    ) -> CertificationResponse:
        """
        Apply the fields the caller set, recompute the status and, when the
        expiration date or type changed, replace the scheduled reminder events.
        Sent and failed events are never touched.
        """
        now = to_naive_utc(now) if now else naive_utc_now()
        certification = await self._get_certification_model(
            provider_id, certification_id
        )
        fields = cert_data.model_fields_set

        previous_expiration = certification.expiration_at
        previous_type_id = certification.certification_type_id

        certification_type_id = (
            cert_data.certification_type_id
            if "certification_type_id" in fields
            else certification.certification_type_id
        )
        custom_name = (
            cert_data.custom_name if "custom_name" in fields else certification.custom_name
        )
        self._validate_identity(certification_type_id, custom_name)
        if (
            certification_type_id is not None
            and certification_type_id != previous_type_id
        ):
            await self._ensure_certification_type_exists(certification_type_id)

        certification.certification_type_id = certification_type_id
        certification.custom_name = custom_name
        if "issued_at" in fields:
            certification.issued_at = cert_data.issued_at
        if "expiration_at" in fields:
            certification.expiration_at = cert_data.expiration_at
        if "notes" in fields:
            certification.notes = cert_data.notes

        # A placeholder becomes a real record once it carries any dates
        if certification.status != CertificationStatus.MISSING or (
            certification.issued_at is not None
            or certification.expiration_at is not None
        ):
            certification.status = derive_status(certification.expiration_at, now)

        await self.db.commit()
        logger.info(f"Updated certification {certification_id} for provider {provider_id}")

        if (
            certification.expiration_at != previous_expiration
            or certification.certification_type_id != previous_type_id
        ):
            if certification.expiration_at is not None:
                await self.rule_service.ensure_default_rules(provider_id)
            counts = await self.scheduler.rematerialize(certification, now=now)
            logger.info(
                f"Rescheduled reminders for certification {certification_id}: "
                f"{counts['invalidated']} removed, {counts['created']} created"
            )

        return await self.get_certification(provider_id, certification_id, now=now)

    async def delete_certification(
        self, provider_id: uuid.UUID, certification_id: uuid.UUID
    ) -> None:
        """Delete a certification together with all of its reminder events"""
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

        await self.db.execute(
            delete(ReminderEvent)
            .where(ReminderEvent.certification_id == certification_id)
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(
            delete(Certification)
            .where(Certification.id == certification_id)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        logger.info(f"Deleted certification {certification_id} for provider {provider_id}")

    async def flag_missing_required(
        self, provider_id: uuid.UUID, now: Optional[datetime] = None
    ) -> List[CertificationResponse]:
        """Create MISSING placeholders for required types the provider has no record of"""
        now = to_naive_utc(now) if now else naive_utc_now()
        await self._ensure_provider_exists(provider_id)

        held = select(Certification.certification_type_id).where(
            and_(
                Certification.provider_id == provider_id,
                Certification.certification_type_id.is_not(None),
            )
        )
        result = await self.db.execute(
            select(CertificationType)
            .where(
                and_(
                    CertificationType.is_required == True,
                    CertificationType.is_active == True,
                    CertificationType.id.not_in(held),
                )
            )
            .order_by(CertificationType.name.asc())
        )
        missing_types = list(result.scalars().all())
        if not missing_types:
            return []

        placeholders = [
            Certification(
                provider_id=provider_id,
                certification_type_id=cert_type.id,
                status=CertificationStatus.MISSING,
            )
            for cert_type in missing_types
        ]
        self.db.add_all(placeholders)
        await self.db.commit()

        logger.info(
            f"Flagged {len(placeholders)} missing required certifications for provider {provider_id}"
        )
        return [
            await self.get_certification(provider_id, placeholder.id, now=now)
            for placeholder in placeholders
        ]

    # Helpers
    @staticmethod
    def _validate_identity(
        certification_type_id: Optional[uuid.UUID], custom_name: Optional[str]
    ) -> None:
        if (certification_type_id is None) == (custom_name is None):
            raise CertificationValidationError()

    async def _get_certification_model(
        self, provider_id: uuid.UUID, certification_id: uuid.UUID
    ) -> Certification:
        result = await self.db.execute(
            select(Certification)
            .options(
                selectinload(Certification.certification_type),
                selectinload(Certification.reminder_events),
            )
            .where(
                and_(
                    Certification.id == certification_id,
                    Certification.provider_id == provider_id,
                )
            )
            .execution_options(populate_existing=True)
        )
        certification = result.scalar_one_or_none()
        if not certification:
            raise NotFoundError(f"Certification {certification_id} not found")
        return certification

    async def _ensure_provider_exists(self, provider_id: uuid.UUID) -> None:
        result = await self.db.execute(
            select(Provider.id).where(Provider.id == provider_id)
        )
        if result.scalar_one_or_none() is None:
            raise NotFoundError(f"Provider {provider_id} not found")

    async def _ensure_certification_type_exists(
        self, certification_type_id: uuid.UUID
    ) -> None:
        result = await self.db.execute(
            select(CertificationType.id).where(
                CertificationType.id == certification_type_id
            )
        )
        if result.scalar_one_or_none() is None:
            raise NotFoundError(f"Certification type {certification_type_id} not found")

    def _create_certification_response(
        self, certification: Certification, now: datetime
    ) -> CertificationResponse:
        name = (
            certification.certification_type.name
            if certification.certification_type is not None
            else certification.custom_name
        )
        events = sorted(certification.reminder_events, key=lambda e: e.scheduled_for)
        return CertificationResponse(
            id=certification.id,
            provider_id=certification.provider_id,
            certification_type_id=certification.certification_type_id,
            custom_name=certification.custom_name,
            name=name or "",
            issued_at=certification.issued_at,
            expiration_at=certification.expiration_at,
            status=current_status(
                certification.status, certification.expiration_at, now
            ),
            notes=certification.notes,
            created_at=certification.created_at,
            updated_at=certification.updated_at,
            reminder_events=[
                ReminderEventResponse.model_validate(event) for event in events
            ],
        )


def get_certification_service(db_session: AsyncSession) -> CertificationService:
    return CertificationService(db_session)
