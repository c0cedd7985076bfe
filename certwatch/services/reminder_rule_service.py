from typing import List, Optional, Sequence
import uuid

from sqlalchemy import select, delete, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from certwatch.config.settings import settings
from certwatch.db.models import (
    Certification,
    CertificationType,
    Provider,
    ReminderEvent,
    ReminderEventStatus,
    ReminderRule,
)
from certwatch.schemas.reminder_schemas import (
    CreateReminderRuleRequest,
    UpdateReminderRuleRequest,
    ReminderRuleResponse,
)
from certwatch.utils.errors import (
    BusinessLogicError,
    DatabaseError,
    DuplicateReminderRuleError,
    NotFoundError,
)
from certwatch.utils.logging import get_logger

logger = get_logger()


class ReminderRuleService:
    """Per-provider reminder rules: which offsets before expiration get an email"""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    # Core CRUD Operations
    async def list_rules(self, provider_id: uuid.UUID) -> List[ReminderRuleResponse]:
        """All rules of a provider, largest offset first"""
        result = await self.db.execute(
            select(ReminderRule)
            .where(ReminderRule.provider_id == provider_id)
            .order_by(ReminderRule.days_before_expiration.desc())
        )
        return [self._create_rule_response(rule) for rule in result.scalars().all()]

    async def get_rule(
        self, provider_id: uuid.UUID, rule_id: uuid.UUID
    ) -> ReminderRuleResponse:
        rule = await self._get_rule_model(provider_id, rule_id)
        return self._create_rule_response(rule)

    async def create_rule(
        self, provider_id: uuid.UUID, rule_data: CreateReminderRuleRequest
    ) -> ReminderRuleResponse:
        """Create a rule; offsets are unique per provider"""
        await self._ensure_provider_exists(provider_id)
        if rule_data.certification_type_id is not None:
            await self._ensure_certification_type_exists(rule_data.certification_type_id)

        if await self._offset_exists(provider_id, rule_data.days_before_expiration):
            raise DuplicateReminderRuleError(
                f"Reminder rule for {rule_data.days_before_expiration} days already exists"
            )

        new_rule = ReminderRule(
            provider_id=provider_id,
            certification_type_id=rule_data.certification_type_id,
            days_before_expiration=rule_data.days_before_expiration,
            enabled=rule_data.enabled,
        )
        self.db.add(new_rule)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise DuplicateReminderRuleError(
                f"Reminder rule for {rule_data.days_before_expiration} days already exists"
            )

        logger.info(
            f"Created reminder rule {new_rule.id} ({new_rule.days_before_expiration} days) "
            f"for provider {provider_id}"
        )
        return self._create_rule_response(new_rule)

    async def update_rule(
        self,
        provider_id: uuid.UUID,
        rule_id: uuid.UUID,
        rule_data: UpdateReminderRuleRequest,
    ) -> ReminderRuleResponse:
        """
        Apply the fields the caller set.

        Disabling a rule keeps events that are already scheduled; call
        purge_scheduled_events to cancel them.
        """
        rule = await self._get_rule_model(provider_id, rule_id)
        fields = rule_data.model_fields_set

        if "days_before_expiration" in fields and rule_data.days_before_expiration is not None:
            if rule_data.days_before_expiration != rule.days_before_expiration:
                if await self._offset_exists(
                    provider_id, rule_data.days_before_expiration, exclude_id=rule_id
                ):
                    raise DuplicateReminderRuleError(
                        f"Reminder rule for {rule_data.days_before_expiration} days already exists"
                    )
                rule.days_before_expiration = rule_data.days_before_expiration

        if "certification_type_id" in fields:
            if rule_data.certification_type_id is not None:
                await self._ensure_certification_type_exists(
                    rule_data.certification_type_id
                )
            rule.certification_type_id = rule_data.certification_type_id

        if "enabled" in fields and rule_data.enabled is not None:
            rule.enabled = rule_data.enabled

        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise DuplicateReminderRuleError()

        await self.db.refresh(rule)
        logger.info(f"Updated reminder rule {rule_id} for provider {provider_id}")
        return self._create_rule_response(rule)

    async def delete_rule(self, provider_id: uuid.UUID, rule_id: uuid.UUID) -> None:
        """Delete a rule; events it already produced are left as they are"""
        rule = await self._get_rule_model(provider_id, rule_id)
        await self.db.delete(rule)
        await self.db.commit()
        logger.info(f"Deleted reminder rule {rule_id} for provider {provider_id}")

    async def ensure_default_rules(
        self, provider_id: uuid.UUID, default_days: Optional[Sequence[int]] = None
    ) -> int:
        """Give a provider without any rule the default offsets. Returns rules created."""
        if await self._has_any_rule(provider_id):
            return 0

        source = default_days if default_days is not None else settings.DEFAULT_REMINDER_DAYS
        for days in source:
            if isinstance(days, bool) or not isinstance(days, int) or days <= 0:
                raise BusinessLogicError(
                    f"Default reminder offset must be a positive number of days: {days!r}",
                    "INVALID_REMINDER_DAYS",
                )
        days_list = sorted(set(source), reverse=True)

        self.db.add_all(
            [
                ReminderRule(provider_id=provider_id, days_before_expiration=days)
                for days in days_list
            ]
        )
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            # Another caller seeded the same provider first
            if await self._has_any_rule(provider_id):
                return 0
            raise DatabaseError(
                f"Failed to create default reminder rules: {e}",
                "REMINDER_RULE_DEFAULTS_FAILED",
            )

        logger.info(
            f"Created default reminder rules {days_list} for provider {provider_id}"
        )
        return len(days_list)

    async def purge_scheduled_events(
        self, provider_id: uuid.UUID, rule_id: uuid.UUID
    ) -> int:
        """
        Cancel the not-yet-sent events a disabled rule produced.

        Deletes scheduled events with the rule's offset on the provider's
        certifications in the rule's type scope. Sent and failed events stay.

        Raises:
            NotFoundError: unknown rule
            BusinessLogicError: the rule is still enabled
        """
        rule = await self._get_rule_model(provider_id, rule_id)
        if rule.enabled:
            raise BusinessLogicError(
                "Only disabled reminder rules can have their events purged",
                error_code="REMINDER_RULE_ENABLED",
            )

        certification_ids = select(Certification.id).where(
            Certification.provider_id == provider_id
        )
        if rule.certification_type_id is not None:
            certification_ids = certification_ids.where(
                Certification.certification_type_id == rule.certification_type_id
            )

        result = await self.db.execute(
            delete(ReminderEvent)
            .where(
                and_(
                    ReminderEvent.certification_id.in_(certification_ids),
                    ReminderEvent.days_before_expiration == rule.days_before_expiration,
                    ReminderEvent.status == ReminderEventStatus.SCHEDULED,
                )
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        purged = result.rowcount or 0
        logger.info(f"Purged {purged} scheduled reminder events of rule {rule_id}")
        return purged

    # Helpers
    async def _get_rule_model(
        self, provider_id: uuid.UUID, rule_id: uuid.UUID
    ) -> ReminderRule:
        result = await self.db.execute(
            select(ReminderRule).where(
                and_(
                    ReminderRule.id == rule_id,
                    ReminderRule.provider_id == provider_id,
                )
            )
        )
        rule = result.scalar_one_or_none()
        if not rule:
            raise NotFoundError(f"Reminder rule {rule_id} not found")
        return rule

    async def _offset_exists(
        self,
        provider_id: uuid.UUID,
        days_before_expiration: int,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> bool:
        query = select(ReminderRule.id).where(
            and_(
                ReminderRule.provider_id == provider_id,
                ReminderRule.days_before_expiration == days_before_expiration,
            )
        )
        if exclude_id:
            query = query.where(ReminderRule.id != exclude_id)

        result = await self.db.execute(query)
        return result.scalar_one_or_none() is not None

    async def _has_any_rule(self, provider_id: uuid.UUID) -> bool:
        result = await self.db.execute(
            select(ReminderRule.id)
            .where(ReminderRule.provider_id == provider_id)
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

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

    def _create_rule_response(self, rule: ReminderRule) -> ReminderRuleResponse:
        return ReminderRuleResponse(
            id=rule.id,
            provider_id=rule.provider_id,
            certification_type_id=rule.certification_type_id,
            days_before_expiration=rule.days_before_expiration,
            enabled=rule.enabled,
            created_at=rule.created_at,
            updated_at=rule.updated_at,
        )


def get_reminder_rule_service(db_session: AsyncSession) -> ReminderRuleService:
    return ReminderRuleService(db_session)
