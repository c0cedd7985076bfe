from datetime import datetime
from typing import Optional
from pydantic import Field
import uuid

from certwatch.db.models import ReminderEventStatus
from certwatch.schemas.camel_base_model import CamelCaseBaseModel as BaseModel


class CreateReminderRuleRequest(BaseModel):
    """Request schema for creating a reminder rule"""

    days_before_expiration: int = Field(
        ..., gt=0, le=365, description="Days before expiration to send the reminder"
    )
    certification_type_id: Optional[uuid.UUID] = Field(
        None, description="Limit the rule to one certification type"
    )
    enabled: bool = Field(True, description="Whether the rule is active")


class UpdateReminderRuleRequest(BaseModel):
    """Request schema for updating a reminder rule; unset fields are left alone"""

    days_before_expiration: Optional[int] = Field(
        None, gt=0, le=365, description="Days before expiration to send the reminder"
    )
    certification_type_id: Optional[uuid.UUID] = Field(
        None, description="Limit the rule to one certification type"
    )
    enabled: Optional[bool] = Field(None, description="Whether the rule is active")


class ReminderRuleResponse(BaseModel):
    id: uuid.UUID
    provider_id: uuid.UUID
    certification_type_id: Optional[uuid.UUID] = None
    days_before_expiration: int
    enabled: bool
    created_at: datetime
    updated_at: Optional[datetime] = None


class ReminderEventResponse(BaseModel):
    id: uuid.UUID
    certification_id: uuid.UUID
    days_before_expiration: int
    scheduled_for: datetime
    status: ReminderEventStatus
    sent_at: Optional[datetime] = None
    error_message: Optional[str] = None
