from datetime import datetime, date
from typing import List, Optional
from pydantic import Field, model_validator
import uuid

from certwatch.db.models import CertificationStatus
from certwatch.schemas.camel_base_model import CamelCaseBaseModel as BaseModel
from certwatch.schemas.reminder_schemas import ReminderEventResponse


class CreateCertificationRequest(BaseModel):
    """Request schema for adding a certification"""

    certification_type_id: Optional[uuid.UUID] = Field(
        None, description="Known certification type"
    )
    custom_name: Optional[str] = Field(
        None, min_length=1, max_length=200, description="Name of an unlisted certification"
    )
    issued_at: Optional[date] = Field(None, description="Issue date")
    expiration_at: Optional[date] = Field(None, description="Expiration date")
    notes: Optional[str] = Field(None, max_length=2000, description="Free-text notes")

    @model_validator(mode="after")
    def check_type_or_custom_name(self):
        if (self.certification_type_id is None) == (self.custom_name is None):
            raise ValueError(
                "Exactly one of certificationTypeId or customName is required"
            )
        return self


class UpdateCertificationRequest(BaseModel):
    """Request schema for editing a certification; only fields that are set are applied"""

    certification_type_id: Optional[uuid.UUID] = None
    custom_name: Optional[str] = Field(None, min_length=1, max_length=200)
    issued_at: Optional[date] = None
    expiration_at: Optional[date] = None
    notes: Optional[str] = Field(None, max_length=2000)


class CertificationTypeResponse(BaseModel):
    id: uuid.UUID
    code: str
    name: str
    description: Optional[str] = None
    is_common: bool
    is_required: bool


class CertificationResponse(BaseModel):
    id: uuid.UUID
    provider_id: uuid.UUID
    certification_type_id: Optional[uuid.UUID] = None
    custom_name: Optional[str] = None
    name: str = Field(..., description="Type name or custom name")
    issued_at: Optional[date] = None
    expiration_at: Optional[date] = None
    status: CertificationStatus
    notes: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    reminder_events: List[ReminderEventResponse] = Field(default_factory=list)


class CertificationSummary(BaseModel):
    total: int = 0
    active: int = 0
    expiring_soon: int = 0
    expired: int = 0
    missing: int = 0


class CertificationListResponse(BaseModel):
    certifications: List[CertificationResponse]
    summary: CertificationSummary
