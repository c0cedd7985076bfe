from typing import List, Optional
from datetime import datetime, date
import uuid
from sqlalchemy import (
    String,
    Boolean,
    Integer,
    Text,
    ForeignKey,
    Enum,
    Index,
    UniqueConstraint,
    CheckConstraint,
    DateTime,
    Date,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
import enum

from certwatch.utils.datetime_utils import naive_utc_now


class Base(DeclarativeBase):
    pass


# Enums
class CertificationStatus(enum.Enum):
    ACTIVE = "active"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"
    MISSING = "missing"


class ReminderEventStatus(enum.Enum):
    SCHEDULED = "scheduled"
    SENT = "sent"
    FAILED = "failed"


# Base model with common audit fields
class AuditMixin:
    """Mixin for common audit fields"""

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=naive_utc_now, onupdate=naive_utc_now
    )


# Models
class Provider(Base, AuditMixin):
    """Caregiver account. Owned by the identity system; the engine only reads it."""

    __tablename__ = "providers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[Optional[str]] = mapped_column(String(320))  # RFC 5321 max length
    display_name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Relationships
    certifications: Mapped[List["Certification"]] = relationship(
        back_populates="provider", cascade="all, delete-orphan", passive_deletes=True
    )
    reminder_rules: Mapped[List["ReminderRule"]] = relationship(
        back_populates="provider", cascade="all, delete-orphan", passive_deletes=True
    )

    # Constraints
    __table_args__ = (Index("idx_providers_email", "email"),)


class CertificationType(Base, AuditMixin):
    __tablename__ = "certification_types"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    is_common: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Relationships
    certifications: Mapped[List["Certification"]] = relationship(
        back_populates="certification_type"
    )

    # Constraints
    __table_args__ = (
        Index("idx_certification_types_code", "code"),
        Index("idx_certification_types_is_active", "is_active"),
    )


class Certification(Base, AuditMixin):
    __tablename__ = "certifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    provider_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("providers.id", ondelete="CASCADE"),
        nullable=False,
    )
    certification_type_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("certification_types.id", ondelete="NO ACTION"),
    )
    custom_name: Mapped[Optional[str]] = mapped_column(String(200))
    issued_at: Mapped[Optional[date]] = mapped_column(Date)
    expiration_at: Mapped[Optional[date]] = mapped_column(Date)
    # Cached value of derive_status(expiration_at, now); refreshed every tick
    status: Mapped[CertificationStatus] = mapped_column(
        Enum(CertificationStatus), default=CertificationStatus.ACTIVE, nullable=False
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)

    # Relationships
    provider: Mapped["Provider"] = relationship(back_populates="certifications")
    certification_type: Mapped[Optional["CertificationType"]] = relationship(
        back_populates="certifications"
    )
    reminder_events: Mapped[List["ReminderEvent"]] = relationship(
        back_populates="certification",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    # Constraints
    __table_args__ = (
        CheckConstraint(
            "(certification_type_id IS NULL) <> (custom_name IS NULL)",
            name="ck_certifications_type_xor_custom_name",
        ),
        Index("idx_certifications_provider_id", "provider_id"),
        Index("idx_certifications_cert_type_id", "certification_type_id"),
        Index("idx_certifications_status_expiration", "status", "expiration_at"),
        Index("idx_certifications_expiration_at", "expiration_at"),
    )


class ReminderRule(Base, AuditMixin):
    __tablename__ = "reminder_rules"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    provider_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("providers.id", ondelete="CASCADE"),
        nullable=False,
    )
    # NULL means the rule applies to every certification type
    certification_type_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("certification_types.id", ondelete="CASCADE"),
    )
    days_before_expiration: Mapped[int] = mapped_column(Integer, nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Relationships
    provider: Mapped["Provider"] = relationship(back_populates="reminder_rules")

    # Constraints
    __table_args__ = (
        UniqueConstraint(
            "provider_id",
            "days_before_expiration",
            name="uq_reminder_rules_provider_days",
        ),
        CheckConstraint(
            "days_before_expiration > 0", name="ck_reminder_rules_days_positive"
        ),
        Index("idx_reminder_rules_provider_enabled", "provider_id", "enabled"),
    )


class ReminderEvent(Base, AuditMixin):
    __tablename__ = "reminder_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    certification_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("certifications.id", ondelete="CASCADE"),
        nullable=False,
    )
    days_before_expiration: Mapped[int] = mapped_column(Integer, nullable=False)
    scheduled_for: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[ReminderEventStatus] = mapped_column(
        Enum(ReminderEventStatus),
        default=ReminderEventStatus.SCHEDULED,
        nullable=False,
    )
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    # Dispatch lease; a claim older than DISPATCH_LEASE_SECONDS is considered abandoned
    claimed_by: Mapped[Optional[str]] = mapped_column(String(200))
    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Relationships
    certification: Mapped["Certification"] = relationship(
        back_populates="reminder_events"
    )

    # Constraints
    __table_args__ = (
        UniqueConstraint(
            "certification_id",
            "scheduled_for",
            name="uq_reminder_events_cert_scheduled_for",
        ),
        CheckConstraint(
            "days_before_expiration > 0", name="ck_reminder_events_days_positive"
        ),
        Index("idx_reminder_events_status_scheduled", "status", "scheduled_for"),
        Index("idx_reminder_events_certification_id", "certification_id"),
        Index("idx_reminder_events_claimed_at", "claimed_at"),
    )
