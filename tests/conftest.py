import pytest
import uuid
from datetime import date, datetime
from typing import AsyncGenerator, List, Optional

import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from certwatch.db.models import (
    Base,
    Provider,
    CertificationType,
    Certification,
    CertificationStatus,
    ReminderRule,
    ReminderEvent,
    ReminderEventStatus,
)
from certwatch.services.notifications import EmailTransport


# Test database setup
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def test_engine():
    """Create a fresh in-memory database for each test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async_session_maker = async_sessionmaker(
        bind=test_engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


class RecordingTransport(EmailTransport):
    """Email transport that keeps every message instead of sending it."""

    def __init__(self, fail_for: Optional[set] = None, result: bool = True):
        self.sent: List[dict] = []
        self.fail_for = fail_for or set()
        self.result = result

    async def send(self, to_address: str, subject: str, body: str) -> bool:
        if to_address in self.fail_for:
            raise RuntimeError("SMTP connection refused")
        self.sent.append({"to": to_address, "subject": subject, "body": body})
        return self.result


@pytest.fixture
def recording_transport() -> RecordingTransport:
    return RecordingTransport()


# Query helpers; bulk updates bypass the identity map, so rows are always reloaded
@pytest.fixture
def fetch_events(db_session: AsyncSession):
    async def _fetch(certification_id: uuid.UUID) -> List[ReminderEvent]:
        result = await db_session.execute(
            select(ReminderEvent)
            .where(ReminderEvent.certification_id == certification_id)
            .order_by(ReminderEvent.scheduled_for.asc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    return _fetch


@pytest.fixture
def fetch_certification(db_session: AsyncSession):
    async def _fetch(certification_id: uuid.UUID) -> Certification:
        result = await db_session.execute(
            select(Certification)
            .where(Certification.id == certification_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    return _fetch


# Test data factories
@pytest_asyncio.fixture
async def sample_provider(db_session: AsyncSession) -> Provider:
    """Create a provider with a contact address."""
    provider = Provider(
        id=uuid.uuid4(),
        email="nurse.jane@example.com",
        display_name="Jane Caregiver",
        is_active=True,
    )
    db_session.add(provider)
    await db_session.commit()
    await db_session.refresh(provider)
    return provider


@pytest_asyncio.fixture
async def provider_without_email(db_session: AsyncSession) -> Provider:
    """Create a provider that has no contact address."""
    provider = Provider(
        id=uuid.uuid4(),
        email=None,
        display_name="No Contact",
        is_active=True,
    )
    db_session.add(provider)
    await db_session.commit()
    await db_session.refresh(provider)
    return provider


@pytest_asyncio.fixture
async def cpr_type(db_session: AsyncSession) -> CertificationType:
    """Create a required, common certification type."""
    cert_type = CertificationType(
        id=uuid.uuid4(),
        code="cpr",
        name="CPR",
        description="Cardiopulmonary resuscitation",
        is_common=True,
        is_required=True,
        is_active=True,
    )
    db_session.add(cert_type)
    await db_session.commit()
    await db_session.refresh(cert_type)
    return cert_type


@pytest_asyncio.fixture
async def first_aid_type(db_session: AsyncSession) -> CertificationType:
    """Create a second required certification type."""
    cert_type = CertificationType(
        id=uuid.uuid4(),
        code="first_aid",
        name="First Aid",
        is_common=True,
        is_required=True,
        is_active=True,
    )
    db_session.add(cert_type)
    await db_session.commit()
    await db_session.refresh(cert_type)
    return cert_type


@pytest_asyncio.fixture
async def food_handler_type(db_session: AsyncSession) -> CertificationType:
    """Create an optional, less common certification type."""
    cert_type = CertificationType(
        id=uuid.uuid4(),
        code="food_handler",
        name="Food Handler",
        is_common=False,
        is_required=False,
        is_active=True,
    )
    db_session.add(cert_type)
    await db_session.commit()
    await db_session.refresh(cert_type)
    return cert_type


@pytest_asyncio.fixture
async def default_rules(
    db_session: AsyncSession, sample_provider: Provider
) -> List[ReminderRule]:
    """Create the 30/7/1 rules for the sample provider."""
    rules = [
        ReminderRule(
            id=uuid.uuid4(),
            provider_id=sample_provider.id,
            days_before_expiration=days,
            enabled=True,
        )
        for days in (30, 7, 1)
    ]
    db_session.add_all(rules)
    await db_session.commit()
    return rules


@pytest_asyncio.fixture
async def cpr_certification(
    db_session: AsyncSession, sample_provider: Provider, cpr_type: CertificationType
) -> Certification:
    """CPR certification expiring on 2025-03-31."""
    certification = Certification(
        id=uuid.uuid4(),
        provider_id=sample_provider.id,
        certification_type_id=cpr_type.id,
        issued_at=date(2023, 3, 31),
        expiration_at=date(2025, 3, 31),
        status=CertificationStatus.ACTIVE,
    )
    db_session.add(certification)
    await db_session.commit()
    await db_session.refresh(certification)
    return certification


@pytest.fixture
def make_event(db_session: AsyncSession):
    """Insert a reminder event directly."""

    async def _make(
        certification_id: uuid.UUID,
        scheduled_for: datetime,
        days_before_expiration: int = 7,
        status: ReminderEventStatus = ReminderEventStatus.SCHEDULED,
        **fields,
    ) -> ReminderEvent:
        event = ReminderEvent(
            id=uuid.uuid4(),
            certification_id=certification_id,
            days_before_expiration=days_before_expiration,
            scheduled_for=scheduled_for,
            status=status,
            **fields,
        )
        db_session.add(event)
        await db_session.commit()
        return event

    return _make
