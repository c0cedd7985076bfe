from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from certwatch.db.models import CertificationType
from certwatch.utils.logging import get_logger

logger = get_logger()

# Credentials a home caregiver is commonly asked for. Required types get a
# "missing" placeholder when a provider has no record of them.
CERTIFICATION_TYPES = [
    {
        "code": "cpr",
        "name": "CPR",
        "description": "Cardiopulmonary resuscitation certification.",
        "is_common": True,
        "is_required": True,
    },
    {
        "code": "first_aid",
        "name": "First Aid",
        "description": "Basic first aid certification.",
        "is_common": True,
        "is_required": True,
    },
    {
        "code": "cna",
        "name": "Certified Nursing Assistant (CNA)",
        "description": "State nursing assistant certification.",
        "is_common": True,
        "is_required": False,
    },
    {
        "code": "hha",
        "name": "Home Health Aide (HHA)",
        "description": "Home health aide certification.",
        "is_common": True,
        "is_required": False,
    },
    {
        "code": "tb_test",
        "name": "TB Test",
        "description": "Tuberculosis screening result.",
        "is_common": True,
        "is_required": False,
    },
    {
        "code": "food_handler",
        "name": "Food Handler",
        "description": "Food handler permit.",
        "is_common": False,
        "is_required": False,
    },
    {
        "code": "dementia_care",
        "name": "Dementia Care Training",
        "description": "Dementia and Alzheimer's care training certificate.",
        "is_common": False,
        "is_required": False,
    },
]


async def seed_certification_types(db_session: AsyncSession) -> int:
    """Insert certification types that are not present yet; existing rows are kept."""
    result = await db_session.execute(select(CertificationType.code))
    existing_codes = set(result.scalars().all())

    certification_types = [
        CertificationType(is_active=True, **data)
        for data in CERTIFICATION_TYPES
        if data["code"] not in existing_codes
    ]

    db_session.add_all(certification_types)
    await db_session.commit()
    logger.info(f"Seeded {len(certification_types)} certification types")
    return len(certification_types)
