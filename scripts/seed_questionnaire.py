"""Seed the default photography questionnaire into the questionnaires table."""
import asyncio
import sys
sys.path.insert(0, ".")

from sqlalchemy import select

from app.config import get_settings
from app.database import create_engine_from_settings, create_session_factory
from app.models.questionnaire import Questionnaire
from app.services.link_service import DEFAULT_QUESTIONNAIRE, DEFAULT_QUESTIONNAIRE_SLUG
from app.services.schema_service import ensure_schema

DEFAULT_SLUG = DEFAULT_QUESTIONNAIRE_SLUG


async def seed():
    settings = get_settings()
    engine = create_engine_from_settings(settings)
    await ensure_schema(engine)
    session_factory = create_session_factory(engine)

    async with session_factory() as session:
        existing = await session.execute(
            select(Questionnaire).where(Questionnaire.slug == DEFAULT_SLUG)
        )
        if existing.scalar_one_or_none() is None:
            session.add(Questionnaire(
                slug=DEFAULT_SLUG,
                title=DEFAULT_QUESTIONNAIRE["title"],
                description=DEFAULT_QUESTIONNAIRE["description"],
                fields=[dict(f) for f in DEFAULT_QUESTIONNAIRE["fields"]],
                is_active=True,
                notify_email=settings.STUDIO_NOTIFY_EMAIL,
            ))
            print(f"  Seeded questionnaire {DEFAULT_SLUG!r}")
        else:
            print(f"  Questionnaire {DEFAULT_SLUG!r} already exists, skipping.")
        await session.commit()

    await engine.dispose()
    print("Done seeding questionnaires.")


if __name__ == "__main__":
    asyncio.run(seed())
