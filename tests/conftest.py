"""Shared pytest fixtures for QuestLink tests."""
import os
import uuid
from datetime import datetime, timedelta, timezone

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./questlink-test.db")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from app.config import Settings
from app.database import Base, create_session_factory
from app.models.directory import Client, Survey
from app.services.questionnaire_service import QuestionnaireService
from app.utils.mail import LogMailTransport
from app.utils.retry import RetryPolicy


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


async def _no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'questlink.db'}"


@pytest.fixture
def settings(database_url):
    return Settings(
        _env_file=None,
        DATABASE_URL=database_url,
        APP_BASE_URL="https://studio.example/",
        EMAIL_FROM="noreply@studio.example",
        STUDIO_NOTIFY_EMAIL="studio@studio.example",
        NOTIFY_BACKOFF_BASE_SECONDS=0,
    )


@pytest_asyncio.fixture
async def engine(database_url):
    engine = create_async_engine(database_url)
    yield engine
    await engine.dispose()


@pytest.fixture
def sample_client_uuid():
    return str(uuid.uuid4())


@pytest_asyncio.fixture
async def directory(engine, sample_client_uuid):
    """CRM client directory and legacy surveys, seeded with one of each."""
    async with engine.begin() as conn:
        await conn.run_sync(
            lambda sync_conn: Base.metadata.create_all(
                sync_conn, tables=[Client.__table__, Survey.__table__]
            )
        )

    session_factory = create_session_factory(engine)
    async with session_factory() as session:
        session.add(Client(
            id=sample_client_uuid,
            client_id="c1",
            first_name="Jane",
            last_name="Doe",
            email="jane@x.com",
        ))
        session.add(Survey(
            id="survey-42",
            title="Wedding Survey",
            description="Tell us about your day",
            notify_email="weddings@studio.example",
            pages=[
                {
                    "questions": [
                        {"id": "venue", "title": "Venue", "type": "text", "required": True},
                        {"text": "Guest count", "type": "number"},
                        {"id": "style", "title": "Style", "type": "radio",
                         "options": ["Classic", "Boho"]},
                        {"id": "vibe", "title": "Vibe", "type": "slider"},
                    ]
                },
                {"questions": [{"id": "ignored", "title": "Second page"}]},
            ],
        ))
        await session.commit()
    return session_factory


@pytest.fixture
def mail_transport():
    return LogMailTransport()


@pytest.fixture
def retry_policy():
    return RetryPolicy(max_retries=2, backoff_base=0.25, timeout=1.0, sleep=_no_sleep)


@pytest_asyncio.fixture
async def service(settings, engine, directory, mail_transport, retry_policy, clock):
    """Fully wired service on a fresh current-schema database."""
    svc = await QuestionnaireService.create(
        settings,
        engine,
        transport=mail_transport,
        retry_policy=retry_policy,
        clock=clock,
    )
    yield svc
    await svc.drain(timeout=5)
