"""Unit tests for TokenIssuer — link minting and questionnaire resolution."""
import uuid
from datetime import timedelta
from unittest.mock import patch

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from app.database import Base
from app.errors import ValidationError
from app.models.directory import Client
from app.models.questionnaire import Questionnaire
from app.services.link_service import (
    DEFAULT_QUESTIONNAIRE,
    DEFAULT_QUESTIONNAIRE_SLUG,
    fields_from_survey,
    generate_token,
    validate_token,
)
from app.services.questionnaire_service import QuestionnaireService


async def _add_questionnaire(
    service, clock, title, *, is_active=True, offset_minutes=0, slug=None
):
    questionnaire = Questionnaire(
        id=uuid.uuid4(),
        slug=slug or uuid.uuid4().hex[:10],
        title=title,
        fields=[{"key": "q1", "label": "Question", "type": "text", "required": False}],
        is_active=is_active,
        created_at=clock() + timedelta(minutes=offset_minutes),
    )
    async with service.session_factory() as session:
        session.add(questionnaire)
        await session.commit()
    return str(questionnaire.id)


class TestTokens:
    """Tests for token generation and format checks."""

    def test_default_token_is_256_bits_of_hex(self):
        token = generate_token()
        assert len(token) == 64
        int(token, 16)

    def test_tokens_are_unique(self):
        assert len({generate_token() for _ in range(500)}) == 500

    @pytest.mark.parametrize("bad", ["", "short", "a" * 129, "has space in it!!", None])
    def test_malformed_tokens_rejected(self, bad):
        with pytest.raises(ValidationError):
            validate_token(bad)


class TestCreateLink:
    """Tests for create_link."""

    @pytest.mark.asyncio
    async def test_bootstraps_default_questionnaire(self, service, clock):
        """With no questionnaires at all, a default one is created."""
        created = await service.create_link(client_id="c1")

        assert created["link"] == f"https://studio.example/q/{created['token']}"
        assert created["expires_at"] == clock() + timedelta(days=30)

        questionnaires = await service.list_questionnaires()
        assert len(questionnaires) == 1
        assert questionnaires[0]["id"] == created["questionnaire_id"]
        assert questionnaires[0]["title"] == DEFAULT_QUESTIONNAIRE["title"]

    @pytest.mark.asyncio
    async def test_default_reused_for_later_links(self, service):
        first = await service.create_link()
        second = await service.create_link()
        assert first["questionnaire_id"] == second["questionnaire_id"]
        assert first["token"] != second["token"]

    @pytest.mark.asyncio
    async def test_requested_questionnaire_is_used(self, service, clock):
        await _add_questionnaire(service, clock, "Older", offset_minutes=-10)
        target = await _add_questionnaire(service, clock, "Target")
        created = await service.create_link(questionnaire_id=target)
        assert created["questionnaire_id"] == target

    @pytest.mark.asyncio
    async def test_unknown_questionnaire_falls_back_to_oldest_active(self, service, clock):
        oldest = await _add_questionnaire(service, clock, "Oldest", offset_minutes=-60)
        await _add_questionnaire(service, clock, "Newer")
        await _add_questionnaire(service, clock, "Retired", is_active=False, offset_minutes=-120)

        created = await service.create_link(questionnaire_id=str(uuid.uuid4()))
        assert created["questionnaire_id"] == oldest

    @pytest.mark.asyncio
    async def test_inactive_questionnaire_is_not_linked(self, service, clock):
        active = await _add_questionnaire(service, clock, "Active")
        retired = await _add_questionnaire(
            service, clock, "Retired", is_active=False, offset_minutes=-30
        )
        created = await service.create_link(questionnaire_id=retired)
        assert created["questionnaire_id"] == active

    @pytest.mark.asyncio
    async def test_zero_expiry_never_expires(self, service, clock):
        created = await service.create_link(expiry_days=0)
        assert created["expires_at"] is None

        clock.advance(days=3650)
        resolved = await service.resolve_link(created["token"])
        assert resolved["expires_at"] is None

    @pytest.mark.asyncio
    async def test_negative_expiry_rejected(self, service):
        with pytest.raises(ValidationError):
            await service.create_link(expiry_days=-1)

    @pytest.mark.asyncio
    async def test_token_length_follows_settings(self, service):
        created = await service.create_link()
        assert len(created["token"]) == service.settings.TOKEN_BYTES * 2


class TestSurveyConversion:
    """Tests for linking to a legacy survey id."""

    @pytest.mark.asyncio
    async def test_survey_becomes_questionnaire(self, service):
        created = await service.create_link(questionnaire_id="survey-42")
        resolved = await service.resolve_link(created["token"])

        questionnaire = resolved["questionnaire"]
        assert questionnaire["title"] == "Wedding Survey"
        assert [f["key"] for f in questionnaire["fields"]] == ["venue", "q2", "style", "vibe"]

    @pytest.mark.asyncio
    async def test_conversion_is_idempotent(self, service):
        first = await service.create_link(questionnaire_id="survey-42")
        second = await service.create_link(questionnaire_id="survey-42")
        assert first["questionnaire_id"] == second["questionnaire_id"]
        assert len(await service.list_questionnaires()) == 1

    def test_field_mapping(self):
        fields = fields_from_survey([
            {"questions": [
                {"id": "a", "title": "A", "type": "radio",
                 "options": [{"value": "x"}, {"label": "y"}, "z"]},
                {"text": "B", "type": "matrix", "required": True},
            ]},
        ])
        assert fields[0] == {
            "key": "a", "label": "A", "type": "radio", "required": False,
            "options": ["x", "y", "z"],
        }
        assert fields[1]["key"] == "q2"
        assert fields[1]["label"] == "B"
        assert fields[1]["type"] == "text"
        assert fields[1]["required"] is True

    @pytest.mark.parametrize("pages", [None, [], "not-a-list", [{"questions": "nope"}]])
    def test_malformed_pages_yield_no_fields(self, pages):
        assert fields_from_survey(pages) == []


async def _questionnaire_count(service):
    async with service.session_factory() as session:
        return await session.scalar(select(func.count()).select_from(Questionnaire))


@pytest_asyncio.fixture
async def service_without_surveys(settings, engine, mail_transport, retry_policy, clock):
    """Service on a database whose CRM has no legacy ``surveys`` table."""
    async with engine.begin() as conn:
        await conn.run_sync(
            lambda sync_conn: Base.metadata.create_all(sync_conn, tables=[Client.__table__])
        )
    svc = await QuestionnaireService.create(
        settings, engine, transport=mail_transport, retry_policy=retry_policy, clock=clock
    )
    yield svc
    await svc.drain(timeout=5)


class TestDeploymentWithoutSurveys:
    """Link creation on installs that never had the survey builder."""

    @pytest.mark.asyncio
    async def test_unknown_id_falls_back_to_default(self, service_without_surveys):
        service = service_without_surveys
        assert service.issuer._surveys_available is False

        created = await service.create_link(questionnaire_id="does-not-exist")
        resolved = await service.resolve_link(created["token"])

        assert resolved["questionnaire"]["title"] == DEFAULT_QUESTIONNAIRE["title"]

    @pytest.mark.asyncio
    async def test_surveys_table_detected_when_present(self, service):
        assert service.issuer._surveys_available is True


class TestTokenBounds:

    def test_largest_configurable_token_is_accepted(self):
        assert validate_token(generate_token(64))

    def test_smallest_configurable_token_is_accepted(self):
        assert validate_token(generate_token(16))


class TestSlugCollisions:
    """Questionnaires created on demand reuse an existing row with the same slug."""

    @pytest.mark.asyncio
    async def test_default_questionnaire_has_fixed_slug(self, service):
        await service.create_link()
        [questionnaire] = await service.list_questionnaires()
        assert questionnaire["slug"] == DEFAULT_QUESTIONNAIRE_SLUG

    @pytest.mark.asyncio
    async def test_existing_default_row_is_reused(self, service, clock):
        """A default row that is no longer active is reused, never duplicated."""
        existing = await _add_questionnaire(
            service, clock, "Photography Preferences",
            is_active=False, slug=DEFAULT_QUESTIONNAIRE_SLUG,
        )

        first = await service.create_link()
        second = await service.create_link()

        assert first["questionnaire_id"] == existing
        assert second["questionnaire_id"] == existing
        assert await _questionnaire_count(service) == 1

    @pytest.mark.asyncio
    async def test_concurrent_survey_conversion_reuses_winner(self, service):
        """A conversion that loses the slug race returns the row that won."""
        winner = await service.create_link(questionnaire_id="survey-42")
        real_by_slug = service.issuer._by_slug
        calls = []

        async def stale_then_real(session, slug):
            calls.append(slug)
            if len(calls) == 1:
                return None
            return await real_by_slug(session, slug)

        with patch.object(service.issuer, "_by_slug", side_effect=stale_then_real):
            loser = await service.create_link(questionnaire_id="survey-42")

        assert len(calls) == 2
        assert loser["questionnaire_id"] == winner["questionnaire_id"]
        assert await _questionnaire_count(service) == 1
