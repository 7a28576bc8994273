"""Unit tests for ClientIdentityMapper — stored client identifier form."""
import pytest

from app.config import Settings
from app.database import create_session_factory
from app.services.identity_service import ClientIdentityMapper, find_client


def _mapper(settings: Settings, engine, column: str) -> ClientIdentityMapper:
    configured = settings.model_copy(update={"QUESTIONNAIRE_CLIENT_ID_COLUMN": column})
    return ClientIdentityMapper(configured, create_session_factory(engine))


class TestClientIdentityMapper:
    """Tests for the three identifier modes."""

    @pytest.mark.asyncio
    async def test_passthrough_keeps_raw_value(self, settings, engine, directory):
        mapper = _mapper(settings, engine, "")
        assert mapper.is_passthrough
        assert await mapper.map_identifier("c1") == "c1"
        assert await mapper.map_identifier(None) is None

    @pytest.mark.asyncio
    async def test_client_id_mode_maps_uuid_to_code(
        self, settings, engine, directory, sample_client_uuid
    ):
        mapper = _mapper(settings, engine, "client_id")
        assert await mapper.map_identifier(sample_client_uuid) == "c1"
        assert await mapper.map_identifier("c1") == "c1"

    @pytest.mark.asyncio
    async def test_id_mode_maps_code_to_uuid(
        self, settings, engine, directory, sample_client_uuid
    ):
        mapper = _mapper(settings, engine, "id")
        assert await mapper.map_identifier("c1") == sample_client_uuid

    @pytest.mark.asyncio
    async def test_unknown_client_is_stored_as_given(self, settings, engine, directory):
        mapper = _mapper(settings, engine, "id")
        assert await mapper.map_identifier("walk-in-7") == "walk-in-7"


class TestFindClient:
    """Tests for directory lookups by either identifier."""

    @pytest.mark.asyncio
    async def test_matches_either_identifier(self, engine, directory, sample_client_uuid):
        async with directory() as session:
            by_code = await find_client(session, "c1")
            by_uuid = await find_client(session, sample_client_uuid)
            missing = await find_client(session, "nobody")

        assert by_code is not None and by_code.email == "jane@x.com"
        assert by_uuid is not None and by_uuid.full_name == "Jane Doe"
        assert missing is None
