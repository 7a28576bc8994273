"""Unit tests for the schema compatibility layer — probing and link variants."""
import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from app.errors import TransientStoreError
from app.models.link import build_link_table
from app.services.questionnaire_service import QuestionnaireService
from app.services.schema_service import (
    CurrentLinkSchema,
    LegacyLinkSchema,
    SchemaInspector,
    ensure_schema,
    select_link_variant,
)


async def _create_link_table(engine, *reference_columns):
    table = build_link_table(*reference_columns)
    async with engine.begin() as conn:
        await conn.run_sync(table.create)


class TestSchemaInspector:
    """Tests for cached column probing."""

    @pytest.mark.asyncio
    async def test_probe_is_cached_per_table(self, engine):
        """Repeated lookups on one table hit the catalog once."""
        await _create_link_table(engine, "questionnaire_id")
        inspector = SchemaInspector(engine)

        assert await inspector.column_exists("questionnaire_links", "questionnaire_id")
        assert not await inspector.column_exists("questionnaire_links", "template_id")
        assert await inspector.column_exists("questionnaire_links", "is_used")
        assert inspector.probe_count == 1

    @pytest.mark.asyncio
    async def test_missing_table_reports_no_columns(self, engine):
        """A table that does not exist has no columns and is probed again later."""
        inspector = SchemaInspector(engine)
        assert not await inspector.column_exists("questionnaire_links", "token")

        await _create_link_table(engine, "template_id")
        assert await inspector.column_exists("questionnaire_links", "template_id")
        assert inspector.probe_count == 2

    @pytest.mark.asyncio
    async def test_probe_failure_raises_transient_error(self, tmp_path):
        """An unreachable database is never treated as a missing column."""
        broken = create_async_engine(
            f"sqlite+aiosqlite:///{tmp_path / 'missing-dir' / 'db.sqlite'}"
        )
        try:
            with pytest.raises(TransientStoreError):
                await SchemaInspector(broken).column_exists("questionnaire_links", "token")
        finally:
            await broken.dispose()


class TestVariantSelection:
    """Tests for picking the link-table statement builder."""

    @pytest.mark.asyncio
    async def test_current_column_selects_current_variant(self, engine):
        await _create_link_table(engine, "questionnaire_id")
        variant = await select_link_variant(SchemaInspector(engine))
        assert isinstance(variant, CurrentLinkSchema)
        assert variant.name == "current"
        assert variant.legacy_fallback is False

    @pytest.mark.asyncio
    async def test_legacy_column_selects_legacy_variant(self, engine):
        await _create_link_table(engine, "template_id")
        variant = await select_link_variant(SchemaInspector(engine))
        assert isinstance(variant, LegacyLinkSchema)
        assert variant.reference_column == "template_id"

    @pytest.mark.asyncio
    async def test_both_columns_read_through_coalesce(self, engine):
        await _create_link_table(engine, "questionnaire_id", "template_id")
        variant = await select_link_variant(SchemaInspector(engine))
        assert isinstance(variant, CurrentLinkSchema)
        assert variant.legacy_fallback is True
        sql = str(variant.select_link("a" * 32).compile(engine.sync_engine))
        assert "coalesce" in sql.lower()

    @pytest.mark.asyncio
    async def test_neither_column_refuses_to_guess(self, engine):
        await _create_link_table(engine, "survey_ref")
        with pytest.raises(TransientStoreError):
            await select_link_variant(SchemaInspector(engine))

    def test_consume_statement_is_conditional(self):
        """The consume UPDATE only matches rows that are still unused."""
        sql = str(CurrentLinkSchema().consume_link("a" * 32).compile())
        assert "is_used" in sql
        assert "IS NULL" in sql


class TestEnsureSchema:
    """Tests for best-effort table bootstrap."""

    @pytest.mark.asyncio
    async def test_creates_owned_tables(self, engine):
        assert await ensure_schema(engine) is True
        inspector = SchemaInspector(engine)
        assert await inspector.column_exists("questionnaires", "fields")
        assert await inspector.column_exists("questionnaire_responses", "answers")
        assert await inspector.column_exists("questionnaire_links", "questionnaire_id")

    @pytest.mark.asyncio
    async def test_existing_legacy_table_is_left_alone(self, engine):
        await _create_link_table(engine, "template_id")
        await ensure_schema(engine)
        inspector = SchemaInspector(engine)
        assert await inspector.column_exists("questionnaire_links", "template_id")
        assert not await inspector.column_exists("questionnaire_links", "questionnaire_id")


class TestLegacyDeployment:
    """End-to-end flow on an install whose link table still uses template_id."""

    @pytest.mark.asyncio
    async def test_create_resolve_and_submit(
        self, settings, engine, directory, mail_transport, retry_policy, clock
    ):
        await _create_link_table(engine, "template_id")
        service = await QuestionnaireService.create(
            settings, engine, transport=mail_transport, retry_policy=retry_policy, clock=clock
        )
        assert service.link_schema.name == "legacy"

        created = await service.create_link(client_id="c1")
        resolved = await service.resolve_link(created["token"])
        assert resolved["questionnaire"]["id"] == created["questionnaire_id"]
        assert resolved["client"]["name"] == "Jane Doe"

        result = await service.submit_response(created["token"], {"notes": "hi"})
        assert result["response_id"]
        assert (await service.resolve_link(created["token"]))["is_used"] is True
        await service.drain(timeout=5)
