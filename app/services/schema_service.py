"""
QuestLink — Schema compatibility layer.

Deployments of different ages store the same data under different column
names.  This module answers two questions once per process:

1. *Which columns exist?*  ``SchemaInspector.column_exists`` asks the
   database catalog through SQLAlchemy's inspector and caches every answer.
2. *How do we talk to the link table?*  ``select_link_variant`` turns the
   probe results into a single ``LinkSchemaVariant`` that owns every INSERT,
   SELECT and conditional UPDATE against ``questionnaire_links``.  Callers
   never branch on column names themselves.

Probe failures are raised as ``TransientStoreError``; guessing a column name
after a failed probe could write rows that later reads cannot find.
"""

from __future__ import annotations

import asyncio
from datetime import datetime

import structlog
from sqlalchemy import (
    ColumnElement,
    Insert,
    Select,
    Table,
    Update,
    false,
    func,
    insert,
    inspect,
    or_,
    select,
    update,
)
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncEngine

from app.database import Base
from app.errors import TransientStoreError
from app.models.link import LINK_TABLE_NAME, build_link_table
from app.models.questionnaire import Questionnaire, QuestionnaireResponse

logger = structlog.get_logger("questlink.schema_service")

CURRENT_REFERENCE_COLUMN = "questionnaire_id"
LEGACY_REFERENCE_COLUMN = "template_id"


# ──────────────────────────────────────────────────────────────────────────────
# Catalog probing
# ──────────────────────────────────────────────────────────────────────────────

def _reflect_columns(sync_conn, table: str) -> set[str] | None:
    inspector = inspect(sync_conn)
    if not inspector.has_table(table):
        return None
    return {col["name"] for col in inspector.get_columns(table)}


class SchemaInspector:
    """Cached catalog introspection for a single engine."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._columns: dict[str, set[str]] = {}
        self._lock = asyncio.Lock()
        self.probe_count = 0

    async def column_exists(self, table: str, column: str) -> bool:
        """Return whether ``table.column`` exists.

        The first call for a table reads its full column list; every later
        call for that table is answered from memory.  A missing table is
        not cached, so a table created after startup is picked up.
        """
        columns = await self._table_columns(table)
        return column in columns

    async def _table_columns(self, table: str) -> set[str]:
        cached = self._columns.get(table)
        if cached is not None:
            return cached

        async with self._lock:
            cached = self._columns.get(table)
            if cached is not None:
                return cached

            self.probe_count += 1
            try:
                async with self._engine.connect() as conn:
                    columns = await conn.run_sync(_reflect_columns, table)
            except DBAPIError as exc:
                logger.error("schema_probe_failed", table=table, error=str(exc))
                raise TransientStoreError(
                    f"Could not inspect columns of {table!r}: {exc.orig!r}"
                ) from exc

            if columns is None:
                logger.warning("schema_probe_table_missing", table=table)
                return set()

            self._columns[table] = columns
            logger.info("schema_probe_complete", table=table, columns=sorted(columns))
            return columns


# ──────────────────────────────────────────────────────────────────────────────
# Link table variants
# ──────────────────────────────────────────────────────────────────────────────

class LinkSchemaVariant:
    """Statement builder for one shape of ``questionnaire_links``.

    Every statement labels the questionnaire reference as
    ``questionnaire_id`` in its result rows, whatever the physical column is
    called.
    """

    name: str = ""
    reference_column: str = ""

    def __init__(self, table: Table) -> None:
        self.table = table

    def _reference(self) -> ColumnElement:
        return self.table.c[self.reference_column]

    def insert_link(
        self,
        *,
        token: str,
        questionnaire_id: str,
        client_id: str | None,
        expires_at: datetime | None,
        created_at: datetime,
    ) -> Insert:
        return insert(self.table).values(
            {
                "token": token,
                self.reference_column: questionnaire_id,
                "client_id": client_id,
                "expires_at": expires_at,
                "is_used": False,
                "created_at": created_at,
            }
        )

    def select_link(self, token: str) -> Select:
        c = self.table.c
        return select(
            c.token,
            self._reference().label("questionnaire_id"),
            c.client_id,
            c.expires_at,
            c.is_used,
            c.created_at,
        ).where(c.token == token)

    def consume_link(self, token: str) -> Update:
        """Compare-and-set ``is_used`` from false to true.

        Rows written before ``is_used`` had a default may hold NULL, which
        counts as unused.
        """
        c = self.table.c
        return (
            update(self.table)
            .where(c.token == token)
            .where(or_(c.is_used == false(), c.is_used.is_(None)))
            .values(is_used=True)
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} column={self.reference_column!r}>"


class CurrentLinkSchema(LinkSchemaVariant):
    """``questionnaire_id`` is the reference column.

    When the legacy ``template_id`` column is still present, rows written
    before the rename are read through ``COALESCE``.
    """

    name = "current"
    reference_column = CURRENT_REFERENCE_COLUMN

    def __init__(self, legacy_fallback: bool = False) -> None:
        columns = [CURRENT_REFERENCE_COLUMN]
        if legacy_fallback:
            columns.append(LEGACY_REFERENCE_COLUMN)
        super().__init__(build_link_table(*columns))
        self.legacy_fallback = legacy_fallback

    def _reference(self) -> ColumnElement:
        if self.legacy_fallback:
            return func.coalesce(
                self.table.c[CURRENT_REFERENCE_COLUMN],
                self.table.c[LEGACY_REFERENCE_COLUMN],
            )
        return super()._reference()


class LegacyLinkSchema(LinkSchemaVariant):
    """Older installs that only have ``template_id``."""

    name = "legacy"
    reference_column = LEGACY_REFERENCE_COLUMN

    def __init__(self) -> None:
        super().__init__(build_link_table(LEGACY_REFERENCE_COLUMN))


async def select_link_variant(inspector: SchemaInspector) -> LinkSchemaVariant:
    """Pick the link variant for this deployment.  Call once at startup."""
    has_current = await inspector.column_exists(LINK_TABLE_NAME, CURRENT_REFERENCE_COLUMN)
    has_legacy = await inspector.column_exists(LINK_TABLE_NAME, LEGACY_REFERENCE_COLUMN)

    if has_current:
        variant: LinkSchemaVariant = CurrentLinkSchema(legacy_fallback=has_legacy)
    elif has_legacy:
        variant = LegacyLinkSchema()
    else:
        raise TransientStoreError(
            f"{LINK_TABLE_NAME} has neither {CURRENT_REFERENCE_COLUMN!r} "
            f"nor {LEGACY_REFERENCE_COLUMN!r}; refusing to guess"
        )

    logger.info("link_schema_selected", variant=variant.name, legacy_fallback=has_legacy)
    return variant


# ──────────────────────────────────────────────────────────────────────────────
# Bootstrap
# ──────────────────────────────────────────────────────────────────────────────

def _create_owned_tables(sync_conn) -> None:
    Base.metadata.create_all(
        sync_conn,
        tables=[Questionnaire.__table__, QuestionnaireResponse.__table__],
        checkfirst=True,
    )
    build_link_table(CURRENT_REFERENCE_COLUMN).create(sync_conn, checkfirst=True)


async def ensure_schema(engine: AsyncEngine) -> bool:
    """Create the tables this service owns when they do not exist yet.

    Existing tables are never altered, so legacy installs keep their column
    names.  Roles without DDL rights are tolerated: the failure is logged and
    the later probe decides whether the deployment is usable.
    """
    try:
        async with engine.begin() as conn:
            await conn.run_sync(_create_owned_tables)
    except DBAPIError as exc:
        logger.warning("ensure_schema_failed", error=str(exc))
        return False
    logger.info("ensure_schema_complete")
    return True
