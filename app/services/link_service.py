"""
QuestLink — TokenIssuer: minting single-use questionnaire links.

A link is an opaque random token that grants one submission of one
questionnaire.  Minting never fails for lack of configuration; the target
questionnaire is resolved in this order:

  1. the requested questionnaire, if it exists and is active;
  2. a questionnaire converted from the legacy survey with that id, when
     the deployment has a ``surveys`` table;
  3. the oldest active questionnaire;
  4. the default questionnaire (fixed slug), created on first use.

The link row is written through the deployment's ``LinkSchemaVariant`` so the
same code works on installs that still call the reference ``template_id``.
"""

from __future__ import annotations

import re
import secrets
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable

import structlog
from sqlalchemy import String, cast, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings
from app.database import session_scope
from app.errors import ValidationError
from app.models.directory import Survey
from app.models.questionnaire import Questionnaire
from app.models.types import utcnow
from app.schemas.questionnaire import FIELD_TYPES
from app.services.identity_service import ClientIdentityMapper
from app.services.schema_service import LinkSchemaVariant

logger = structlog.get_logger("questlink.link_service")

# ── Constants ────────────────────────────────────────────────────────────────

DEFAULT_QUESTIONNAIRE: dict[str, Any] = {
    "title": "Photography Preferences",
    "description": "Help us prepare for your perfect photoshoot",
    "fields": [
        {
            "key": "sessionType",
            "label": "Type of photoshoot",
            "type": "select",
            "required": False,
            "options": ["Family", "Maternity", "Newborn", "Business"],
        },
        {
            "key": "preferredDate",
            "label": "Preferred date",
            "type": "text",
            "required": False,
            "options": [],
        },
        {
            "key": "notes",
            "label": "Anything we should know?",
            "type": "textarea",
            "required": False,
            "options": [],
        },
    ],
}

DEFAULT_QUESTIONNAIRE_SLUG = "photography-preferences"

SURVEY_SLUG_PREFIX = "survey-"

_TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_-]{16,128}$")


# ── Token helpers ────────────────────────────────────────────────────────────

def generate_token(nbytes: int = 32) -> str:
    """Hex token from the OS CSPRNG; 32 bytes gives 256 bits."""
    return secrets.token_hex(nbytes)


def validate_token(token: Any) -> str:
    if not isinstance(token, str) or not _TOKEN_PATTERN.match(token):
        raise ValidationError("Malformed questionnaire token", {"token": "invalid format"})
    return token


def short_token(token: str) -> str:
    return f"{token[:8]}…"


def parse_uuid(value: Any) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        return None


# ── Legacy survey conversion ─────────────────────────────────────────────────

def fields_from_survey(pages: Any) -> list[dict[str, Any]]:
    """Map the first survey page's questions to field specs.

    Unknown question types become ``text``; malformed pages yield no fields.
    """
    if not isinstance(pages, list) or not pages or not isinstance(pages[0], dict):
        return []
    questions = pages[0].get("questions") or []
    if not isinstance(questions, list):
        return []

    fields: list[dict[str, Any]] = []
    for idx, q in enumerate(questions, start=1):
        if not isinstance(q, dict):
            continue
        q_type = q.get("type")
        options = q.get("options") or q.get("choices") or []
        fields.append({
            "key": str(q.get("id") or f"q{idx}"),
            "label": str(q.get("title") or q.get("text") or f"Question {idx}"),
            "type": q_type if q_type in FIELD_TYPES else "text",
            "required": bool(q.get("required")),
            "options": [
                str(o.get("value", o.get("label", ""))) if isinstance(o, dict) else str(o)
                for o in options
            ] if isinstance(options, list) else [],
        })
    return fields


def questionnaire_payload(questionnaire: Questionnaire) -> dict[str, Any]:
    return {
        "id": str(questionnaire.id),
        "slug": questionnaire.slug,
        "title": questionnaire.title,
        "description": questionnaire.description,
        "fields": list(questionnaire.fields or []),
        "notify_email": questionnaire.notify_email,
        "created_at": questionnaire.created_at,
    }


class TokenIssuer:
    """Mints links and resolves which questionnaire they point at."""

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        link_schema: LinkSchemaVariant,
        identity_mapper: ClientIdentityMapper,
        clock: Callable[[], datetime] = utcnow,
        surveys_available: bool = True,
    ) -> None:
        self._settings = settings
        self._surveys_available = surveys_available
        self._session_factory = session_factory
        self._link_schema = link_schema
        self._identity = identity_mapper
        self._clock = clock

    # ══════════════════════════════════════════════════════════════════════
    # create_link
    # ══════════════════════════════════════════════════════════════════════

    async def create_link(
        self,
        client_id: str | None = None,
        questionnaire_id: str | None = None,
        expiry_days: int | None = 30,
    ) -> dict[str, Any]:
        """Mint a link and persist it.

        Parameters
        ----------
        client_id:
            Known client the link is for, or ``None`` for an anonymous link.
            Stored in the deployment's canonical identifier form.
        questionnaire_id:
            Requested questionnaire (or legacy survey) id.
        expiry_days:
            Days until the link expires; ``None`` or ``0`` never expires.

        Returns
        -------
        dict
            ``token``, ``link``, ``questionnaire_id`` and ``expires_at``.
        """
        if expiry_days is not None and expiry_days < 0:
            raise ValidationError(
                "expiry_days must be >= 0", {"expiry_days": "negative"}
            )

        log = logger.bind(client_id=client_id, requested_questionnaire=questionnaire_id)
        log.info("create_link_start")

        token = generate_token(self._settings.TOKEN_BYTES)
        now = self._clock()
        expires_at = now + timedelta(days=expiry_days) if expiry_days else None

        async with session_scope(self._session_factory) as session:
            questionnaire = await self._resolve_questionnaire(session, questionnaire_id)
            stored_client_id = await self._identity.map_identifier(client_id, session=session)

            await session.execute(
                self._link_schema.insert_link(
                    token=token,
                    questionnaire_id=str(questionnaire.id),
                    client_id=stored_client_id,
                    expires_at=expires_at,
                    created_at=now,
                )
            )

        link = f"{self._settings.link_base_url}/q/{token}"
        log.info(
            "link_created",
            token=short_token(token),
            questionnaire_id=str(questionnaire.id),
            stored_client_id=stored_client_id,
            expires_at=expires_at.isoformat() if expires_at else None,
        )

        return {
            "token": token,
            "link": link,
            "questionnaire_id": str(questionnaire.id),
            "expires_at": expires_at,
        }

    # ══════════════════════════════════════════════════════════════════════
    # Questionnaire resolution
    # ══════════════════════════════════════════════════════════════════════

    async def _resolve_questionnaire(
        self,
        session: AsyncSession,
        questionnaire_id: str | None,
    ) -> Questionnaire:
        if questionnaire_id:
            questionnaire = await self._get_active(session, questionnaire_id)
            if questionnaire is not None:
                return questionnaire

            if self._surveys_available:
                questionnaire = await self.ensure_questionnaire_from_survey(
                    session, questionnaire_id
                )
                if questionnaire is not None:
                    return questionnaire

            logger.warning("questionnaire_not_found_using_default", requested=questionnaire_id)

        questionnaire = await self._oldest_active(session)
        if questionnaire is not None:
            return questionnaire

        return await self._create_default(session)

    async def _get_active(self, session: AsyncSession, questionnaire_id: str) -> Questionnaire | None:
        qid = parse_uuid(questionnaire_id)
        if qid is None:
            return None
        stmt = select(Questionnaire).where(
            Questionnaire.id == qid,
            Questionnaire.is_active.is_(True),
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def _oldest_active(self, session: AsyncSession) -> Questionnaire | None:
        stmt = (
            select(Questionnaire)
            .where(Questionnaire.is_active.is_(True))
            .order_by(Questionnaire.created_at.asc())
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalars().first()

    async def _by_slug(self, session: AsyncSession, slug: str) -> Questionnaire | None:
        result = await session.execute(select(Questionnaire).where(Questionnaire.slug == slug))
        return result.scalar_one_or_none()

    async def _insert_or_reuse(
        self,
        session: AsyncSession,
        questionnaire: Questionnaire,
    ) -> tuple[Questionnaire, bool]:
        """Insert ``questionnaire`` unless a row with its slug already exists.

        The insert runs in a savepoint; losing a race on the unique slug rolls
        back only the savepoint and returns the row that won.  The flag is
        ``True`` when this call created the row.
        """
        try:
            async with session.begin_nested():
                session.add(questionnaire)
                await session.flush()
        except IntegrityError:
            existing = await self._by_slug(session, questionnaire.slug)
            if existing is None:
                raise
            logger.info("questionnaire_slug_taken", slug=questionnaire.slug)
            return existing, False
        return questionnaire, True

    async def _create_default(self, session: AsyncSession) -> Questionnaire:
        questionnaire, created = await self._insert_or_reuse(
            session,
            Questionnaire(
                id=uuid.uuid4(),
                slug=DEFAULT_QUESTIONNAIRE_SLUG,
                title=DEFAULT_QUESTIONNAIRE["title"],
                description=DEFAULT_QUESTIONNAIRE["description"],
                fields=[dict(f) for f in DEFAULT_QUESTIONNAIRE["fields"]],
                is_active=True,
                created_at=self._clock(),
            ),
        )
        if created:
            logger.info("default_questionnaire_created", questionnaire_id=str(questionnaire.id))
        elif not questionnaire.is_active:
            logger.warning(
                "default_questionnaire_inactive_reused", questionnaire_id=str(questionnaire.id)
            )
        return questionnaire

    async def ensure_questionnaire_from_survey(
        self,
        session: AsyncSession,
        survey_id: str,
    ) -> Questionnaire | None:
        """Return the questionnaire derived from legacy survey ``survey_id``,
        converting it on first use.

        The derived questionnaire's slug records its source survey, so
        repeated link creation for the same survey reuses one questionnaire.
        """
        slug = f"{SURVEY_SLUG_PREFIX}{survey_id}"
        questionnaire = await self._by_slug(session, slug)
        if questionnaire is not None:
            return questionnaire if questionnaire.is_active else None

        survey_result = await session.execute(
            select(Survey).where(cast(Survey.id, String) == str(survey_id))
        )
        survey = survey_result.scalar_one_or_none()
        if survey is None:
            return None

        questionnaire, created = await self._insert_or_reuse(
            session,
            Questionnaire(
                id=uuid.uuid4(),
                slug=slug,
                title=survey.title or "Survey",
                description=survey.description,
                fields=fields_from_survey(survey.pages),
                is_active=True,
                notify_email=survey.notify_email,
                created_at=self._clock(),
            ),
        )
        if not created:
            return questionnaire if questionnaire.is_active else None
        logger.info(
            "questionnaire_converted_from_survey",
            survey_id=survey_id,
            questionnaire_id=str(questionnaire.id),
            field_count=len(questionnaire.fields),
        )
        return questionnaire

    # ══════════════════════════════════════════════════════════════════════
    # list_questionnaires
    # ══════════════════════════════════════════════════════════════════════

    async def list_questionnaires(self) -> list[dict[str, Any]]:
        """Active questionnaires, oldest first (the default pick comes first)."""
        async with session_scope(self._session_factory) as session:
            stmt = (
                select(Questionnaire)
                .where(Questionnaire.is_active.is_(True))
                .order_by(Questionnaire.created_at.asc())
            )
            result = await session.execute(stmt)
            return [questionnaire_payload(q) for q in result.scalars().all()]
