"""
QuestLink — LinkResolver: read-only token lookup.

Resolving a link joins its questionnaire and (best-effort) its client and
applies the expiry policy against the current time.  Nothing is written:
an expired link stays as it is in the database and is simply refused.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import session_scope
from app.errors import Expired, NotFound
from app.models.directory import Client
from app.models.questionnaire import Questionnaire
from app.models.types import utcnow
from app.services.identity_service import find_client
from app.services.link_service import parse_uuid, short_token, validate_token
from app.services.schema_service import LinkSchemaVariant

logger = structlog.get_logger("questlink.resolver_service")


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class LinkSnapshot:
    token: str
    questionnaire: Questionnaire
    client_id: str | None
    client: Client | None
    is_used: bool
    expires_at: datetime | None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and as_utc(now) > self.expires_at

    @property
    def client_name(self) -> str | None:
        return self.client.full_name if self.client else None

    @property
    def client_email(self) -> str | None:
        return self.client.email if self.client else None

    def as_dict(self) -> dict[str, Any]:
        q = self.questionnaire
        return {
            "token": self.token,
            "questionnaire": {
                "id": str(q.id),
                "title": q.title,
                "description": q.description,
                "fields": list(q.fields or []),
            },
            "client": {
                "id": self.client_id,
                "name": self.client_name,
                "email": self.client_email,
            },
            "is_used": self.is_used,
            "expires_at": self.expires_at,
        }


class LinkResolver:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        link_schema: LinkSchemaVariant,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._link_schema = link_schema
        self._clock = clock

    async def resolve_link(self, token: str) -> dict[str, Any]:
        """Return the questionnaire, client and state behind ``token``.

        Raises ``NotFound`` for an unknown token and ``Expired`` once the
        link's expiry has passed, whether or not it was used.
        """
        validate_token(token)
        async with session_scope(self._session_factory) as session:
            snapshot = await self.load(session, token)
        self.ensure_not_expired(snapshot)
        return snapshot.as_dict()

    async def load(self, session: AsyncSession, token: str) -> LinkSnapshot:
        """Load the link row plus its questionnaire and client in ``session``."""
        result = await session.execute(self._link_schema.select_link(token))
        row = result.mappings().first()
        if row is None:
            logger.info("link_not_found", token=short_token(token))
            raise NotFound("Questionnaire link not found")

        questionnaire = None
        qid = parse_uuid(row["questionnaire_id"])
        if qid is not None:
            q_result = await session.execute(
                select(Questionnaire).where(Questionnaire.id == qid)
            )
            questionnaire = q_result.scalar_one_or_none()
        if questionnaire is None:
            logger.warning(
                "link_questionnaire_missing",
                token=short_token(token),
                questionnaire_id=row["questionnaire_id"],
            )
            raise NotFound("Questionnaire not found")

        client = await find_client(session, row["client_id"])

        return LinkSnapshot(
            token=row["token"],
            questionnaire=questionnaire,
            client_id=row["client_id"],
            client=client,
            is_used=bool(row["is_used"]),
            expires_at=as_utc(row["expires_at"]),
        )

    def ensure_not_expired(self, snapshot: LinkSnapshot) -> None:
        if snapshot.is_expired(self._clock()):
            logger.info(
                "link_expired",
                token=short_token(snapshot.token),
                expires_at=snapshot.expires_at.isoformat(),
            )
            raise Expired("Questionnaire link has expired")
