"""
QuestLink — Client identity mapping.

The CRM knows every client by two identifiers: the directory row's UUID and
an external business code.  Deployments choose which of the two is stored on
links and responses via ``QUESTIONNAIRE_CLIENT_ID_COLUMN``; when it is unset
identifiers are stored exactly as received.
"""

from __future__ import annotations

import structlog
from sqlalchemy import String, cast, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings
from app.database import session_scope
from app.models.directory import Client

logger = structlog.get_logger("questlink.identity_service")


def client_matches(identifier: str):
    """WHERE clause matching a directory row by either identifier."""
    return or_(cast(Client.id, String) == identifier, Client.client_id == identifier)


async def find_client(session: AsyncSession, identifier: str | None) -> Client | None:
    """Best-effort directory lookup; ``None`` when the client is unknown."""
    if not identifier:
        return None
    stmt = select(Client).where(client_matches(identifier)).limit(1)
    result = await session.execute(stmt)
    return result.scalars().first()


class ClientIdentityMapper:
    """Translate an incoming client reference into the stored form."""

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._column = settings.QUESTIONNAIRE_CLIENT_ID_COLUMN
        self._session_factory = session_factory

    @property
    def is_passthrough(self) -> bool:
        return not self._column

    async def map_identifier(
        self,
        raw: str | None,
        session: AsyncSession | None = None,
    ) -> str | None:
        if not raw or self.is_passthrough:
            return raw

        if session is not None:
            client = await find_client(session, raw)
        else:
            async with session_scope(self._session_factory) as own_session:
                client = await find_client(own_session, raw)

        if client is None:
            logger.debug("client_identifier_unmapped", raw=raw)
            return raw

        if self._column == "client_id" and client.client_id:
            return client.client_id
        if self._column == "id" and client.id:
            return str(client.id)
        return raw
