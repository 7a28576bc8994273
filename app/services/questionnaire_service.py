"""
QuestLink — QuestionnaireService: component wiring.

Builds every component once, against one ``Settings`` object, one engine and
the link-schema variant selected for this deployment, and exposes the public
operations under a single object that the API layer holds on
``app.state``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Mapping

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from app.config import Settings
from app.database import create_session_factory
from app.models.directory import Survey
from app.models.types import utcnow
from app.services.identity_service import ClientIdentityMapper
from app.services.link_service import TokenIssuer
from app.services.notification_service import NotificationDispatcher
from app.services.resolver_service import LinkResolver
from app.services.response_service import ResponseLedger, ResponseRecorder
from app.services.schema_service import (
    LinkSchemaVariant,
    SchemaInspector,
    ensure_schema,
    select_link_variant,
)
from app.utils.mail import MailTransport, build_mail_transport
from app.utils.retry import RetryPolicy

logger = structlog.get_logger("questlink.questionnaire_service")


class QuestionnaireService:
    def __init__(
        self,
        settings: Settings,
        engine: AsyncEngine,
        link_schema: LinkSchemaVariant,
        transport: MailTransport | None = None,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
        surveys_available: bool = True,
    ) -> None:
        self.settings = settings
        self.engine = engine
        self.link_schema = link_schema
        self.session_factory = create_session_factory(engine)

        self.identity = ClientIdentityMapper(settings, self.session_factory)
        self.issuer = TokenIssuer(
            settings,
            self.session_factory,
            link_schema,
            self.identity,
            clock=clock,
            surveys_available=surveys_available,
        )
        self.resolver = LinkResolver(self.session_factory, link_schema, clock=clock)
        self.dispatcher = NotificationDispatcher(
            settings,
            transport or build_mail_transport(settings),
            retry_policy=retry_policy,
            clock=clock,
        )
        self.recorder = ResponseRecorder(
            self.session_factory,
            link_schema,
            self.resolver,
            self.identity,
            self.dispatcher,
            clock=clock,
        )
        self.ledger = ResponseLedger(self.session_factory, self.identity)

    @classmethod
    async def create(
        cls,
        settings: Settings,
        engine: AsyncEngine,
        bootstrap_schema: bool = True,
        **kwargs: Any,
    ) -> "QuestionnaireService":
        """Bootstrap the schema, select the link variant, check for the legacy
        ``surveys`` table, and wire components.
        """
        if bootstrap_schema:
            await ensure_schema(engine)
        inspector = SchemaInspector(engine)
        link_schema = await select_link_variant(inspector)
        surveys_available = await inspector.column_exists(Survey.__tablename__, "id")
        logger.info(
            "questionnaire_service_ready",
            link_schema=link_schema.name,
            surveys_available=surveys_available,
        )
        kwargs.setdefault("surveys_available", surveys_available)
        return cls(settings, engine, link_schema, **kwargs)

    # ── Public operations ────────────────────────────────────────────────────

    async def create_link(
        self,
        client_id: str | None = None,
        questionnaire_id: str | None = None,
        expiry_days: int | None = 30,
    ) -> dict[str, Any]:
        return await self.issuer.create_link(client_id, questionnaire_id, expiry_days)

    async def resolve_link(self, token: str) -> dict[str, Any]:
        return await self.resolver.resolve_link(token)

    async def submit_response(
        self,
        token: str,
        answers: Mapping[str, Any],
        contact: Mapping[str, Any] | None = None,
    ) -> dict[str, str]:
        return await self.recorder.submit_response(token, answers, contact)

    async def list_responses(
        self,
        questionnaire_id: str | None = None,
        client_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> dict[str, Any]:
        return await self.ledger.list_responses(questionnaire_id, client_id, limit, offset)

    async def attach_response_to_client(self, response_id: str, client_id: str) -> dict[str, Any]:
        return await self.ledger.attach_response_to_client(response_id, client_id)

    async def list_questionnaires(self) -> list[dict[str, Any]]:
        return await self.issuer.list_questionnaires()

    async def drain(self, timeout: float | None = None) -> None:
        await self.dispatcher.drain(timeout=timeout)
