"""
QuestLink — ResponseRecorder & ResponseLedger.

``ResponseRecorder.submit_response`` turns a link into exactly one stored
answer set.  Inside a single transaction it:

  1. loads the link and applies the same NotFound / Expired policy as
     ``LinkResolver``;
  2. validates the answers against the questionnaire's field specs, so a bad
     payload never burns the token;
  3. flips ``is_used`` with a conditional UPDATE (``... AND is_used = false``)
     and refuses with ``AlreadyConsumed`` when no row changed;
  4. inserts the response row.

Only after the commit are notifications handed to the
``NotificationDispatcher``.  Two racing submissions for one token therefore
produce one response and one ``AlreadyConsumed``; the database arbitrates,
never a read-then-write in Python.

``ResponseLedger`` covers the admin side: paging through responses and
attaching a response to a client after the fact.
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime
from typing import Any, Callable, Mapping

import structlog
from sqlalchemy import String, cast, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import session_scope
from app.errors import AlreadyConsumed, NotFound, ValidationError
from app.models.directory import Client
from app.models.questionnaire import Questionnaire, QuestionnaireResponse
from app.models.types import utcnow
from app.services.identity_service import ClientIdentityMapper
from app.services.link_service import parse_uuid, short_token, validate_token
from app.services.notification_service import NotificationDispatcher
from app.services.resolver_service import LinkResolver
from app.services.schema_service import LinkSchemaVariant

logger = structlog.get_logger("questlink.response_service")

# ── Constants ────────────────────────────────────────────────────────────────

ANONYMOUS_NAME = "Anonymous"

MAX_PAGE_SIZE = 200

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def validate_answers(fields: list[dict[str, Any]], answers: Any) -> None:
    """Check ``answers`` against the questionnaire's field specs.

    Unknown keys are allowed (the answer map is opaque); declared fields are
    checked for presence, option membership and basic type shape.
    """
    if not isinstance(answers, Mapping):
        raise ValidationError("answers must be an object", {"answers": "not a mapping"})

    errors: dict[str, str] = {}
    for key in answers:
        if not isinstance(key, str) or not key:
            errors[str(key)] = "answer keys must be non-empty strings"

    for field in fields or []:
        if not isinstance(field, dict) or not field.get("key"):
            continue
        key = field["key"]
        value = answers.get(key)

        if _is_blank(value):
            if field.get("required"):
                errors[key] = "required"
            continue

        f_type = field.get("type", "text")
        options = [str(o) for o in field.get("options") or []]

        if f_type in ("select", "radio") and options:
            chosen = value if isinstance(value, list) else [value]
            if any(str(v) not in options for v in chosen):
                errors[key] = f"must be one of: {', '.join(options)}"
        elif f_type == "number":
            try:
                float(value)
            except (TypeError, ValueError):
                errors[key] = "must be a number"
        elif f_type == "email":
            if not isinstance(value, str) or not _EMAIL_PATTERN.match(value.strip()):
                errors[key] = "must be an email address"

    if errors:
        raise ValidationError("Submitted answers are invalid", errors)


def response_payload(
    response: QuestionnaireResponse,
    questionnaire_title: str | None = None,
    client: Client | None = None,
) -> dict[str, Any]:
    return {
        "id": str(response.id),
        "questionnaire_id": response.questionnaire_id,
        "questionnaire_title": questionnaire_title,
        "client_id": response.client_id,
        "token": response.token,
        "answers": response.answers,
        "client_name": response.client_name,
        "client_email": response.client_email,
        "submitted_at": response.submitted_at,
        "client": (
            {"id": str(client.id), "name": client.full_name, "email": client.email}
            if client is not None
            else None
        ),
    }


class ResponseRecorder:
    """Consumes a link once and stores its answers."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        link_schema: LinkSchemaVariant,
        resolver: LinkResolver,
        identity_mapper: ClientIdentityMapper,
        dispatcher: NotificationDispatcher,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._link_schema = link_schema
        self._resolver = resolver
        self._identity = identity_mapper
        self._dispatcher = dispatcher
        self._clock = clock

    async def submit_response(
        self,
        token: str,
        answers: Mapping[str, Any],
        contact: Mapping[str, Any] | None = None,
    ) -> dict[str, str]:
        """Consume ``token`` and persist ``answers``.

        Raises
        ------
        ValidationError
            Malformed token or answers that fail the field specs.
        NotFound
            Unknown token.
        Expired
            The link's expiry has passed.
        AlreadyConsumed
            The link was used before, including by a concurrent call that won
            the conditional update.
        """
        validate_token(token)
        if not isinstance(answers, Mapping):
            raise ValidationError("answers must be an object", {"answers": "not a mapping"})
        contact = contact or {}

        log = logger.bind(token=short_token(token))
        log.info("submit_response_start", answer_count=len(answers))

        async with session_scope(self._session_factory) as session:
            snapshot = await self._resolver.load(session, token)
            self._resolver.ensure_not_expired(snapshot)
            if snapshot.is_used:
                log.info("submit_response_already_used")
                raise AlreadyConsumed("Questionnaire link has already been used")

            questionnaire = snapshot.questionnaire
            validate_answers(questionnaire.fields, answers)

            client_name = (
                contact.get("name")
                or answers.get("clientName")
                or snapshot.client_name
                or ANONYMOUS_NAME
            )
            client_email = (
                contact.get("email")
                or answers.get("clientEmail")
                or snapshot.client_email
                or None
            )
            client_id = await self._identity.map_identifier(snapshot.client_id, session=session)

            consumed = await session.execute(self._link_schema.consume_link(token))
            if consumed.rowcount != 1:
                log.info("submit_response_lost_race")
                raise AlreadyConsumed("Questionnaire link has already been used")

            response = QuestionnaireResponse(
                id=uuid.uuid4(),
                questionnaire_id=str(questionnaire.id),
                client_id=client_id,
                token=token,
                answers=dict(answers),
                client_name=str(client_name),
                client_email=str(client_email) if client_email else None,
                submitted_at=self._clock(),
            )
            session.add(response)
            await session.flush()

            notification_questionnaire = {
                "id": str(questionnaire.id),
                "title": questionnaire.title,
                "fields": list(questionnaire.fields or []),
                "notify_email": questionnaire.notify_email,
            }

        log.info(
            "response_submitted",
            response_id=str(response.id),
            questionnaire_id=str(questionnaire.id),
            client_id=client_id,
        )

        self._dispatcher.schedule(
            notification_questionnaire,
            dict(answers),
            response.client_name,
            response.client_email,
        )

        return {"response_id": str(response.id)}


class ResponseLedger:
    """Admin read/attach operations over stored responses."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        identity_mapper: ClientIdentityMapper,
    ) -> None:
        self._session_factory = session_factory
        self._identity = identity_mapper

    async def list_responses(
        self,
        questionnaire_id: str | None = None,
        client_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> dict[str, Any]:
        """Newest-first page of responses with questionnaire title and
        directory client attached.  ``total`` counts every matching row.
        """
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(
                f"limit must be between 1 and {MAX_PAGE_SIZE}", {"limit": str(limit)}
            )
        if offset < 0:
            raise ValidationError("offset must be >= 0", {"offset": str(offset)})

        async with session_scope(self._session_factory) as session:
            conditions = []
            if questionnaire_id:
                conditions.append(QuestionnaireResponse.questionnaire_id == str(questionnaire_id))
            if client_id:
                mapped = await self._identity.map_identifier(client_id, session=session)
                conditions.append(
                    QuestionnaireResponse.client_id.in_(list({client_id, mapped}))
                )

            total = await session.scalar(
                select(func.count()).select_from(QuestionnaireResponse).where(*conditions)
            )

            stmt = (
                select(QuestionnaireResponse)
                .where(*conditions)
                .order_by(QuestionnaireResponse.submitted_at.desc())
                .limit(limit)
                .offset(offset)
            )
            responses = list((await session.execute(stmt)).scalars().all())

            titles = await self._questionnaire_titles(session, responses)
            clients = await self._clients(session, responses)

        return {
            "responses": [
                response_payload(
                    r,
                    questionnaire_title=titles.get(r.questionnaire_id),
                    client=clients.get(r.client_id),
                )
                for r in responses
            ],
            "total": int(total or 0),
            "limit": limit,
            "offset": offset,
        }

    async def attach_response_to_client(self, response_id: str, client_id: str) -> dict[str, Any]:
        rid = parse_uuid(response_id)
        if rid is None:
            raise ValidationError("Malformed response id", {"response_id": "not a uuid"})
        if not client_id:
            raise ValidationError("client_id is required", {"client_id": "required"})

        async with session_scope(self._session_factory) as session:
            response = await session.get(QuestionnaireResponse, rid)
            if response is None:
                raise NotFound(f"Response {response_id} not found")

            response.client_id = await self._identity.map_identifier(client_id, session=session)
            await session.flush()

            titles = await self._questionnaire_titles(session, [response])
            clients = await self._clients(session, [response])

        logger.info(
            "response_attached_to_client",
            response_id=str(rid),
            client_id=response.client_id,
        )
        return response_payload(
            response,
            questionnaire_title=titles.get(response.questionnaire_id),
            client=clients.get(response.client_id),
        )

    # ── Lookups ──────────────────────────────────────────────────────────────

    async def _questionnaire_titles(
        self,
        session: AsyncSession,
        responses: list[QuestionnaireResponse],
    ) -> dict[str, str]:
        ids = {
            parse_uuid(r.questionnaire_id): r.questionnaire_id
            for r in responses
            if r.questionnaire_id
        }
        ids.pop(None, None)
        if not ids:
            return {}
        result = await session.execute(
            select(Questionnaire.id, Questionnaire.title).where(Questionnaire.id.in_(list(ids)))
        )
        return {ids[row.id]: row.title for row in result}

    async def _clients(
        self,
        session: AsyncSession,
        responses: list[QuestionnaireResponse],
    ) -> dict[str, Client]:
        refs = {r.client_id for r in responses if r.client_id}
        if not refs:
            return {}
        result = await session.execute(
            select(Client).where(
                or_(cast(Client.id, String).in_(list(refs)), Client.client_id.in_(list(refs)))
            )
        )
        found: dict[str, Client] = {}
        for client in result.scalars().all():
            for ref in (str(client.id), client.client_id):
                if ref in refs:
                    found.setdefault(ref, client)
        return found
