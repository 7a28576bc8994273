"""
QuestLink — Public Questionnaire API

Endpoints used by the form renderer: resolve a link token to the form it
grants, and submit the answers for that token exactly once.  Domain errors
(NotFound / Expired / AlreadyConsumed / ValidationError) are turned into
404 / 410 / 409 / 422 by the exception handler in ``app.main``.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, status

from app.api.deps import get_questionnaire_service
from app.schemas.questionnaire import (
    ResolvedLinkResponse,
    SubmitRequest,
    SubmitResult,
)
from app.services.questionnaire_service import QuestionnaireService

logger = structlog.get_logger("questlink.api.questionnaire")

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# GET /{token}: resolve a link
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/{token}",
    response_model=ResolvedLinkResponse,
    summary="Resolve a questionnaire link",
)
async def resolve_link(
    token: str,
    service: QuestionnaireService = Depends(get_questionnaire_service),
) -> dict:
    """Return the questionnaire fields and known client for ``token``.

    Read-only; may be called any number of times while the link is valid.
    """
    return await service.resolve_link(token)


# ──────────────────────────────────────────────────────────────────────────────
# POST /{token}/submit: submit answers
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/{token}/submit",
    response_model=SubmitResult,
    status_code=status.HTTP_201_CREATED,
    summary="Submit answers for a questionnaire link",
)
async def submit_response(
    token: str,
    payload: SubmitRequest,
    service: QuestionnaireService = Depends(get_questionnaire_service),
) -> dict:
    """Consume the link and store the answers.

    Notification emails are sent in the background after the response is
    stored; their outcome never changes this response.
    """
    contact = payload.contact.model_dump(exclude_none=True) if payload.contact else None
    result = await service.submit_response(token, payload.answers, contact)
    logger.info("submit_response_accepted", response_id=result["response_id"])
    return result
