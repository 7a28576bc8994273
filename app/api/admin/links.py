"""
QuestLink — Admin API

Studio-side endpoints: mint links, page through submitted responses, attach
a response to a client, and list the questionnaires links can point at.
"""

from __future__ import annotations

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query

from app.api.deps import get_questionnaire_service
from app.schemas.questionnaire import (
    AttachRequest,
    CreateLinkRequest,
    LinkCreatedResponse,
    QuestionnaireSummary,
    ResponseList,
    ResponseRecord,
)
from app.services.questionnaire_service import QuestionnaireService

logger = structlog.get_logger("questlink.api.admin")

router = APIRouter()


@router.post(
    "/questionnaire-links",
    response_model=LinkCreatedResponse,
    summary="Create a questionnaire link",
)
async def create_link(
    payload: CreateLinkRequest,
    service: QuestionnaireService = Depends(get_questionnaire_service),
) -> dict:
    """Mint a single-use link for a client (or anonymously).

    Falls back to the oldest active questionnaire, or creates a default one,
    when no usable ``questionnaire_id`` is given.
    """
    return await service.create_link(
        client_id=payload.client_id,
        questionnaire_id=payload.questionnaire_id,
        expiry_days=payload.expiry_days,
    )


@router.get(
    "/questionnaire-responses",
    response_model=ResponseList,
    summary="List questionnaire responses",
)
async def list_responses(
    questionnaire_id: Optional[str] = Query(default=None),
    client_id: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    service: QuestionnaireService = Depends(get_questionnaire_service),
) -> dict:
    return await service.list_responses(questionnaire_id, client_id, limit, offset)


@router.post(
    "/questionnaire-responses/{response_id}/attach",
    response_model=ResponseRecord,
    summary="Attach a response to a client",
)
async def attach_response(
    response_id: str,
    payload: AttachRequest,
    service: QuestionnaireService = Depends(get_questionnaire_service),
) -> dict:
    log = logger.bind(response_id=response_id, client_id=payload.client_id)
    result = await service.attach_response_to_client(response_id, payload.client_id)
    log.info("attach_response_complete")
    return result


@router.get(
    "/questionnaires",
    response_model=list[QuestionnaireSummary],
    summary="List active questionnaires",
)
async def list_questionnaires(
    service: QuestionnaireService = Depends(get_questionnaire_service),
) -> list[dict]:
    return await service.list_questionnaires()
