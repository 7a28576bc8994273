"""Shared FastAPI dependencies."""

from fastapi import HTTPException, Request, status

from app.services.questionnaire_service import QuestionnaireService


def get_questionnaire_service(request: Request) -> QuestionnaireService:
    service = getattr(request.app.state, "questionnaire_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Questionnaire service not initialised",
        )
    return service
