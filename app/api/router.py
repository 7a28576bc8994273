"""
QuestLink — Main API Router

Aggregates all sub-routers under a single prefix so that ``app.main``
can mount the entire API surface with one ``include_router`` call.
"""

from fastapi import APIRouter

from app.api import questionnaire
from app.api.admin import links

router = APIRouter()

router.include_router(questionnaire.router, prefix="/questionnaire", tags=["Questionnaire"])
router.include_router(links.router, prefix="/admin", tags=["Admin - Questionnaires"])
