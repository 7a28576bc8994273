"""
QuestLink — ORM model registry.

Importing every model here ensures that Alembic (and any other tool that
inspects ``Base.metadata``) discovers all tables automatically.  The link
table is not an ORM model; its shape depends on the deployment and lives in
``app.models.link``.
"""

from app.models.questionnaire import Questionnaire, QuestionnaireResponse
from app.models.directory import Client, Survey

__all__ = [
    "Questionnaire",
    "QuestionnaireResponse",
    "Client",
    "Survey",
]
