"""
QuestLink — Domain error taxonomy.

Every failure a caller can act on is a distinct subclass of
``QuestionnaireError`` so the HTTP layer can map each one to its own status
code without string matching.
"""

from __future__ import annotations


class QuestionnaireError(Exception):
    """Base class for all questionnaire-link errors."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(QuestionnaireError, LookupError):
    """Unknown token, questionnaire or response."""

    status_code = 404


class Expired(QuestionnaireError):
    """The link's ``expires_at`` has passed."""

    status_code = 410


class AlreadyConsumed(QuestionnaireError):
    """The link was already used for a submission."""

    status_code = 409


class ValidationError(QuestionnaireError, ValueError):
    """Malformed token or submission payload."""

    status_code = 422

    def __init__(self, message: str, errors: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or {}


class TransientStoreError(QuestionnaireError):
    """Schema probe or storage failure; safe for the caller to retry."""

    status_code = 503
