from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

FieldType = Literal["text", "email", "textarea", "select", "radio", "number"]

FIELD_TYPES: tuple[str, ...] = ("text", "email", "textarea", "select", "radio", "number")

# Answer keys that carry contact details rather than form answers.
RESERVED_ANSWER_KEYS: frozenset[str] = frozenset({"clientName", "clientEmail"})


class FieldSpec(BaseModel):
    key: str
    label: str
    type: FieldType = "text"
    required: bool = False
    options: list[str] = Field(default_factory=list)

    @field_validator("type", mode="before")
    @classmethod
    def default_unknown_type(cls, v: Any) -> str:
        return v if v in FIELD_TYPES else "text"


class CreateLinkRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    client_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("client_id", "clientId")
    )
    questionnaire_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("questionnaire_id", "questionnaireId", "template_id"),
    )
    # null or 0 means the link never expires
    expiry_days: Optional[int] = Field(
        default=30, ge=0, validation_alias=AliasChoices("expiry_days", "expiryDays")
    )


class LinkCreatedResponse(BaseModel):
    token: str
    link: str
    questionnaire_id: str
    expires_at: Optional[datetime] = None


class QuestionnaireView(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    fields: list[FieldSpec]


class ClientView(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None


class ResolvedLinkResponse(BaseModel):
    token: str
    questionnaire: QuestionnaireView
    client: ClientView
    is_used: bool
    expires_at: Optional[datetime] = None


class ContactInfo(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None


class SubmitRequest(BaseModel):
    answers: dict[str, Any]
    contact: Optional[ContactInfo] = None


class SubmitResult(BaseModel):
    response_id: str


class ResponseRecord(BaseModel):
    id: str
    questionnaire_id: Optional[str] = None
    questionnaire_title: Optional[str] = None
    client_id: Optional[str] = None
    token: Optional[str] = None
    answers: Optional[dict[str, Any]] = None
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    submitted_at: Optional[datetime] = None
    client: Optional[ClientView] = None


class ResponseList(BaseModel):
    responses: list[ResponseRecord]
    total: int
    limit: int
    offset: int


class AttachRequest(BaseModel):
    client_id: str = Field(
        min_length=1, validation_alias=AliasChoices("client_id", "clientId")
    )


class QuestionnaireSummary(BaseModel):
    id: str
    slug: Optional[str] = None
    title: str
    description: Optional[str] = None
    fields: list[FieldSpec]
    notify_email: Optional[str] = None
    created_at: Optional[datetime] = None
