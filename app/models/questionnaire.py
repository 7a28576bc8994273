"""
QuestLink — Questionnaire models (form definitions + submitted responses).
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, String, Text, Uuid, func, true
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.models.types import JSONType, utcnow


class Questionnaire(Base):
    """A named form: an ordered list of field specs plus delivery settings."""

    __tablename__ = "questionnaires"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    slug: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    fields: Mapped[list] = mapped_column(
        JSONType, nullable=False, default=list, comment="Ordered FieldSpec list"
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=true(), nullable=False
    )
    notify_email: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Questionnaire {self.title!r} id={self.id} active={self.is_active}>"


class QuestionnaireResponse(Base):
    """One answer set, written exactly once per consumed link."""

    __tablename__ = "questionnaire_responses"
    __table_args__ = (
        Index("idx_q_resp_client", "client_id"),
        Index("idx_q_resp_token", "token"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    # Cross-references are text so that deployments with differing id types
    # (uuid vs. varchar) can all be joined the same way.
    questionnaire_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    client_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    token: Mapped[str | None] = mapped_column(Text, nullable=True)
    answers: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    client_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    client_email: Mapped[str | None] = mapped_column(Text, nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<QuestionnaireResponse id={self.id} "
            f"questionnaire={self.questionnaire_id} client={self.client_id}>"
        )
