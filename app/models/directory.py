"""
QuestLink — Read-only views of tables owned by other modules.

``crm_clients`` belongs to the CRM and ``surveys`` to the legacy survey
builder.  Only the columns this service reads are mapped; nothing here is
ever written.
"""

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.models.types import JSONType


class Client(Base):
    __tablename__ = "crm_clients"

    # uuid on PostgreSQL; always compared through CAST(... AS VARCHAR).
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    client_id: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="External business code"
    )
    first_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def full_name(self) -> str | None:
        name = " ".join(p for p in (self.first_name, self.last_name) if p).strip()
        return name or None

    def __repr__(self) -> str:
        return f"<Client id={self.id} code={self.client_id!r}>"


class Survey(Base):
    """Legacy multi-page survey definition."""

    __tablename__ = "surveys"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    pages: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    notify_email: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<Survey id={self.id} title={self.title!r}>"
