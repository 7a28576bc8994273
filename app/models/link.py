"""
QuestLink — Questionnaire link table.

Unlike the ORM models, the link table has had more than one shape over the
life of the product: early installs key the questionnaire reference as
``template_id``, later ones as ``questionnaire_id``, and some carry both.
``build_link_table`` describes one concrete shape so that the schema
variants in ``app.services.schema_service`` can build statements against
exactly the columns a deployment has.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    MetaData,
    Table,
    Text,
    false,
    func,
)

from app.models.types import utcnow

LINK_TABLE_NAME = "questionnaire_links"


def build_link_table(*reference_columns: str) -> Table:
    """Return a ``Table`` for ``questionnaire_links`` with the given
    questionnaire reference column(s).

    Each call uses its own ``MetaData`` so differently shaped variants never
    collide in a shared registry.
    """
    if not reference_columns:
        raise ValueError("At least one questionnaire reference column is required")

    metadata = MetaData()
    return Table(
        LINK_TABLE_NAME,
        metadata,
        Column("token", Text, primary_key=True),
        *(Column(name, Text, nullable=True) for name in reference_columns),
        Column("client_id", Text, nullable=True),
        Column("expires_at", DateTime(timezone=True), nullable=True),
        Column("is_used", Boolean, default=False, server_default=false()),
        Column(
            "created_at",
            DateTime(timezone=True),
            default=utcnow,
            server_default=func.now(),
        ),
        Index("idx_q_links_client", "client_id"),
    )
