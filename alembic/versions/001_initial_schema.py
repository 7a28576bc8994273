"""Initial schema — questionnaires, links and responses.

Revision ID: 001_initial
Revises:
Create Date: 2025-01-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── 1. questionnaires ───────────────────────────────────────────
    op.create_table(
        "questionnaires",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("slug", sa.String, unique=True, nullable=True),
        sa.Column("title", sa.Text, nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column(
            "fields",
            postgresql.JSONB,
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
            comment="Ordered FieldSpec list",
        ),
        sa.Column(
            "is_active",
            sa.Boolean,
            server_default="true",
            nullable=False,
        ),
        sa.Column("notify_email", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )

    # ── 2. questionnaire_links ──────────────────────────────────────
    # References are text so links survive id-type differences between
    # installs.  Older installs name the reference column template_id.
    op.create_table(
        "questionnaire_links",
        sa.Column("token", sa.Text, primary_key=True),
        sa.Column("questionnaire_id", sa.Text, nullable=True),
        sa.Column("client_id", sa.Text, nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_used", sa.Boolean, server_default="false"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_q_links_client", "questionnaire_links", ["client_id"])

    # ── 3. questionnaire_responses ──────────────────────────────────
    op.create_table(
        "questionnaire_responses",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("questionnaire_id", sa.Text, nullable=True),
        sa.Column("client_id", sa.Text, nullable=True),
        sa.Column("token", sa.Text, nullable=True),
        sa.Column("answers", postgresql.JSONB, nullable=True),
        sa.Column("client_name", sa.Text, nullable=True),
        sa.Column("client_email", sa.Text, nullable=True),
        sa.Column(
            "submitted_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("idx_q_resp_client", "questionnaire_responses", ["client_id"])
    op.create_index("idx_q_resp_token", "questionnaire_responses", ["token"])


def downgrade() -> None:
    op.drop_index("idx_q_resp_token", table_name="questionnaire_responses")
    op.drop_index("idx_q_resp_client", table_name="questionnaire_responses")
    op.drop_table("questionnaire_responses")

    op.drop_index("idx_q_links_client", table_name="questionnaire_links")
    op.drop_table("questionnaire_links")

    op.drop_table("questionnaires")
