"""Initial schema: contacts, sync_jobs, authorizations.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "contacts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(320), unique=True, nullable=True),
        sa.Column("first_name", sa.String(200), nullable=True),
        sa.Column("last_name", sa.String(200), nullable=True),
        sa.Column("hs_object_id", sa.String(64), nullable=True),
    )
    op.create_index("ix_contacts_hs_object_id", "contacts", ["hs_object_id"])

    op.create_table(
        "sync_jobs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("execution_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("success", JSONB(), nullable=True),
        sa.Column("failures", JSONB(), nullable=True),
    )

    op.create_table(
        "authorizations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("customer_id", sa.String(64), unique=True, nullable=False),
        sa.Column("hs_portal_id", sa.String(64), nullable=True),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=False),
        sa.Column("expires_in", sa.Integer(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("authorizations")
    op.drop_table("sync_jobs")
    op.drop_index("ix_contacts_hs_object_id", table_name="contacts")
    op.drop_table("contacts")
