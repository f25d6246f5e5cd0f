"""Make contact emails unique regardless of case.

Revision ID: 002_email_lower
Revises: 001_initial
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "002_email_lower"
down_revision: Union[str, None] = "001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.drop_constraint("contacts_email_key", "contacts", type_="unique")
    op.create_index(
        "uq_contacts_email_lower",
        "contacts",
        [sa.text("lower(email)")],
        unique=True,
    )


def downgrade() -> None:
    op.drop_index("uq_contacts_email_lower", table_name="contacts")
    op.create_unique_constraint("contacts_email_key", "contacts", ["email"])
