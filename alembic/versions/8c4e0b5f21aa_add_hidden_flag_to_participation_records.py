"""add hidden flag to participation records

Revision ID: 8c4e0b5f21aa
Revises: 3f1c2a7d9b10
Create Date: 2026-10-19 10:03:27.552981

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8c4e0b5f21aa'
down_revision: Union[str, Sequence[str], None] = '3f1c2a7d9b10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    bind = op.get_bind()
    existing_cols = {c["name"] for c in sa.inspect(bind).get_columns("participation_records")}

    if "hidden" not in existing_cols:
        op.add_column(
            "participation_records",
            sa.Column("hidden", sa.Boolean(), nullable=False, server_default=sa.false()),
        )


def downgrade() -> None:
    """Downgrade schema."""
    with op.batch_alter_table("participation_records", recreate="always") as batch_op:
        batch_op.drop_column("hidden")
