"""add path revision and block position index

Revision ID: 8e52b4c6d0f3
Revises: 3c1f0a7d9b21
Create Date: 2026-10-19 11:40:05.918342

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8e52b4c6d0f3'
down_revision: Union[str, Sequence[str], None] = '3c1f0a7d9b21'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.add_column(
        "paths",
        sa.Column("revision", sa.Integer(), nullable=False, server_default=sa.text("1")),
    )

    # not unique: positions pass through duplicates while a path is reshaped
    op.create_index("ix_blocks_path_id_position", "blocks", ["path_id", "position"], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_blocks_path_id_position", table_name="blocks")
    with op.batch_alter_table("paths") as batch_op:
        batch_op.drop_column("revision")
