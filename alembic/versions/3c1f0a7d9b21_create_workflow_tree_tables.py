"""create workflow tree tables

Revision ID: 3c1f0a7d9b21
Revises:
Create Date: 2026-10-19 09:12:44.201873

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c1f0a7d9b21'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "workflows",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_workflows_id", "workflows", ["id"], unique=False)

    op.create_table(
        "paths",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("workflow_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["workflow_id"], ["workflows.id"]),
    )
    op.create_index("ix_paths_id", "paths", ["id"], unique=False)
    op.create_index("ix_paths_workflow_id", "paths", ["workflow_id"], unique=False)

    op.create_table(
        "blocks",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("workflow_id", sa.Integer(), nullable=False),
        sa.Column("path_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("icon", sa.String(), nullable=True),
        sa.Column("image", sa.String(), nullable=True),
        sa.Column("original_image", sa.String(), nullable=True),
        sa.Column("delay_seconds", sa.Integer(), nullable=True),
        sa.Column("delay_type", sa.String(), nullable=True),
        sa.Column("delay_event", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["workflow_id"], ["workflows.id"]),
        sa.ForeignKeyConstraint(["path_id"], ["paths.id"]),
    )
    op.create_index("ix_blocks_id", "blocks", ["id"], unique=False)
    op.create_index("ix_blocks_workflow_id", "blocks", ["workflow_id"], unique=False)
    op.create_index("ix_blocks_path_id", "blocks", ["path_id"], unique=False)

    op.create_table(
        "path_parent_blocks",
        sa.Column("path_id", sa.Integer(), nullable=False),
        sa.Column("block_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["path_id"], ["paths.id"]),
        sa.ForeignKeyConstraint(["block_id"], ["blocks.id"]),
        sa.PrimaryKeyConstraint("path_id", "block_id"),
    )
    op.create_index("ix_path_parent_blocks_path_id", "path_parent_blocks", ["path_id"], unique=False)
    op.create_index("ix_path_parent_blocks_block_id", "path_parent_blocks", ["block_id"], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_path_parent_blocks_block_id", table_name="path_parent_blocks")
    op.drop_index("ix_path_parent_blocks_path_id", table_name="path_parent_blocks")
    op.drop_table("path_parent_blocks")

    op.drop_index("ix_blocks_path_id", table_name="blocks")
    op.drop_index("ix_blocks_workflow_id", table_name="blocks")
    op.drop_index("ix_blocks_id", table_name="blocks")
    op.drop_table("blocks")

    op.drop_index("ix_paths_workflow_id", table_name="paths")
    op.drop_index("ix_paths_id", table_name="paths")
    op.drop_table("paths")

    op.drop_index("ix_workflows_id", table_name="workflows")
    op.drop_table("workflows")
