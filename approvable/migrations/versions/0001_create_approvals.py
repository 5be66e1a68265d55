"""Create approvals table

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Tables added:
- approvals: Pending, approved and rejected changes to governed records
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the approvals table."""
    op.create_table(
        "approvals",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("approvable_type", sa.String(255), nullable=False),
        sa.Column("approvable_id", sa.String(64), nullable=True),
        sa.Column("operation", sa.String(20), nullable=False, server_default="update"),
        sa.Column("original_data", sa.JSON(), nullable=False),
        sa.Column("new_data", sa.JSON(), nullable=False),
        sa.Column("state", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("creator_type", sa.String(255), nullable=True),
        sa.Column("creator_id", sa.String(64), nullable=True),
        sa.Column("approver_type", sa.String(255), nullable=True),
        sa.Column("approver_id", sa.String(64), nullable=True),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("rolled_back_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.current_timestamp()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.current_timestamp()),
        sa.PrimaryKeyConstraint("id", name="pk_approvals"),
    )
    op.create_index("ix_approvals_state", "approvals", ["state"])
    op.create_index("ix_approvals_created_at", "approvals", ["created_at"])
    op.create_index("ix_approvals_approvable", "approvals", ["approvable_type", "approvable_id"])
    op.create_index("ix_approvals_creator", "approvals", ["creator_type", "creator_id"])


def downgrade() -> None:
    """Drop the approvals table."""
    op.drop_index("ix_approvals_creator", table_name="approvals")
    op.drop_index("ix_approvals_approvable", table_name="approvals")
    op.drop_index("ix_approvals_created_at", table_name="approvals")
    op.drop_index("ix_approvals_state", table_name="approvals")
    op.drop_table("approvals")
