"""add tenant quota and workflow credential columns

Revision ID: 9d04b7e3f1a5
Revises: 8c51f0a9e6d2
Create Date: 2026-09-23 09:05:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "9d04b7e3f1a5"
down_revision: Union[str, None] = "8c51f0a9e6d2"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    with op.batch_alter_table("tenants") as batch_op:
        batch_op.add_column(sa.Column("pages_limit", sa.Integer(), nullable=False, server_default="5000"))
        batch_op.add_column(sa.Column("rows_limit", sa.Integer(), nullable=False, server_default="5000"))
        batch_op.add_column(sa.Column("addon_pages_limit", sa.Integer(), nullable=False, server_default="0"))
        batch_op.add_column(sa.Column("addon_rows_limit", sa.Integer(), nullable=False, server_default="0"))
        batch_op.add_column(
            sa.Column("scenarios_paused", sa.Boolean(), nullable=False, server_default=sa.false())
        )
        batch_op.add_column(sa.Column("last_reset_at", sa.DateTime(), nullable=True))
        batch_op.add_column(sa.Column("make_api_key_encrypted", sa.Text(), nullable=True))
        batch_op.add_column(sa.Column("make_org_id", sa.String(), nullable=True))
        batch_op.add_column(sa.Column("make_folder_id", sa.String(), nullable=True))


def downgrade() -> None:
    with op.batch_alter_table("tenants") as batch_op:
        batch_op.drop_column("make_folder_id")
        batch_op.drop_column("make_org_id")
        batch_op.drop_column("make_api_key_encrypted")
        batch_op.drop_column("last_reset_at")
        batch_op.drop_column("scenarios_paused")
        batch_op.drop_column("addon_rows_limit")
        batch_op.drop_column("addon_pages_limit")
        batch_op.drop_column("rows_limit")
        batch_op.drop_column("pages_limit")
