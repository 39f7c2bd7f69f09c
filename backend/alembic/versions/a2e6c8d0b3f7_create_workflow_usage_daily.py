"""create workflow usage daily table

Revision ID: a2e6c8d0b3f7
Revises: 9d04b7e3f1a5
Create Date: 2026-10-06 16:30:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "a2e6c8d0b3f7"
down_revision: Union[str, None] = "9d04b7e3f1a5"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "workflow_usage_daily",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "tenant_id",
            sa.Integer(),
            sa.ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("operations", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("data_transfer", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("credits", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("synced_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("tenant_id", "date", name="uq_workflow_usage_daily_day"),
    )
    op.create_index(op.f("ix_workflow_usage_daily_id"), "workflow_usage_daily", ["id"], unique=False)
    op.create_index(
        op.f("ix_workflow_usage_daily_tenant_id"),
        "workflow_usage_daily",
        ["tenant_id"],
        unique=False,
    )
    op.create_index(op.f("ix_workflow_usage_daily_date"), "workflow_usage_daily", ["date"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_workflow_usage_daily_date"), table_name="workflow_usage_daily")
    op.drop_index(op.f("ix_workflow_usage_daily_tenant_id"), table_name="workflow_usage_daily")
    op.drop_index(op.f("ix_workflow_usage_daily_id"), table_name="workflow_usage_daily")
    op.drop_table("workflow_usage_daily")
