"""create pipeline usage events and per-source aggregates

Revision ID: b5c1d7e9f2a4
Revises: a2e6c8d0b3f7
Create Date: 2026-10-19 10:15:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "b5c1d7e9f2a4"
down_revision: Union[str, None] = "a2e6c8d0b3f7"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "usage_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "tenant_id",
            sa.Integer(),
            sa.ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("source", sa.String(length=16), nullable=False),
        sa.Column("idempotency_key", sa.String(), nullable=False),
        sa.Column("document_type", sa.String(length=16), nullable=True),
        sa.Column("file_type", sa.String(length=16), nullable=True),
        sa.Column("step", sa.String(length=16), nullable=True),
        sa.Column("chunk_start", sa.Integer(), nullable=True),
        sa.Column("chunk_end", sa.Integer(), nullable=True),
        sa.Column("bank_code", sa.String(length=64), nullable=True),
        sa.Column("cost", sa.Numeric(12, 4), nullable=True),
        sa.Column("tokens", sa.Integer(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("tenant_id", "idempotency_key", name="uq_usage_event_key"),
    )
    op.create_index(op.f("ix_usage_events_id"), "usage_events", ["id"], unique=False)
    op.create_index(op.f("ix_usage_events_tenant_id"), "usage_events", ["tenant_id"], unique=False)
    op.create_index(op.f("ix_usage_events_occurred_at"), "usage_events", ["occurred_at"], unique=False)

    op.create_table(
        "usage_aggregates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "tenant_id",
            sa.Integer(),
            sa.ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("source", sa.String(length=16), nullable=False),
        sa.Column("document_type", sa.String(length=16), nullable=False, server_default=""),
        sa.Column("file_type", sa.String(length=16), nullable=False, server_default=""),
        sa.Column("step", sa.String(length=16), nullable=False, server_default=""),
        sa.Column("bank_code", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("event_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_cost", sa.Numeric(14, 4), nullable=False, server_default="0"),
        sa.Column("total_tokens", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "tenant_id",
            "date",
            "source",
            "document_type",
            "file_type",
            "step",
            "bank_code",
            name="uq_usage_aggregate_dimensions",
        ),
    )
    op.create_index(op.f("ix_usage_aggregates_id"), "usage_aggregates", ["id"], unique=False)
    op.create_index(op.f("ix_usage_aggregates_tenant_id"), "usage_aggregates", ["tenant_id"], unique=False)
    op.create_index(op.f("ix_usage_aggregates_date"), "usage_aggregates", ["date"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_usage_aggregates_date"), table_name="usage_aggregates")
    op.drop_index(op.f("ix_usage_aggregates_tenant_id"), table_name="usage_aggregates")
    op.drop_index(op.f("ix_usage_aggregates_id"), table_name="usage_aggregates")
    op.drop_table("usage_aggregates")
    op.drop_index(op.f("ix_usage_events_occurred_at"), table_name="usage_events")
    op.drop_index(op.f("ix_usage_events_tenant_id"), table_name="usage_events")
    op.drop_index(op.f("ix_usage_events_id"), table_name="usage_events")
    op.drop_table("usage_events")
