"""create document usage events and aggregates

Revision ID: 8c51f0a9e6d2
Revises: 7a3e91c2d4b0
Create Date: 2026-09-09 14:40:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "8c51f0a9e6d2"
down_revision: Union[str, None] = "7a3e91c2d4b0"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "document_usage_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "tenant_id",
            sa.Integer(),
            sa.ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("idempotency_key", sa.String(), nullable=False),
        sa.Column("pages_spent", sa.Integer(), nullable=False),
        sa.Column("rows_used", sa.Integer(), nullable=False),
        sa.Column("job_id", sa.String(), nullable=True),
        sa.Column("scenario_id", sa.String(), nullable=True),
        sa.Column("scenario_name", sa.String(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("tenant_id", "idempotency_key", name="uq_document_usage_event_key"),
    )
    op.create_index(op.f("ix_document_usage_events_id"), "document_usage_events", ["id"], unique=False)
    op.create_index(
        op.f("ix_document_usage_events_tenant_id"),
        "document_usage_events",
        ["tenant_id"],
        unique=False,
    )
    op.create_index(
        op.f("ix_document_usage_events_occurred_at"),
        "document_usage_events",
        ["occurred_at"],
        unique=False,
    )

    op.create_table(
        "document_usage_aggregates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "tenant_id",
            sa.Integer(),
            sa.ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("pages_spent", sa.Integer(), nullable=False),
        sa.Column("rows_used", sa.Integer(), nullable=False),
        sa.Column("event_count", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("tenant_id", "date", name="uq_document_usage_aggregate_day"),
    )
    op.create_index(
        op.f("ix_document_usage_aggregates_id"),
        "document_usage_aggregates",
        ["id"],
        unique=False,
    )
    op.create_index(
        op.f("ix_document_usage_aggregates_tenant_id"),
        "document_usage_aggregates",
        ["tenant_id"],
        unique=False,
    )
    op.create_index(
        op.f("ix_document_usage_aggregates_date"),
        "document_usage_aggregates",
        ["date"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index(op.f("ix_document_usage_aggregates_date"), table_name="document_usage_aggregates")
    op.drop_index(op.f("ix_document_usage_aggregates_tenant_id"), table_name="document_usage_aggregates")
    op.drop_index(op.f("ix_document_usage_aggregates_id"), table_name="document_usage_aggregates")
    op.drop_table("document_usage_aggregates")
    op.drop_index(op.f("ix_document_usage_events_occurred_at"), table_name="document_usage_events")
    op.drop_index(op.f("ix_document_usage_events_tenant_id"), table_name="document_usage_events")
    op.drop_index(op.f("ix_document_usage_events_id"), table_name="document_usage_events")
    op.drop_table("document_usage_events")
