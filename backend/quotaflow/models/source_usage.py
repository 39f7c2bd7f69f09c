from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)

from quotaflow.core.db import Base
from quotaflow.core.time import utcnow


class SourceUsageEvent(Base):
    """One processing step reported by the pipeline (Make.com, Azure OCR, OpenAI)."""

    __tablename__ = "usage_events"
    __table_args__ = (
        UniqueConstraint("tenant_id", "idempotency_key", name="uq_usage_event_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(
        Integer,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    source = Column(String(16), nullable=False)
    idempotency_key = Column(String, nullable=False)
    document_type = Column(String(16), nullable=True)
    file_type = Column(String(16), nullable=True)
    step = Column(String(16), nullable=True)
    chunk_start = Column(Integer, nullable=True)
    chunk_end = Column(Integer, nullable=True)
    bank_code = Column(String(64), nullable=True)
    cost = Column(Numeric(12, 4), nullable=True)
    tokens = Column(Integer, nullable=True)
    # "metadata" is reserved on declarative classes.
    event_metadata = Column("metadata", JSON, nullable=True)
    occurred_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class SourceUsageAggregate(Base):
    __tablename__ = "usage_aggregates"
    __table_args__ = (
        UniqueConstraint(
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

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(
        Integer,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    date = Column(Date, nullable=False, index=True)
    source = Column(String(16), nullable=False)
    # Unset dimensions are stored as "" so the unique key stays comparable.
    document_type = Column(String(16), nullable=False, default="")
    file_type = Column(String(16), nullable=False, default="")
    step = Column(String(16), nullable=False, default="")
    bank_code = Column(String(64), nullable=False, default="")
    event_count = Column(Integer, nullable=False, default=0)
    total_cost = Column(Numeric(14, 4), nullable=False, default=0)
    total_tokens = Column(BigInteger, nullable=False, default=0)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
