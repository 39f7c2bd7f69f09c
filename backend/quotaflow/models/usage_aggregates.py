from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, UniqueConstraint

from quotaflow.core.db import Base
from quotaflow.core.time import utcnow


class DocumentUsageAggregate(Base):
    __tablename__ = "document_usage_aggregates"
    __table_args__ = (
        UniqueConstraint("tenant_id", "date", name="uq_document_usage_aggregate_day"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(
        Integer,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    date = Column(Date, nullable=False, index=True)
    pages_spent = Column(Integer, nullable=False, default=0)
    rows_used = Column(Integer, nullable=False, default=0)
    event_count = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
