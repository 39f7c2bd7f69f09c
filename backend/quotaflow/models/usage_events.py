from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from quotaflow.core.db import Base
from quotaflow.core.time import utcnow


class DocumentUsageEvent(Base):
    __tablename__ = "document_usage_events"
    __table_args__ = (
        UniqueConstraint("tenant_id", "idempotency_key", name="uq_document_usage_event_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(
        Integer,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    idempotency_key = Column(String, nullable=False)
    pages_spent = Column(Integer, nullable=False, default=0)
    rows_used = Column(Integer, nullable=False, default=0)
    job_id = Column(String, nullable=True)
    scenario_id = Column(String, nullable=True)
    scenario_name = Column(String, nullable=True)
    occurred_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
