from sqlalchemy import BigInteger, Column, Date, DateTime, ForeignKey, Integer, Numeric, UniqueConstraint

from quotaflow.core.db import Base
from quotaflow.core.time import utcnow


class WorkflowUsageDaily(Base):
    """Per-day credits pulled from the workflow platform by an explicit sync."""

    __tablename__ = "workflow_usage_daily"
    __table_args__ = (
        UniqueConstraint("tenant_id", "date", name="uq_workflow_usage_daily_day"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(
        Integer,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    date = Column(Date, nullable=False, index=True)
    operations = Column(BigInteger, nullable=False, default=0)
    data_transfer = Column(BigInteger, nullable=False, default=0)
    credits = Column(Numeric(14, 2), nullable=False, default=0)
    synced_at = Column(DateTime, nullable=False, default=utcnow)
