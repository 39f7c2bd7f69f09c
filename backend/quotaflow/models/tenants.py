from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text
from sqlalchemy.orm import relationship

from quotaflow.core.db import Base
from quotaflow.core.time import utcnow


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, nullable=False, index=True)
    plan_key = Column(String, nullable=True)

    # Base allowance from the plan, plus add-on capacity bought this period.
    pages_limit = Column(Integer, nullable=False, default=5000)
    rows_limit = Column(Integer, nullable=False, default=5000)
    addon_pages_limit = Column(Integer, nullable=False, default=0)
    addon_rows_limit = Column(Integer, nullable=False, default=0)

    scenarios_paused = Column(Boolean, nullable=False, default=False)
    last_reset_at = Column(DateTime, nullable=True)

    make_api_key_encrypted = Column(Text, nullable=True)
    make_org_id = Column(String, nullable=True)
    make_folder_id = Column(String, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    subscriptions = relationship("Subscription", back_populates="tenant", lazy="selectin")
