from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class QuotaStatusRead(BaseModel):
    tenant_id: int
    pages_used: int
    rows_used: int
    pages_limit: int
    rows_limit: int
    addon_pages_limit: int
    addon_rows_limit: int
    total_pages_limit: int
    total_rows_limit: int
    addon_pages_used: int
    addon_rows_used: int
    pages_remaining: int
    rows_remaining: int
    exceeded: bool
    scenarios_paused: bool
    period_start: datetime
    last_reset_at: Optional[datetime] = None
    next_reset_at: datetime

    class Config:
        from_attributes = True


class ScenarioActionRead(BaseModel):
    succeeded: int
    failed: int


class UsageResetRead(BaseModel):
    tenant_id: int
    events_deleted: int
    aggregates_deleted: int
    last_reset_at: datetime
    resume: Optional[ScenarioActionRead] = None
