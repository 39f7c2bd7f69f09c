from datetime import date
from typing import Optional

from pydantic import BaseModel, Field


class ScenarioRead(BaseModel):
    id: str
    name: Optional[str] = None


class ScenarioListRead(BaseModel):
    scenarios: list[ScenarioRead]
    count: int


class MakeUserRead(BaseModel):
    id: int | str
    name: str
    email: str
    organization_id: Optional[str] = None
    timezone_id: Optional[int | str] = None


class MakeConnectionRead(BaseModel):
    status: str
    user: MakeUserRead
    zone: Optional[str] = None


class MakeSyncRead(BaseModel):
    status: str
    scenarios_processed: int
    days_synced: int
    records_written: int
    total_credits: float
    total_operations: int
    folder_filtered: bool
    scenarios_paused: bool


class WorkflowUsageDayRead(BaseModel):
    day: date = Field(..., serialization_alias="date")
    operations: int
    data_transfer: int
    credits: float


class WorkflowUsageRead(BaseModel):
    tenant_id: int
    days: list[WorkflowUsageDayRead]
    total_operations: int
    total_data_transfer: int
    total_credits: float
