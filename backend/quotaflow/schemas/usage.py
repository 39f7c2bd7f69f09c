from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from quotaflow.core.usage import MAX_USAGE_COUNT


class DocumentUsageCreate(BaseModel):
    tenant_id: str = Field(..., alias="tenantId", min_length=1)
    pages_spent: int = Field(..., alias="pagesSpent", ge=0, le=MAX_USAGE_COUNT, strict=True)
    rows_used: int = Field(..., alias="rowsUsed", ge=0, le=MAX_USAGE_COUNT, strict=True)
    idempotency_key: Optional[str] = Field(None, alias="idempotencyKey", max_length=255)
    occurred_at: Optional[datetime] = Field(None, alias="occurredAt")
    job_id: Optional[str] = Field(None, alias="jobId", max_length=255)
    scenario_id: Optional[str] = Field(None, alias="scenarioId", max_length=255)
    scenario_name: Optional[str] = Field(None, alias="scenarioName", max_length=255)

    @field_validator("tenant_id", "scenario_id", "job_id", mode="before")
    @classmethod
    def _coerce_identifier(cls, value):
        # Producers send numeric ids as JSON numbers as often as strings.
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    class Config:
        populate_by_name = True


class DocumentUsageResult(BaseModel):
    status: Literal["created", "duplicate"]
    event_id: Optional[int] = Field(None, serialization_alias="eventId")
    tenant_id: int = Field(..., serialization_alias="tenantId")


class DocumentUsageDay(BaseModel):
    day: date = Field(..., serialization_alias="date")
    pages_spent: int = Field(..., serialization_alias="pagesSpent")
    rows_used: int = Field(..., serialization_alias="rowsUsed")
    event_count: int = Field(..., serialization_alias="eventCount")


class DocumentUsageTotals(BaseModel):
    pages_spent: int = Field(..., serialization_alias="pagesSpent")
    rows_used: int = Field(..., serialization_alias="rowsUsed")
    event_count: int = Field(..., serialization_alias="eventCount")


class DocumentUsageReport(BaseModel):
    tenant_id: int = Field(..., serialization_alias="tenantId")
    days: list[DocumentUsageDay]
    totals: DocumentUsageTotals
