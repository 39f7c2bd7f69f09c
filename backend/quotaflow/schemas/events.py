from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from quotaflow.core.usage import MAX_USAGE_COUNT


class SourceEventCreate(BaseModel):
    tenant_id: str = Field(..., alias="tenantId", min_length=1)
    source: Literal["make", "azure", "openai"]
    document_type: Optional[Literal["bank", "vat"]] = Field(None, alias="documentType")
    file_type: Optional[Literal["pdf", "excel"]] = Field(None, alias="fileType")
    step: Optional[Literal["split", "ocr", "classify", "route", "finalize"]] = None
    chunk_start: Optional[int] = Field(None, alias="chunkStart", ge=0, le=MAX_USAGE_COUNT)
    chunk_end: Optional[int] = Field(None, alias="chunkEnd", ge=0, le=MAX_USAGE_COUNT)
    bank_code: Optional[str] = Field(None, alias="bankCode", max_length=64)
    cost: Optional[Decimal] = Field(None, ge=0, le=Decimal("99999999"))
    tokens: Optional[int] = Field(None, ge=0, le=MAX_USAGE_COUNT, strict=True)
    metadata: Optional[dict[str, Any]] = None
    timestamp: Optional[datetime] = None

    @field_validator("tenant_id", mode="before")
    @classmethod
    def _coerce_tenant(cls, value):
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    class Config:
        populate_by_name = True


class SourceEventResult(BaseModel):
    status: Literal["created", "duplicate"]
    event_id: Optional[int] = Field(None, serialization_alias="eventId")
    message: Optional[str] = None


class SourceTotalsRead(BaseModel):
    event_count: int = Field(..., serialization_alias="eventCount")
    total_cost: str = Field(..., serialization_alias="totalCost")
    total_tokens: int = Field(..., serialization_alias="totalTokens")


class SummaryTotalsRead(BaseModel):
    events: int
    cost: str
    currency: str


class UsageSummaryRead(BaseModel):
    tenant_id: int = Field(..., serialization_alias="tenantId")
    period: str
    from_at: datetime = Field(..., serialization_alias="from")
    to_at: datetime = Field(..., serialization_alias="to")
    summary: dict[str, SourceTotalsRead]
    totals: SummaryTotalsRead


class SeriesBucket(BaseModel):
    events: int
    cost: float


class TimeseriesPoint(BaseModel):
    day: date = Field(..., serialization_alias="date")
    make: SeriesBucket
    azure: SeriesBucket
    openai: SeriesBucket
    total: SeriesBucket


class TimeseriesRead(BaseModel):
    tenant_id: int = Field(..., serialization_alias="tenantId")
    days: int
    data: list[TimeseriesPoint]
