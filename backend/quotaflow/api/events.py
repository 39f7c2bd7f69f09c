from typing import Optional

from fastapi import APIRouter, Depends, Header, Response, status

from quotaflow.api.dependencies import verify_hmac_signature
from quotaflow.core.db import get_db
from quotaflow.core.events import SourceEvent, ingest_source_event
from quotaflow.schemas.events import SourceEventCreate, SourceEventResult


router = APIRouter(prefix="/events", tags=["events"], dependencies=[Depends(verify_hmac_signature)])


@router.post(
    "/ingest",
    response_model=SourceEventResult,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
)
def ingest_event(
    payload: SourceEventCreate,
    response: Response,
    db=Depends(get_db),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
):
    event = SourceEvent(
        source=payload.source,
        document_type=payload.document_type,
        file_type=payload.file_type,
        step=payload.step,
        chunk_start=payload.chunk_start,
        chunk_end=payload.chunk_end,
        bank_code=payload.bank_code,
        cost=payload.cost,
        tokens=payload.tokens,
        metadata=payload.metadata,
        occurred_at=payload.timestamp,
    )
    result = ingest_source_event(db, payload.tenant_id, event, idempotency_key)
    if not result.created:
        response.status_code = status.HTTP_200_OK
        return SourceEventResult(status=result.status, message="Event already processed")
    return SourceEventResult(status=result.status, event_id=result.event_id)
