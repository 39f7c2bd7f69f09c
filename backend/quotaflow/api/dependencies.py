import hashlib
import hmac
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from quotaflow.core.config import settings
from quotaflow.core.db import get_db
from quotaflow.core.errors import SignatureError
from quotaflow.crud.tenants import resolve_tenant
from quotaflow.models.tenants import Tenant


def _check_shared_key(provided: Optional[str], expected: Optional[str], *, label: str) -> None:
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"{label} is not configured on the server",
        )
    if not provided or not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid or missing {label}",
        )


def require_usage_api_key(x_api_key: Optional[str] = Header(None, alias="X-API-Key")) -> None:
    _check_shared_key(x_api_key, settings.USAGE_API_KEY, label="usage API key")


def require_admin_api_key(x_admin_key: Optional[str] = Header(None, alias="X-Admin-Key")) -> None:
    _check_shared_key(x_admin_key, settings.ADMIN_API_KEY, label="admin API key")


SIGNATURE_PREFIX = "sha256="


def sign_body(body: bytes, secret: str) -> str:
    return SIGNATURE_PREFIX + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


async def verify_hmac_signature(
    request: Request,
    x_hmac_signature: Optional[str] = Header(None, alias="X-HMAC-Signature"),
) -> None:
    """Check X-HMAC-Signature against the raw request body."""
    if not x_hmac_signature:
        raise SignatureError("Missing HMAC signature", code="missing_signature")
    if not settings.HMAC_SECRET:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="HMAC secret is not configured on the server",
        )
    expected = sign_body(await request.body(), settings.HMAC_SECRET)
    if not hmac.compare_digest(x_hmac_signature.strip().encode("utf-8"), expected.encode("utf-8")):
        raise SignatureError("Invalid HMAC signature")


def get_tenant_from_path(tenant_ref: str, db: Session = Depends(get_db)) -> Tenant:
    return resolve_tenant(db, tenant_ref)
