"""
Domain exceptions raised by the metering, quota and workflow layers.

Each carries an HTTP status and an error code so the app-level exception
handler can render them without the routes re-mapping every case.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class MeteringError(Exception):
    code: str
    message: str
    status_code: int

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code}


class TenantNotFound(MeteringError):
    """Raised when a tenant id or slug does not resolve."""

    def __init__(self, tenant_ref: Any):
        super().__init__(
            code="tenant_not_found",
            message=f"Tenant not found: {tenant_ref}",
            status_code=404,
        )


class UsageValidationError(MeteringError):
    """Raised when a usage payload is out of range; never clamped."""

    def __init__(self, message: str):
        super().__init__(code="validation_error", message=message, status_code=400)


class WorkflowCredentialsMissing(MeteringError):
    """Raised by foreground workflow actions when no API key is stored."""

    def __init__(self):
        super().__init__(
            code="workflow_api_key_missing",
            message="Make.com API key is not configured",
            status_code=400,
        )


class WorkflowOrganizationUnresolved(MeteringError):
    """Raised by an explicit sync when no organization id can be determined."""

    def __init__(self):
        super().__init__(
            code="workflow_organization_unresolved",
            message=(
                "Could not determine the Make.com organization id. Check the API key "
                "permissions (organizations:read) or store the organization id on the tenant."
            ),
            status_code=502,
        )


class WorkflowPlatformError(MeteringError):
    """Raised by foreground workflow actions when the platform call fails."""

    def __init__(self, message: str, *, status_code: int = 502, code: str = "workflow_platform_error"):
        super().__init__(code=code, message=message, status_code=status_code)


class SignatureError(MeteringError):
    """Raised when a signed pipeline request fails HMAC verification."""

    def __init__(self, message: str, *, code: str = "invalid_signature"):
        super().__init__(code=code, message=message, status_code=401)


class MissingIdempotencyKey(MeteringError):
    def __init__(self):
        super().__init__(
            code="missing_idempotency_key",
            message="Missing Idempotency-Key header",
            status_code=400,
        )
