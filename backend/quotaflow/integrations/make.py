"""
Make.com workflow platform client.

Background callers (quota engine, ingestion follow-ups) get best-effort
behaviour: missing credentials, unresolved organizations and failed calls
all collapse to "no scenarios". Foreground operator actions use
``client_for_tenant(..., required=True)`` and ``check_connection`` which
raise domain errors instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable
from urllib.parse import urlparse

import requests
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from quotaflow.core.config import settings
from quotaflow.core.crypto import decrypt_secret
from quotaflow.core.errors import WorkflowCredentialsMissing, WorkflowPlatformError
from quotaflow.core.metrics import record_scenario_action
from quotaflow.crud.tenants import get_tenant_by_id, update_tenant_limits
from quotaflow.models.tenants import Tenant


logger = logging.getLogger(__name__)


class MakeApiError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


# Failures a single lookup or scenario call may raise; callers isolate them per step.
CALL_ERRORS = (MakeApiError, requests.RequestException, ValueError)


@dataclass(frozen=True)
class Scenario:
    id: str
    name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name}


@dataclass(frozen=True)
class OrgLookup:
    org_id: str | None = None
    source: str | None = None

    @property
    def found(self) -> bool:
        return bool(self.org_id)


@dataclass(frozen=True)
class ScenarioActionResult:
    succeeded: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"succeeded": self.succeeded, "failed": self.failed}


class MakeClient:
    def __init__(
        self,
        api_key: str,
        *,
        base_url: str | None = None,
        lookup_timeout: float | None = None,
        action_timeout: float | None = None,
    ):
        self.api_key = api_key
        self.base_url = (base_url or settings.MAKE_API_BASE_URL).rstrip("/")
        self.lookup_timeout = lookup_timeout or settings.MAKE_LOOKUP_TIMEOUT_SECONDS
        self.action_timeout = action_timeout or settings.MAKE_ACTION_TIMEOUT_SECONDS

    @property
    def zone(self) -> str | None:
        host = urlparse(self.base_url).hostname or ""
        return host.split(".")[0] or None

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Token {self.api_key}",
            "Content-Type": "application/json",
        }

    def _check(self, resp: requests.Response) -> dict[str, Any]:
        if resp.status_code >= 400:
            raise MakeApiError(resp.status_code, f"Make.com request failed with status {resp.status_code}")
        if not resp.content:
            return {}
        payload = resp.json()
        if not isinstance(payload, dict):
            raise ValueError("Unexpected Make.com response body")
        return payload

    def _get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        resp = requests.get(
            f"{self.base_url}{path}",
            headers=self._headers(),
            params=params,
            timeout=self.lookup_timeout,
        )
        return self._check(resp)

    def _post(self, path: str) -> dict[str, Any]:
        resp = requests.post(
            f"{self.base_url}{path}",
            headers=self._headers(),
            timeout=self.action_timeout,
        )
        return self._check(resp)

    def get_current_user(self) -> dict[str, Any]:
        return self._get("/users/me")

    def list_organizations(self) -> list[dict[str, Any]]:
        organizations = self._get("/organizations").get("organizations") or []
        return [org for org in organizations if isinstance(org, dict)]

    def list_scenarios(self, org_id: str, folder_id: str | None = None) -> list[Scenario]:
        params: dict[str, Any] = {
            "organizationId": org_id,
            "limit": settings.MAKE_SCENARIO_PAGE_LIMIT,
        }
        if folder_id:
            params["folderId"] = folder_id
        scenarios = self._get("/scenarios", params=params).get("scenarios") or []
        return [
            Scenario(id=str(item["id"]), name=item.get("name"))
            for item in scenarios
            if isinstance(item, dict) and item.get("id") is not None
        ]

    def stop_scenario(self, scenario_id: str) -> dict[str, Any]:
        return self._post(f"/scenarios/{scenario_id}/stop")

    def start_scenario(self, scenario_id: str) -> dict[str, Any]:
        return self._post(f"/scenarios/{scenario_id}/start")

    def get_scenario_usage(self, scenario_id: str, from_date: date, to_date: date) -> Any:
        payload = self._get(
            f"/scenarios/{scenario_id}/usage",
            params={
                "from": from_date.isoformat(),
                "to": to_date.isoformat(),
                "interval": "daily",
            },
        )
        return payload.get("data") or []


def extract_user(payload: dict[str, Any]) -> dict[str, Any] | None:
    # /users/me answers with either "authUser" or "user" depending on API version.
    user = payload.get("authUser") or payload.get("user")
    return user if isinstance(user, dict) else None


def _org_from_profile(client: MakeClient) -> str | None:
    payload = client.get_current_user()
    user = extract_user(payload) or {}
    org_id = user.get("organizationId") or payload.get("organizationId")
    if not org_id and isinstance(user.get("organization"), dict):
        org_id = user["organization"].get("id")
    return org_id


def _org_from_listing(client: MakeClient) -> str | None:
    organizations = client.list_organizations()
    if not organizations:
        return None
    return organizations[0].get("id")


_ORG_LOOKUPS: tuple[tuple[str, Callable[[MakeClient], str | None]], ...] = (
    ("profile", _org_from_profile),
    ("organizations", _org_from_listing),
)


def resolve_organization_id(client: MakeClient, stored_org_id: str | None = None) -> OrgLookup:
    """Return the first organization id found: stored, then profile, then org listing."""
    if stored_org_id:
        return OrgLookup(org_id=str(stored_org_id), source="stored")
    for source, lookup in _ORG_LOOKUPS:
        try:
            org_id = lookup(client)
        except CALL_ERRORS as exc:
            logger.warning(
                "make.org_lookup_failed",
                extra={"source": source, "error": str(exc)},
            )
            continue
        if org_id:
            return OrgLookup(org_id=str(org_id), source=source)
    return OrgLookup()


def client_for_tenant(tenant: Tenant, *, required: bool = False) -> MakeClient | None:
    if not tenant.make_api_key_encrypted:
        if required:
            raise WorkflowCredentialsMissing()
        return None
    try:
        api_key = decrypt_secret(tenant.make_api_key_encrypted)
    except ValueError as exc:
        logger.error(
            "make.api_key_unreadable",
            extra={"tenant_id": tenant.id, "error": str(exc)},
        )
        if required:
            raise WorkflowPlatformError(
                "Stored Make.com API key could not be decrypted",
                status_code=500,
                code="workflow_api_key_unreadable",
            ) from exc
        return None
    return MakeClient(api_key)


def list_tenant_scenarios(tenant: Tenant, client: MakeClient | None = None) -> list[Scenario]:
    client = client or client_for_tenant(tenant)
    if client is None:
        return []
    lookup = resolve_organization_id(client, tenant.make_org_id)
    if not lookup.found:
        logger.info("make.org_unresolved", extra={"tenant_id": tenant.id})
        return []
    folder_id = tenant.make_folder_id or settings.MAKE_DEFAULT_FOLDER_ID
    try:
        return client.list_scenarios(lookup.org_id, folder_id=folder_id)
    except CALL_ERRORS as exc:
        logger.warning(
            "make.list_scenarios_failed",
            extra={"tenant_id": tenant.id, "org_id": lookup.org_id, "error": str(exc)},
        )
        return []


def _apply_to_all(db: Session, tenant_id: int, *, action: str, paused: bool) -> ScenarioActionResult:
    tenant = get_tenant_by_id(db, tenant_id)
    if tenant is None:
        return ScenarioActionResult()
    client = client_for_tenant(tenant)
    if client is None:
        return ScenarioActionResult()

    call = client.stop_scenario if action == "stop" else client.start_scenario
    succeeded = failed = 0
    for scenario in list_tenant_scenarios(tenant, client=client):
        try:
            call(scenario.id)
        except CALL_ERRORS as exc:
            failed += 1
            record_scenario_action(action, "failed")
            logger.warning(
                "make.scenario_action_failed",
                extra={
                    "tenant_id": tenant_id,
                    "action": action,
                    "scenario_id": scenario.id,
                    "scenario_name": scenario.name,
                    "error": str(exc),
                },
            )
            continue
        succeeded += 1
        record_scenario_action(action, "succeeded")

    logger.info(
        "make.scenarios_paused" if paused else "make.scenarios_resumed",
        extra={"tenant_id": tenant_id, "succeeded": succeeded, "failed": failed},
    )

    # The local flag follows observed external state only.
    if succeeded > 0:
        try:
            update_tenant_limits(db, tenant_id, scenarios_paused=paused)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning(
                "make.paused_flag_skipped",
                extra={"tenant_id": tenant_id, "error": str(exc).splitlines()[0]},
            )
    return ScenarioActionResult(succeeded=succeeded, failed=failed)


def pause_all_scenarios(db: Session, tenant_id: int) -> ScenarioActionResult:
    return _apply_to_all(db, tenant_id, action="stop", paused=True)


def resume_all_scenarios(db: Session, tenant_id: int) -> ScenarioActionResult:
    return _apply_to_all(db, tenant_id, action="start", paused=False)


def check_connection(tenant: Tenant) -> dict[str, Any]:
    client = client_for_tenant(tenant, required=True)
    try:
        payload = client.get_current_user()
    except MakeApiError as exc:
        raise platform_error(exc) from exc
    except (requests.RequestException, ValueError) as exc:
        raise WorkflowPlatformError(f"Connection failed: {exc}") from exc

    user = extract_user(payload)
    if not user or not user.get("id"):
        raise WorkflowPlatformError(
            "Unexpected Make.com response structure",
            code="workflow_invalid_response",
        )
    org_id = tenant.make_org_id or user.get("organizationId") or payload.get("organizationId")
    return {
        "status": "connected",
        "user": {
            "id": user.get("id"),
            "name": user.get("name") or "Unknown",
            "email": user.get("email") or "Unknown",
            "organization_id": str(org_id) if org_id else None,
            "timezone_id": user.get("timezoneId"),
        },
        "zone": client.zone,
    }


def platform_error(exc: MakeApiError) -> WorkflowPlatformError:
    if exc.status_code in (401, 403):
        return WorkflowPlatformError(
            "Invalid Make.com API key or unauthorized access",
            status_code=401,
            code="workflow_invalid_key",
        )
    return WorkflowPlatformError(exc.message)
