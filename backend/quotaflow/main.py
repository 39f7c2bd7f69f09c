# This file bootstraps the FastAPI app, wires up the logging, metrics and
# request-context middlewares, registers the domain error handlers and
# includes the feature routers under the versioned prefix.

from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import os
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from quotaflow.core.config import settings
from quotaflow.core.db import Base, engine
from quotaflow.core.errors import MeteringError
from quotaflow.core.logging import APILoggingMiddleware, configure_logging
from quotaflow.core.metrics import MetricsMiddleware
from quotaflow.core.middleware import RequestContextMiddleware

# Importing the models registers every table on Base.metadata.
import quotaflow.models  # noqa: F401

# Routers grouped by feature area
from quotaflow.api.billing import router as billing_router
from quotaflow.api.events import router as events_router
from quotaflow.api.integrations import router as integrations_router
from quotaflow.api.quota import router as quota_router
from quotaflow.api.tenants import router as tenants_router
from quotaflow.api.usage import router as usage_router

API_V1_PREFIX = "/api/v1"

configure_logging(settings.LOG_LEVEL)

# Tests and migration-managed deployments set SKIP_MIGRATIONS=1 and own the schema.
if os.getenv("SKIP_MIGRATIONS") != "1":
    Base.metadata.create_all(bind=engine)

app = FastAPI(title="quotaflow")


@app.exception_handler(MeteringError)
def handle_metering_error(_request: Request, exc: MeteringError):
    response = JSONResponse(status_code=exc.status_code, content=exc.to_payload())
    response.headers["X-Error-Code"] = exc.code
    return response


@app.exception_handler(RequestValidationError)
def handle_validation_error(_request: Request, exc: RequestValidationError):
    response = JSONResponse(
        status_code=400,
        content={"detail": jsonable_encoder(exc.errors()), "code": "validation_error"},
    )
    response.headers["X-Error-Code"] = "validation_error"
    return response


# Observability layers
app.add_middleware(APILoggingMiddleware)
app.add_middleware(MetricsMiddleware)

api_v1 = APIRouter(prefix=API_V1_PREFIX)

routers = [
    usage_router,
    events_router,
    tenants_router,
    quota_router,
    integrations_router,
    billing_router,
]

for r in routers:
    api_v1.include_router(r)

app.include_router(api_v1)

# Attach the request id early so every other layer can log it.
app.add_middleware(RequestContextMiddleware)


# /metrics endpoint (Prometheus scraping)
@app.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


# /ping endpoint and versioned health
@app.get("/ping")
@app.get(f"{API_V1_PREFIX}/health")
def ping():
    return {"message": "pong"}
