# Structured JSON logging. Every request gets one access record on the
# "api_logger" logger with its request id, tenant reference and latency;
# module loggers under "quotaflow" share the same formatter.

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from time import monotonic
from typing import Any

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware


ACCESS_LOGGER_NAME = "api_logger"

# Attributes every LogRecord carries; anything else came in through `extra`.
_RECORD_ATTRS = set(vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))) | {"message", "asctime"}

# Access-log keys kept in the output even when empty.
_ACCESS_FIELDS = {
    "request_id",
    "tenant_id",
    "route",
    "method",
    "status_code",
    "duration_ms",
    "error_code",
}

access_logger = logging.getLogger(ACCESS_LOGGER_NAME)


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        extras = {key: value for key, value in vars(record).items() if key not in _RECORD_ATTRS}
        payload.update({key: value for key, value in extras.items() if value is not None or key in _ACCESS_FIELDS})
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=True, default=str)


def _attach_json_handler(logger: logging.Logger, level: str) -> None:
    logger.setLevel(level)
    if any(isinstance(handler.formatter, JsonLogFormatter) for handler in logger.handlers):
        return
    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())
    logger.addHandler(handler)


def configure_logging(level: str | None = None) -> None:
    """Route the package and access loggers through the JSON formatter.

    Package loggers keep propagating so pytest's caplog and any host
    logging config still see them; the access logger does not, so request
    lines are not printed twice.
    """
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    _attach_json_handler(logging.getLogger("quotaflow"), level)
    _attach_json_handler(access_logger, level)
    access_logger.propagate = False


def _request_fields(request: Request) -> dict[str, Any]:
    # Route and path params are only in scope once routing has run.
    route = request.scope.get("route")
    path_params = request.scope.get("path_params") or {}
    return {
        "request_id": getattr(request.state, "request_id", None),
        "tenant_id": path_params.get("tenant_ref"),
        "route": getattr(route, "path", None) or request.url.path,
        "path": request.url.path,
        "method": request.method,
    }


class APILoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = monotonic()
        try:
            response = await call_next(request)
        except Exception:
            access_logger.exception(
                "request.failed",
                extra={
                    **_request_fields(request),
                    "status_code": 500,
                    "duration_ms": round((monotonic() - start) * 1000.0, 2),
                    "error_code": "unhandled_exception",
                },
            )
            raise

        access_logger.info(
            "request.completed",
            extra={
                **_request_fields(request),
                "status_code": response.status_code,
                "duration_ms": round((monotonic() - start) * 1000.0, 2),
                "error_code": response.headers.get("X-Error-Code"),
            },
        )
        return response
