import logging
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-Id"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Reuses the caller's X-Request-Id (or mints one) and echoes it back."""

    async def dispatch(self, request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
        request.state.request_id = request_id
        logger.debug("request.start", extra={"request_id": request_id, "path": request.url.path})
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
