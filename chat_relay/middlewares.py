# chat_relay/middlewares.py

"""
Access-log middleware for the chat relay.

Logs one JSON line per request under the "chat_relay.access" logger with:
- HTTP method and path
- Status code
- Response time (ms)
- Request id (from `asgi-correlation-id`, or a fresh UUID)

Request bodies are never logged: they carry the access password and the
user's conversation.
"""

import time
import uuid
import logging

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from asgi_correlation_id import correlation_id

logger = logging.getLogger("chat_relay.access")


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs every request/response pair with its duration and request id.
    """

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        request_id = correlation_id.get() or str(uuid.uuid4())
        fields = {
            "method": request.method,
            "path": request.url.path,
            "request_id": request_id,
        }

        try:
            response: Response = await call_next(request)
        except Exception:
            fields.update(status=500, duration_ms=round((time.perf_counter() - start) * 1000, 2))
            logger.exception("unhandled exception", extra=fields)
            raise

        fields.update(status=response.status_code, duration_ms=round((time.perf_counter() - start) * 1000, 2))
        logger.info("request completed", extra=fields)
        return response
