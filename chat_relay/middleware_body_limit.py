# chat_relay/middleware_body_limit.py

"""
Rejects oversized request bodies before they are parsed.

Chat histories grow with every turn; this caps how much a single request may
send (MAX_BODY_BYTES) so a runaway client cannot make the relay buffer and
forward arbitrarily large payloads.
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse


class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    """
    Returns HTTP 413 when Content-Length exceeds `max_content_length`.

    A malformed Content-Length is answered with 400.

    Example usage:
        app.add_middleware(BodySizeLimitMiddleware, max_content_length=1_048_576)
    """
    def __init__(self, app, max_content_length: int):
        super().__init__(app)
        self.max_content_length = max_content_length

    async def dispatch(self, request: Request, call_next):
        content_length = request.headers.get("content-length")
        if content_length is None:
            return await call_next(request)

        try:
            size = int(content_length)
        except ValueError:
            return JSONResponse(status_code=400, content={"ok": False, "error": "Invalid Content-Length header"})

        if size > self.max_content_length:
            return JSONResponse(status_code=413, content={"ok": False, "error": "Request body too large"})

        return await call_next(request)
