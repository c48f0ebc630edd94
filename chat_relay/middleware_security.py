# chat_relay/middleware_security.py

"""
Adds defensive HTTP headers to every relay response.

The relay only ever returns JSON, so responses can be locked down hard:
- `Content-Security-Policy: default-src 'none'`
- `X-Content-Type-Options: nosniff`
- `Referrer-Policy: no-referrer`

FastAPI's docs pages (`/docs`, `/redoc`, `/openapi.json`) are skipped because
they load external assets.
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

DOCS_PREFIXES = ("/docs", "/redoc", "/openapi.json")

SECURITY_HEADERS = {
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "no-referrer",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response: Response = await call_next(request)
        if request.url.path.startswith(DOCS_PREFIXES):
            return response

        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response
