# chat_relay/middleware_preflight.py

"""
Answers accepted CORS preflights with `204 No Content`.

Starlette's `CORSMiddleware` replies to a browser preflight itself, as
`200 OK` with a plain-text `OK` body, so the `OPTIONS /api/chat` route never
sees it. This middleware wraps CORS and rewrites that reply into an empty 204,
keeping every `Access-Control-*` header. Rejected preflights (400) pass through.

Example usage (added after CORSMiddleware so it runs outside it):
    app.add_middleware(CORSMiddleware, ...)
    app.add_middleware(PreflightMiddleware)
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

BODY_HEADERS = ("content-length", "content-type")


def is_preflight(request: Request) -> bool:
    return (
        request.method == "OPTIONS"
        and "origin" in request.headers
        and "access-control-request-method" in request.headers
    )


class PreflightMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        if not is_preflight(request) or response.status_code != 200:
            return response

        async for _ in response.body_iterator:
            pass
        headers = {k: v for k, v in response.headers.items() if k.lower() not in BODY_HEADERS}
        return Response(status_code=204, headers=headers)
