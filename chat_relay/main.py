# chat_relay/main.py

"""
Main entry point for the chat relay FastAPI service.

This file defines:
- The single business endpoint, `/api/chat` (POST, plus an OPTIONS no-op)
- The model list for the chat page (`/api/models`)
- Health probes and Prometheus metrics
- The middleware stack: correlation ids, access logs, security headers,
  body size limit, CORS (preflights answered 204) and inbound rate limiting
- The global `RelayError` → JSON envelope handler

🧠 The routing itself lives in `handler.py` (validation and mapping) and
`upstream_router.py` (failover across dialects, pools and credentials).

Run with:
    uvicorn chat_relay.main:app --host 0.0.0.0 --port 8000
"""

import os
import time
import logging

from fastapi import Depends, FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import httpx

from chat_relay.config import Settings, settings
from chat_relay.dependencies import get_http_client, get_settings, get_upstream_router
from chat_relay.exceptions import MethodNotAllowed, RelayError
from chat_relay.handler import handle_request, read_json_body
from chat_relay.logging_config import configure_logging
from chat_relay.metrics import REQUEST_COUNT, REQUEST_LATENCY
from chat_relay.middleware_body_limit import BodySizeLimitMiddleware
from chat_relay.middleware_preflight import PreflightMiddleware
from chat_relay.middleware_security import SecurityHeadersMiddleware
from chat_relay.middlewares import LoggingMiddleware
from chat_relay.pools import ROUTING_CHAINS, build_pool, configured_pools
from chat_relay.registry import MODEL_REGISTRY
from chat_relay.upstream_router import UpstreamRouter

# ─── Tracing & Request Correlation ─────────────────────────────────────────────
from asgi_correlation_id import CorrelationIdMiddleware

# ─── Rate Limiting ─────────────────────────────────────────────────────────────
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

# ─── Metrics / Prometheus ──────────────────────────────────────────────────────
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest, multiprocess

logger = logging.getLogger("chat_relay")

# ───────────────────────────────────────────────────────────────────────────────
# Application Startup
# ───────────────────────────────────────────────────────────────────────────────
configure_logging(settings.log_level)

app = FastAPI(
    title="Chat Relay",
    version="0.1.0",
    description="Routes chat requests to upstream LLM relays across credential pools and API dialects.",
)


@app.on_event("startup")
async def log_configuration():
    """
    Log which credential pools are configured (names and key counts only).
    A relay with no pools at all still starts, but every chat answers 500.
    """
    pools = configured_pools(settings.pool_secrets())
    if not pools:
        logger.warning("no upstream credential pools configured")
    logger.info(
        "relay starting",
        extra={"upstream": settings.base_url, "pools": pools, "models": list(MODEL_REGISTRY)},
    )

# ───────────────────────────────────────────────────────────────────────────────
# Global Exception Handling
# ───────────────────────────────────────────────────────────────────────────────
@app.exception_handler(RelayError)
async def handle_relay_error(request: Request, exc: RelayError):
    """
    Render every known relay failure in the `{ok: false, error, ...}` envelope.
    """
    return JSONResponse(status_code=exc.status_code, content=exc.to_content())


@app.exception_handler(StarletteHTTPException)
async def handle_http_error(request: Request, exc: StarletteHTTPException):
    """
    Routing errors raised by Starlette itself (unknown path, unlisted verb)
    use the same envelope as relay errors.
    """
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def handle_rate_limited(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={"ok": False, "error": f"Rate limit exceeded: {exc.detail}"},
    )

# ───────────────────────────────────────────────────────────────────────────────
# Rate Limiting
# ───────────────────────────────────────────────────────────────────────────────
limiter = Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, handle_rate_limited)

# ───────────────────────────────────────────────────────────────────────────────
# Middleware Stack (last added runs first)
# ───────────────────────────────────────────────────────────────────────────────
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["POST", "OPTIONS"],
    allow_headers=["Content-Type", "X-Request-ID"],
    max_age=3600,
)
app.add_middleware(PreflightMiddleware)
app.add_middleware(BodySizeLimitMiddleware, max_content_length=settings.max_body_bytes)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)

# ───────────────────────────────────────────────────────────────────────────────
# Prometheus Middleware
# ───────────────────────────────────────────────────────────────────────────────
@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    elapsed = time.time() - start

    REQUEST_LATENCY.labels(method=request.method, endpoint=request.url.path).observe(elapsed)
    REQUEST_COUNT.labels(
        method=request.method,
        endpoint=request.url.path,
        http_status=str(response.status_code),
    ).inc()

    return response


@app.get("/metrics", include_in_schema=False)
async def metrics():
    """
    Prometheus endpoint for scraping runtime stats.
    Supports both single- and multi-process environments.
    """
    mp_dir = os.getenv("PROMETHEUS_MULTIPROC_DIR")
    if mp_dir and os.path.isdir(mp_dir):
        registry = CollectorRegistry()
        multiprocess.MultiProcessCollector(registry)
        data = generate_latest(registry)
    else:
        data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)

# ───────────────────────────────────────────────────────────────────────────────
# Health Probes
# ───────────────────────────────────────────────────────────────────────────────
@app.get("/healthz", tags=["health"])
async def healthz():
    """
    Liveness probe, no external dependencies.
    """
    return {"status": "ok"}


@app.get("/readyz", tags=["health"])
async def readyz(
    cfg: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    """
    Readiness probe: every routing class can build a pool, and the upstream
    relay answers its model listing with the first available credential.
    """
    errors = {}
    pool_secrets = cfg.pool_secrets()

    unserved = [rc.value for rc in ROUTING_CHAINS if not build_pool(rc, pool_secrets)]
    if unserved:
        errors["pools"] = f"no credentials for routing classes: {', '.join(unserved)}"

    probe = next((pool[0] for pool in (build_pool(rc, pool_secrets) for rc in ROUTING_CHAINS) if pool), None)
    if probe is not None:
        try:
            resp = await client.get(
                f"{cfg.base_url}/v1/models",
                headers={"Authorization": f"Bearer {probe.credential}"},
                timeout=2.0,
            )
            if resp.status_code >= 500:
                errors["upstream"] = f"HTTP {resp.status_code}"
        except httpx.HTTPError as e:
            errors["upstream"] = f"{type(e).__name__}: {e}"

    if errors:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"ready": False, "errors": errors},
        )

    return {"ready": True}

# ───────────────────────────────────────────────────────────────────────────────
# /api/models
# ───────────────────────────────────────────────────────────────────────────────
@app.get("/api/models")
async def list_models(cfg: Settings = Depends(get_settings)):
    """
    Display names the chat page can offer, with the default first.
    """
    names = [cfg.default_chat_model] + [name for name in MODEL_REGISTRY if name != cfg.default_chat_model]
    return {"ok": True, "default": cfg.default_chat_model, "models": names}

# ───────────────────────────────────────────────────────────────────────────────
# /api/chat
# ───────────────────────────────────────────────────────────────────────────────
@app.options("/api/chat", include_in_schema=False)
async def chat_preflight():
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.api_route("/api/chat", methods=["GET", "PUT", "PATCH", "DELETE"], include_in_schema=False)
async def chat_wrong_method():
    raise MethodNotAllowed("Only POST requests are allowed")


@app.post("/api/chat")
@limiter.limit(settings.rate_limit_chat)
async def chat(
    request: Request,
    cfg: Settings = Depends(get_settings),
    router: UpstreamRouter = Depends(get_upstream_router),
):
    """
    Chat and password-check interface. See `handler.handle_request`.
    """
    body = await read_json_body(request, max_bytes=cfg.max_body_bytes)
    return await handle_request(body, cfg, router)
