# chat_relay/dependencies.py

"""
Dependency injection helpers for the chat relay's FastAPI endpoints.

Used with FastAPI's `Depends()` to hand each request:
- the runtime `Settings`
- a fresh `httpx.AsyncClient`, closed when the request ends
- an `UpstreamRouter` bound to that client and configured from settings

Tests swap any of these through `app.dependency_overrides`.
"""

from typing import AsyncIterator

import httpx
from fastapi import Depends

from chat_relay.config import Settings, settings as app_settings
from chat_relay.upstream_router import UpstreamRouter


def get_settings() -> Settings:
    return app_settings


async def get_http_client(
    settings: Settings = Depends(get_settings),
) -> AsyncIterator[httpx.AsyncClient]:
    """
    Per-request HTTP client; its timeout bounds every single upstream call.
    """
    async with httpx.AsyncClient(timeout=httpx.Timeout(settings.upstream_timeout_seconds)) as client:
        yield client


async def get_upstream_router(
    settings: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> UpstreamRouter:
    """
    Build the router for one request from the current settings.

    Args:
        settings (Settings): Retry ceiling, backoff and base URL.
        client (httpx.AsyncClient): Transport for this request.

    Returns:
        UpstreamRouter: A router with no state shared across requests.
    """
    return UpstreamRouter(
        client,
        base_url=settings.base_url,
        max_attempts=settings.max_attempts_per_credential,
        backoff_base=settings.backoff_base_seconds,
        backoff_max=settings.backoff_max_seconds,
        backoff_budget=settings.backoff_budget_seconds,
    )
