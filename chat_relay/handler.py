# chat_relay/handler.py

"""
Request handler for `POST /api/chat`.

This is the thin layer between the HTTP route and the routing core:

1. Parse the body as a JSON object
2. Dispatch on `action` (`check_password` or `chat`)
3. Gate chat requests behind the access password, before anything else
4. Validate the chat body (`ChatRequest`)
5. Resolve the model, build its credential pool, hand both to the upstream router
6. Map the `RouteResult` onto the relay's JSON response

Client and configuration problems are raised as `RelayError`s and rendered by
the exception handler in `main.py`; no upstream call is made for them.
"""

import json
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError
from starlette.requests import Request

from chat_relay.config import Settings
from chat_relay.exceptions import ClientError, ConfigError, PayloadTooLarge, UpstreamExhausted
from chat_relay.metrics import ROUTE_RESULTS
from chat_relay.pools import build_pool
from chat_relay.registry import resolve
from chat_relay.schemas import ChatRequest
from chat_relay.security import check_password, require_password
from chat_relay.upstream_router import RouteResult, UpstreamRouter

logger = logging.getLogger("chat_relay.handler")

ACTIONS = ("check_password", "chat")
MAX_SUMMARY_CHARS = 300


async def read_json_body(request: Request, max_bytes: Optional[int] = None) -> Dict[str, Any]:
    """
    Read and decode the request body.

    The size limit is enforced while streaming, so chunked bodies without a
    Content-Length are capped too.

    Raises:
        PayloadTooLarge(413): If more than `max_bytes` arrive.
        ClientError(400): If the body is not JSON or not a JSON object.
    """
    chunks = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if max_bytes is not None and received > max_bytes:
            raise PayloadTooLarge("Request body too large")
        chunks.append(chunk)
    raw = b"".join(chunks)
    try:
        body = json.loads(raw)
    except ValueError:
        raise ClientError("Request body is not valid JSON")
    if not isinstance(body, dict):
        raise ClientError("Request body must be a JSON object")
    return body


def _validation_message(exc: ValidationError) -> str:
    errors = exc.errors()
    for err in errors:
        if tuple(err.get("loc", ())) == ("messages",) and err.get("type") in ("missing", "too_short", "list_type"):
            return "messages must be a non-empty array"
    first = errors[0]
    where = ".".join(str(part) for part in first.get("loc", ())) or "body"
    return f"Invalid request: {where}: {first.get('msg')}"


def parse_chat_request(body: Dict[str, Any], settings: Settings) -> ChatRequest:
    try:
        return ChatRequest.model_validate(body, context={"max_input_chars": settings.max_input_chars})
    except ValidationError as exc:
        raise ClientError(_validation_message(exc))


def _meta(display_name: str, upstream_id: str, result: RouteResult) -> Dict[str, Any]:
    return {
        "model": display_name,
        "upstream_model": upstream_id,
        **result.diagnostics.as_dict(),
        "calls": result.calls,
    }


async def handle_request(
    body: Dict[str, Any],
    settings: Settings,
    router: UpstreamRouter,
) -> Dict[str, Any]:
    """
    Process one decoded `/api/chat` body.

    Args:
        body (Dict): Decoded JSON object from the client.
        settings (Settings): Runtime configuration.
        router (UpstreamRouter): Router bound to this request's HTTP client.

    Returns:
        Dict: The success payload (HTTP 200).

    Raises:
        RelayError: For every non-200 outcome.
    """
    action = body.get("action")
    if action not in ACTIONS:
        raise ClientError("Unknown action")

    if action == "check_password":
        check_password(body.get("password"), settings.access_password)
        return {"ok": True}

    require_password(body.get("password"), settings.access_password)

    chat_request = parse_chat_request(body, settings)
    display_name = chat_request.model or settings.default_chat_model
    entry = resolve(display_name)

    pool = build_pool(entry.routing_class, settings.pool_secrets())
    if not pool:
        raise ConfigError("No upstream credentials configured")

    temperature = chat_request.temperature
    if temperature is None:
        temperature = settings.default_temperature

    result = await router.route(entry, chat_request.upstream_messages(), temperature, pool)
    meta = _meta(display_name, entry.upstream_id, result)

    if result.succeeded:
        ROUTE_RESULTS.labels(model=display_name, outcome="success").inc()
        return {
            "ok": True,
            "model": display_name,
            "choices": [{"message": {"role": "assistant", "content": result.text}}],
            "meta": meta,
        }

    outcome = "rate_limited" if result.status_hint == 429 else "exhausted"
    ROUTE_RESULTS.labels(model=display_name, outcome=outcome).inc()
    logger.warning(
        "all upstream routes failed",
        extra={"model": display_name, "status_hint": result.status_hint, "calls": result.calls},
    )

    lead = "Upstream rate limited" if result.status_hint == 429 else "All upstream routes failed"
    summary = f"{lead}: {result.failure_detail}"[:MAX_SUMMARY_CHARS]
    raise UpstreamExhausted(summary, result.status_hint, result.failure_detail, result.raw_body, meta)
