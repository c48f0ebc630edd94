import asyncio
import json
import logging

import httpx

from chat_relay.dialects.adapter import Dialect
from chat_relay.pools import PoolCredential
from chat_relay.registry import resolve
from chat_relay.upstream_router import (
    AttemptOutcome,
    OutcomeKind,
    RouteState,
    UpstreamRouter,
    classify,
)

MESSAGES = [{"role": "user", "content": "hi"}]
BASE_URL = "http://upstream.test"


def _pool(*entries):
    """_pool(("reverse", "key-a"), ("official", "key-b")) with per-pool indexes."""
    seen = {}
    creds = []
    for pool_name, key in entries:
        creds.append(PoolCredential(pool_name=pool_name, credential=key, index=seen.get(pool_name, 0)))
        seen[pool_name] = seen.get(pool_name, 0) + 1
    return creds


def _chat_body(text):
    return {"choices": [{"message": {"role": "assistant", "content": text}}]}


def _error_body(message):
    return {"error": {"message": message, "type": "upstream_error"}}


class Upstream:
    """Records every call and answers from a scripted handler."""

    def __init__(self, respond):
        self.respond = respond
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        call = {
            "key": request.headers["Authorization"].removeprefix("Bearer "),
            "path": request.url.path,
            "payload": json.loads(request.content),
        }
        self.calls.append(call)
        return self.respond(call, len(self.calls))


def _route(respond, model="GPT-4o", pool=None, **router_kwargs):
    upstream = Upstream(respond)
    sleeps = []

    async def fake_sleep(delay):
        sleeps.append(delay)

    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(upstream)) as client:
            router = UpstreamRouter(client, BASE_URL, sleep=fake_sleep, **router_kwargs)
            return await router.route(resolve(model), MESSAGES, 0.7, pool or _pool(("reverse", "key-a")))

    result = asyncio.run(go())
    return result, upstream.calls, sleeps


def test_rate_limited_twice_then_success_on_same_credential():
    def respond(call, n):
        if n <= 2:
            return httpx.Response(429, json=_error_body("rate limited"))
        return httpx.Response(200, json=_chat_body("third time lucky"))

    result, calls, sleeps = _route(respond, pool=_pool(("reverse", "key-a"), ("reverse", "key-b")))

    assert result.succeeded
    assert result.text == "third time lucky"
    assert result.diagnostics.attempt == 3
    assert result.diagnostics.pool_name == "reverse"
    assert result.diagnostics.credential_index == 0
    assert [c["key"] for c in calls] == ["key-a"] * 3
    assert sleeps == [1.0, 2.0]


def test_auth_rejection_advances_without_backoff():
    def respond(call, n):
        if call["key"] == "key-a":
            return httpx.Response(401, json=_error_body("invalid api key"))
        return httpx.Response(200, json={"output_text": "from key b"})

    result, calls, sleeps = _route(
        respond, model="GPT-5.2", pool=_pool(("reverse", "key-a"), ("official", "key-b"))
    )

    assert result.succeeded
    assert result.text == "from key b"
    assert result.diagnostics.pool_name == "official"
    assert result.diagnostics.credential_index == 0
    assert result.diagnostics.attempt == 1
    assert sleeps == []
    # primary + dialect fallback on key-a, then primary on key-b
    assert [(c["key"], c["path"]) for c in calls] == [
        ("key-a", "/v1/responses"),
        ("key-a", "/v1/chat/completions"),
        ("key-b", "/v1/responses"),
    ]


def test_repeated_server_errors_exhaust_every_credential():
    def respond(call, n):
        return httpx.Response(500, json=_error_body(f"internal error #{n}"))

    result, calls, sleeps = _route(respond, pool=_pool(("reverse", "key-a"), ("reverse", "key-b")))

    assert not result.succeeded
    assert result.status_hint == 503
    assert len(calls) == 6
    assert result.failure_detail == "internal error #6"
    assert result.raw_body == _error_body("internal error #6")
    assert result.diagnostics.credential_index == 1
    assert result.diagnostics.attempt == 3
    assert sleeps == [1.0, 2.0, 1.0, 2.0]


def test_chat_only_model_never_sends_responses_payload():
    def respond(call, n):
        return httpx.Response(503, json=_error_body("unavailable"))

    result, calls, _ = _route(respond, model="GPT-4o", max_attempts=2)

    assert not result.succeeded
    assert calls
    for call in calls:
        assert call["path"] == "/v1/chat/completions"
        assert "input" not in call["payload"]
        assert call["payload"]["messages"] == MESSAGES


def test_dialect_fallback_shares_the_attempt():
    def respond(call, n):
        if call["path"] == "/v1/responses":
            return httpx.Response(404, json=_error_body("Invalid URL (POST /v1/responses)"))
        return httpx.Response(200, json=_chat_body("via chat"))

    result, calls, sleeps = _route(respond, model="GPT-5.2")

    assert result.succeeded
    assert result.diagnostics.dialect is Dialect.CHAT
    assert result.diagnostics.attempt == 1
    assert result.calls == 2
    assert sleeps == []
    assert calls[0]["payload"]["input"] == MESSAGES
    assert calls[1]["payload"]["stream"] is False


def test_fallback_dialect_rate_limit_backs_off_before_next_attempt():
    def respond(call, n):
        if n <= 2:
            return httpx.Response(429, json=_error_body("slow down"))
        return httpx.Response(200, json={"output_text": "ok"})

    result, calls, sleeps = _route(respond, model="GPT-5.2")

    assert result.succeeded
    assert result.diagnostics.attempt == 2
    assert result.diagnostics.dialect is Dialect.RESPONSES
    assert [c["path"] for c in calls] == ["/v1/responses", "/v1/chat/completions", "/v1/responses"]
    assert sleeps == [1.0]


def test_responses_request_answered_in_chat_shape():
    def respond(call, n):
        return httpx.Response(200, json=_chat_body("chat shaped answer"))

    result, calls, _ = _route(respond, model="GPT-5.2")

    assert result.succeeded
    assert result.text == "chat shaped answer"
    assert result.diagnostics.dialect is Dialect.RESPONSES
    assert len(calls) == 1


def test_empty_success_moves_on_without_backoff_or_fallback():
    def respond(call, n):
        if call["key"] == "key-a":
            return httpx.Response(200, json=_chat_body(""))
        return httpx.Response(200, json=_chat_body("second key"))

    result, calls, sleeps = _route(
        respond, model="GPT-5.2", pool=_pool(("reverse", "key-a"), ("reverse", "key-b"))
    )

    assert result.succeeded
    assert result.diagnostics.credential_index == 1
    assert [c["key"] for c in calls] == ["key-a", "key-b"]
    assert sleeps == []


def test_empty_success_everywhere_is_a_failure():
    def respond(call, n):
        return httpx.Response(200, json=_chat_body("   "))

    result, calls, sleeps = _route(respond)

    assert not result.succeeded
    assert result.text == ""
    assert result.status_hint == 503
    assert "no text" in result.failure_detail
    assert len(calls) == 1
    assert sleeps == []


def test_overloaded_message_in_empty_success_backs_off_and_retries():
    def respond(call, n):
        if n == 1:
            return httpx.Response(200, json=_error_body("负载已饱和"))
        return httpx.Response(200, json=_chat_body("after the rush"))

    result, calls, sleeps = _route(respond)

    assert result.succeeded
    assert result.text == "after the rush"
    assert result.diagnostics.attempt == 2
    assert result.diagnostics.credential_index == 0
    assert [c["key"] for c in calls] == ["key-a", "key-a"]
    assert sleeps == [1.0]


def test_rate_limit_on_every_credential_propagates_429():
    def respond(call, n):
        return httpx.Response(429, json=_error_body("quota exceeded"))

    result, calls, sleeps = _route(
        respond, pool=_pool(("reverse", "key-a"), ("official", "key-b")), max_attempts=2
    )

    assert not result.succeeded
    assert result.status_hint == 429
    assert result.failure_detail == "quota exceeded"
    assert [c["key"] for c in calls] == ["key-a", "key-a", "key-b", "key-b"]
    assert sleeps == [1.0, 1.0]


def test_transport_error_is_retried():
    def respond(call, n):
        if n == 1:
            raise httpx.ConnectError("connection refused")
        return httpx.Response(200, json=_chat_body("recovered"))

    result, calls, sleeps = _route(respond)

    assert result.succeeded
    assert result.diagnostics.attempt == 2
    assert sleeps == [1.0]


def test_model_not_found_400_advances_immediately():
    def respond(call, n):
        if call["key"] == "key-a":
            return httpx.Response(400, json=_error_body("The model `gpt-4o` does not exist"))
        return httpx.Response(200, json=_chat_body("ok"))

    result, calls, sleeps = _route(respond, pool=_pool(("gemini", "key-a"), ("official", "key-b")))

    assert result.succeeded
    assert result.diagnostics.pool_name == "official"
    assert len(calls) == 2
    assert sleeps == []


def test_non_json_error_body_is_kept_raw():
    def respond(call, n):
        return httpx.Response(502, text="<html>Bad Gateway</html>")

    result, _, _ = _route(respond, max_attempts=1)

    assert not result.succeeded
    assert result.raw_body == {"raw": "<html>Bad Gateway</html>"}
    assert "Bad Gateway" in result.failure_detail


def test_backoff_budget_caps_total_sleep():
    def respond(call, n):
        return httpx.Response(500, json=_error_body("down"))

    result, calls, sleeps = _route(
        respond, pool=_pool(("reverse", "key-a"), ("reverse", "key-b")), backoff_budget=1.5
    )

    assert not result.succeeded
    assert sleeps == [1.0]
    assert [c["key"] for c in calls] == ["key-a", "key-a", "key-b"]


def test_empty_pool_fails_without_calls():
    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200))) as client:
            return await UpstreamRouter(client, BASE_URL).route(resolve("GPT-4o"), MESSAGES, 0.7, [])

    result = asyncio.run(go())
    assert not result.succeeded
    assert result.calls == 0
    assert result.status_hint == 503


def test_echo_round_trip_for_both_dialects():
    def echo(call, n):
        payload = call["payload"]
        if call["path"] == "/v1/responses":
            text = payload["input"][-1]["content"]
            return httpx.Response(200, json={"output": [{"content": [{"type": "output_text", "text": text}]}]})
        return httpx.Response(200, json=_chat_body(payload["messages"][-1]["content"]))

    for model, dialect in (("GPT-5.2", Dialect.RESPONSES), ("GPT-4o", Dialect.CHAT)):
        result, _, _ = _route(echo, model=model)
        assert result.succeeded
        assert result.text == "hi"
        assert result.diagnostics.dialect is dialect


def test_credentials_never_logged(caplog):
    caplog.set_level(logging.INFO, logger="chat_relay.upstream_router")

    def respond(call, n):
        return httpx.Response(401, json=_error_body("bad key"))

    _route(respond, pool=_pool(("reverse", "sk-super-secret")))

    assert caplog.records
    for record in caplog.records:
        assert "sk-super-secret" not in str(record.__dict__)


def test_classify():
    assert classify(AttemptOutcome(Dialect.CHAT, 200, "text")) is OutcomeKind.SUCCESS
    assert classify(AttemptOutcome(Dialect.CHAT, 200, "")) is OutcomeKind.CONTENT_EMPTY
    assert classify(AttemptOutcome(Dialect.CHAT, 429)) is OutcomeKind.RATE_LIMITED
    assert classify(AttemptOutcome(Dialect.CHAT, 403)) is OutcomeKind.AUTH_REJECTED
    assert classify(AttemptOutcome(Dialect.CHAT, 0, error_detail="ConnectError")) is OutcomeKind.TRANSIENT
    assert classify(AttemptOutcome(Dialect.CHAT, 529)) is OutcomeKind.TRANSIENT
    assert classify(
        AttemptOutcome(Dialect.CHAT, 400, error_detail="model_not_found: no such model")
    ) is OutcomeKind.AUTH_REJECTED
    assert classify(
        AttemptOutcome(Dialect.CHAT, 400, error_detail="The engine is currently overloaded")
    ) is OutcomeKind.TRANSIENT
    assert classify(
        AttemptOutcome(Dialect.CHAT, 400, error_detail="max_tokens is too large")
    ) is OutcomeKind.UNCLASSIFIED


def test_state_machine_terminal_states():
    terminal = {RouteState.SUCCESS, RouteState.EXHAUSTED_FAILURE}
    router = UpstreamRouter(None, BASE_URL)
    assert set(router._transitions) == set(RouteState) - terminal
