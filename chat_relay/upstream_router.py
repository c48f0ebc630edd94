# chat_relay/upstream_router.py

"""
The upstream router: the relay's failover engine.

Given a registry entry, the chat history and an ordered credential pool, it
keeps calling upstream until one call yields usable text or every option is
spent. It is written as an explicit state machine so that every way out of
the loop is visible in one place:

    TRY_PRIMARY_DIALECT ──non-2xx / network error, fallback exists──▶ TRY_FALLBACK_DIALECT
            │                                                              │
            └──────────────────────────┬───────────────────────────────────┘
                                       ▼ classify the last call
        SUCCESS ◀── 2xx with text
        BACKOFF_WAIT ◀── 429 / 5xx / overloaded / network, attempts + budget left
        NEXT_CREDENTIAL ◀── 401/403/404, model-not-found 400, empty 2xx, anything else,
                            or retry ceiling reached
    BACKOFF_WAIT ──sleep base·2^attempt──▶ TRY_PRIMARY_DIALECT (attempt + 1, same credential)
    NEXT_CREDENTIAL ──more credentials──▶ TRY_PRIMARY_DIALECT (attempt 1)
                    └─none left──▶ EXHAUSTED_FAILURE

🧠 Notes:
- The dialect fallback call shares the attempt number of the call it backs up;
  the fallback's result is the one that gets classified.
- Only one call is in flight per request. Suspension happens only while awaiting
  the HTTP call and during backoff sleeps.
- Credentials are never logged; the pool name and index identify them.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import httpx

from chat_relay.dialects.adapter import Dialect, build_payload, endpoint_path, extract_text
from chat_relay.metrics import UPSTREAM_CALLS
from chat_relay.pools import PoolCredential
from chat_relay.registry import ModelEntry

logger = logging.getLogger("chat_relay.upstream_router")

MAX_DETAIL_CHARS = 2000

# 400 bodies that mean "this credential's channel cannot serve this model"
MODEL_UNAVAILABLE_PATTERN = re.compile(
    r"model[\s_-]*not[\s_-]*found"
    r"|does not exist"
    r"|not supported"
    r"|unsupported[\s_-]*model"
    r"|invalid[\s_-]*model"
    r"|no available channels?"
    r"|无可用渠道"
    r"|模型不存在",
    re.IGNORECASE,
)

OVERLOADED_PATTERN = re.compile(
    r"overloaded"
    r"|server is busy"
    r"|temporarily unavailable"
    r"|try again later"
    r"|upstream (error|timeout)"
    r"|负载已饱和",
    re.IGNORECASE,
)


class RouteState(str, Enum):
    TRY_PRIMARY_DIALECT = "try_primary_dialect"
    TRY_FALLBACK_DIALECT = "try_fallback_dialect"
    BACKOFF_WAIT = "backoff_wait"
    NEXT_CREDENTIAL = "next_credential"
    SUCCESS = "success"
    EXHAUSTED_FAILURE = "exhausted_failure"


TERMINAL_STATES = frozenset({RouteState.SUCCESS, RouteState.EXHAUSTED_FAILURE})


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    RATE_LIMITED = "rate_limited"
    AUTH_REJECTED = "auth_rejected"
    TRANSIENT = "transient"
    CONTENT_EMPTY = "content_empty"
    UNCLASSIFIED = "unclassified"


RETRYABLE_KINDS = frozenset({OutcomeKind.RATE_LIMITED, OutcomeKind.TRANSIENT})


@dataclass(frozen=True)
class AttemptOutcome:
    """
    Result of a single upstream HTTP call.

    `http_status` is 0 when the call failed at the transport level.
    """
    dialect: Dialect
    http_status: int
    extracted_text: str = ""
    raw_body: Any = None
    error_detail: str = ""

    @property
    def status_ok(self) -> bool:
        return 200 <= self.http_status < 300

    @property
    def succeeded(self) -> bool:
        return self.status_ok and bool(self.extracted_text.strip())


@dataclass(frozen=True)
class RouteDiagnostics:
    dialect: Optional[Dialect] = None
    pool_name: Optional[str] = None
    credential_index: Optional[int] = None
    attempt: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "dialect": self.dialect.value if self.dialect else None,
            "pool": self.pool_name,
            "credential_index": self.credential_index,
            "attempt": self.attempt,
        }


@dataclass(frozen=True)
class RouteResult:
    """
    The single terminal answer for one client request.

    On success `text` is non-empty and `diagnostics` names the call that produced it.
    On failure `failure_detail`, `raw_body` and `diagnostics` describe the last call,
    and `status_hint` is 429 (last failure was a rate limit) or 503.
    """
    succeeded: bool
    diagnostics: RouteDiagnostics
    text: str = ""
    failure_detail: str = ""
    raw_body: Any = None
    status_hint: int = 200
    calls: int = 0


# ─── Response Helpers ─────────────────────────────────────────────────────────
def read_body(response: httpx.Response) -> Any:
    """Decode a response as JSON, wrapping non-JSON bodies as {"raw": text}."""
    try:
        return response.json()
    except ValueError:
        return {"raw": response.text}


def error_detail_from(body: Any, status: int) -> str:
    """Pick the most useful human-readable error out of an upstream body."""
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str) and error["message"]:
            return error["message"][:MAX_DETAIL_CHARS]
        if isinstance(error, str) and error:
            return error[:MAX_DETAIL_CHARS]
        message = body.get("message")
        if isinstance(message, str) and message:
            return message[:MAX_DETAIL_CHARS]
    if body is None:
        return f"HTTP {status}"
    return json.dumps(body, ensure_ascii=False, default=str)[:MAX_DETAIL_CHARS]


def classify(outcome: AttemptOutcome) -> OutcomeKind:
    """Map one call's outcome onto the router's retry policy."""
    if outcome.succeeded:
        return OutcomeKind.SUCCESS

    status = outcome.http_status
    detail = outcome.error_detail

    if status == 429:
        return OutcomeKind.RATE_LIMITED
    if status in (401, 403, 404):
        return OutcomeKind.AUTH_REJECTED
    if status == 400 and MODEL_UNAVAILABLE_PATTERN.search(detail):
        return OutcomeKind.AUTH_REJECTED
    if status == 0 or status >= 500 or OVERLOADED_PATTERN.search(detail):
        return OutcomeKind.TRANSIENT
    if outcome.status_ok:
        return OutcomeKind.CONTENT_EMPTY
    return OutcomeKind.UNCLASSIFIED


# ─── Per-request State ────────────────────────────────────────────────────────
@dataclass
class _RouteRun:
    entry: ModelEntry
    messages: List[Dict[str, Any]]
    temperature: float
    pool: Sequence[PoolCredential]
    position: int = 0
    attempt: int = 1
    calls: int = 0
    backoff_spent: float = 0.0
    last_outcome: Optional[AttemptOutcome] = None
    last_kind: Optional[OutcomeKind] = None
    last_credential: Optional[PoolCredential] = None
    last_attempt: int = 0

    @property
    def credential(self) -> PoolCredential:
        return self.pool[self.position]

    def record(self, credential: PoolCredential, outcome: AttemptOutcome, kind: OutcomeKind) -> None:
        self.last_credential = credential
        self.last_outcome = outcome
        self.last_kind = kind
        self.last_attempt = self.attempt

    def diagnostics(self) -> RouteDiagnostics:
        if self.last_outcome is None or self.last_credential is None:
            return RouteDiagnostics()
        return RouteDiagnostics(
            dialect=self.last_outcome.dialect,
            pool_name=self.last_credential.pool_name,
            credential_index=self.last_credential.index,
            attempt=self.last_attempt,
        )

    def to_result(self, succeeded: bool) -> RouteResult:
        if succeeded:
            return RouteResult(
                succeeded=True,
                diagnostics=self.diagnostics(),
                text=self.last_outcome.extracted_text,
                calls=self.calls,
            )
        if self.last_outcome is None:
            return RouteResult(
                succeeded=False,
                diagnostics=RouteDiagnostics(),
                failure_detail="no upstream credentials to route with",
                status_hint=503,
            )
        return RouteResult(
            succeeded=False,
            diagnostics=self.diagnostics(),
            failure_detail=self.last_outcome.error_detail,
            raw_body=self.last_outcome.raw_body,
            status_hint=429 if self.last_kind is OutcomeKind.RATE_LIMITED else 503,
            calls=self.calls,
        )


class UpstreamRouter:
    """
    Drives one client request across dialects, pools and credentials.

    Args:
        client (httpx.AsyncClient): Transport; its timeout bounds each call.
        base_url (str): Upstream relay base URL, e.g. "https://yunwu.ai".
        max_attempts (int): Retry ceiling per credential.
        backoff_base (float): Seconds; wait before attempt n+1 is base * 2**n.
        backoff_max (float): Cap on a single wait.
        backoff_budget (float): Cap on the sum of all waits for one request.
        sleep: Awaitable sleep, injectable for tests.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        max_attempts: int = 3,
        backoff_base: float = 0.5,
        backoff_max: float = 8.0,
        backoff_budget: float = 20.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._client = client
        self.base_url = base_url.rstrip("/")
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.backoff_budget = backoff_budget
        self._sleep = sleep
        self._transitions = {
            RouteState.TRY_PRIMARY_DIALECT: self._try_primary_dialect,
            RouteState.TRY_FALLBACK_DIALECT: self._try_fallback_dialect,
            RouteState.BACKOFF_WAIT: self._backoff_wait,
            RouteState.NEXT_CREDENTIAL: self._next_credential,
        }

    def backoff_delay(self, attempt: int) -> float:
        return min(self.backoff_base * (2 ** attempt), self.backoff_max)

    async def route(
        self,
        entry: ModelEntry,
        messages: List[Dict[str, Any]],
        temperature: float,
        pool: Sequence[PoolCredential],
    ) -> RouteResult:
        """
        Run the state machine to a terminal state.

        Returns:
            RouteResult: Exactly one per call; never raises for upstream failures.
        """
        run = _RouteRun(entry=entry, messages=list(messages), temperature=temperature, pool=tuple(pool))
        state = RouteState.TRY_PRIMARY_DIALECT if run.pool else RouteState.EXHAUSTED_FAILURE

        while state not in TERMINAL_STATES:
            state = await self._transitions[state](run)

        result = run.to_result(succeeded=state is RouteState.SUCCESS)
        logger.info(
            "route finished",
            extra={
                "model": entry.upstream_id,
                "state": state.value,
                "calls": result.calls,
                **result.diagnostics.as_dict(),
            },
        )
        return result

    # ─── States ───────────────────────────────────────────────────────────────
    async def _try_primary_dialect(self, run: _RouteRun) -> RouteState:
        outcome = await self._call(run, run.entry.preferred_dialect)
        if not outcome.status_ok and run.entry.fallback_dialect is not None:
            return RouteState.TRY_FALLBACK_DIALECT
        return self._after_call(run)

    async def _try_fallback_dialect(self, run: _RouteRun) -> RouteState:
        await self._call(run, run.entry.fallback_dialect)
        return self._after_call(run)

    async def _backoff_wait(self, run: _RouteRun) -> RouteState:
        delay = self.backoff_delay(run.attempt)
        run.backoff_spent += delay
        logger.info(
            "backing off",
            extra={"pool": run.credential.pool_name, "credential_index": run.credential.index,
                   "attempt": run.attempt, "delay_s": delay},
        )
        await self._sleep(delay)
        run.attempt += 1
        return RouteState.TRY_PRIMARY_DIALECT

    async def _next_credential(self, run: _RouteRun) -> RouteState:
        run.position += 1
        run.attempt = 1
        if run.position < len(run.pool):
            return RouteState.TRY_PRIMARY_DIALECT
        return RouteState.EXHAUSTED_FAILURE

    def _after_call(self, run: _RouteRun) -> RouteState:
        kind = run.last_kind
        if kind is OutcomeKind.SUCCESS:
            return RouteState.SUCCESS

        if kind in RETRYABLE_KINDS and run.attempt < self.max_attempts:
            if run.backoff_spent + self.backoff_delay(run.attempt) <= self.backoff_budget:
                return RouteState.BACKOFF_WAIT
            logger.warning(
                "backoff budget spent, moving to next credential",
                extra={"pool": run.credential.pool_name, "credential_index": run.credential.index},
            )

        return RouteState.NEXT_CREDENTIAL

    # ─── Transport ────────────────────────────────────────────────────────────
    async def _call(self, run: _RouteRun, dialect: Dialect) -> AttemptOutcome:
        credential = run.credential
        payload = build_payload(dialect, run.entry.upstream_id, run.messages, run.temperature)
        headers = {
            "Authorization": f"Bearer {credential.credential}",
            "Content-Type": "application/json",
        }
        run.calls += 1

        try:
            resp = await self._client.post(f"{self.base_url}{endpoint_path(dialect)}", json=payload, headers=headers)
        except httpx.HTTPError as exc:
            outcome = AttemptOutcome(
                dialect=dialect,
                http_status=0,
                error_detail=f"{type(exc).__name__}: {exc}"[:MAX_DETAIL_CHARS],
            )
        else:
            body = read_body(resp)
            text = extract_text(dialect, body) if resp.is_success else ""
            detail = ""
            if not (resp.is_success and text.strip()):
                detail = error_detail_from(body, resp.status_code)
                if resp.is_success and isinstance(body, dict) and "error" not in body:
                    detail = f"upstream returned no text: {detail}"[:MAX_DETAIL_CHARS]
            outcome = AttemptOutcome(
                dialect=dialect,
                http_status=resp.status_code,
                extracted_text=text,
                raw_body=body,
                error_detail=detail,
            )

        kind = classify(outcome)
        run.record(credential, outcome, kind)
        UPSTREAM_CALLS.labels(dialect=dialect.value, pool=credential.pool_name, outcome=kind.value).inc()

        log = logger.info if kind is OutcomeKind.SUCCESS else logger.warning
        log(
            "upstream call",
            extra={
                "pool": credential.pool_name,
                "credential_index": credential.index,
                "dialect": dialect.value,
                "attempt": run.attempt,
                "status": outcome.http_status,
                "outcome": kind.value,
            },
        )
        return outcome
