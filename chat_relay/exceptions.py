# chat_relay/exceptions.py

"""
Custom exception classes for the chat relay.

Every error the relay reports to a client is a `RelayError`. FastAPI's
global exception handler (see `main.py`) turns it into the relay's JSON error
envelope:

    {"ok": false, "error": "<summary>", ...}

🧠 Taxonomy:
- `ClientError` (400) and friends: bad verb, bad body, unknown model, bad password.
  Never retried.
- `ConfigError` (500): a required secret is not configured. Never retried.
- `UpstreamExhausted` (503, or 429 when the last failure was a rate limit):
  every credential in every pool was tried. Carries the full diagnostic trail.
"""

from typing import Any, Dict, Optional


class RelayError(Exception):
    """
    Base class for errors surfaced to the client.

    Args:
        detail (str): Human-readable summary, returned as `error`.
        status_code (int): HTTP status code to be returned to the client.

    Example:
        raise RelayError("Provider not available", status_code=503)
    """
    status_code: int = 500

    def __init__(self, detail: str, status_code: Optional[int] = None):
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code
        super().__init__(detail)

    def to_content(self) -> Dict[str, Any]:
        return {"ok": False, "error": self.detail}


class ClientError(RelayError):
    status_code = 400


class ModelNotFound(ClientError):
    """Raised by the model registry for an unknown display name."""

    def __init__(self, display_name: str, available: str):
        self.display_name = display_name
        super().__init__(f"Unsupported model '{display_name}'. Available models: {available}")


class Unauthorized(RelayError):
    status_code = 401


class MethodNotAllowed(RelayError):
    status_code = 405


class PayloadTooLarge(ClientError):
    status_code = 413


class ConfigError(RelayError):
    status_code = 500


class UpstreamExhausted(RelayError):
    """
    Every route to an upstream failed.

    Rendered with the last classified error (`detail`), the last raw upstream
    body (`raw`) and routing metadata (`meta`), so operators can tell
    "wrong model id" from "all capacity rate-limited" from "all credentials invalid".
    """

    def __init__(self, summary: str, status_code: int, failure_detail: str, raw: Any, meta: Dict[str, Any]):
        super().__init__(summary, status_code=status_code)
        self.failure_detail = failure_detail
        self.raw = raw
        self.meta = meta

    def to_content(self) -> Dict[str, Any]:
        content = super().to_content()
        content.update({"detail": self.failure_detail, "raw": self.raw, "meta": self.meta})
        return content
