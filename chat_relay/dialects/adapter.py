# chat_relay/dialects/adapter.py

"""
Dialect selection for outbound upstream calls.

The router never deals with payload shapes directly. It asks this module to:
- build the request body for a dialect (`build_payload`)
- pull the assistant text out of a response body (`extract_text`)
- tell it which path to POST to (`endpoint_path`)

The dialect module is resolved at runtime from the `Dialect` enum value
(`chat` → `chat_dialect`, `responses` → `responses_dialect`), so adding a
dialect means adding one module and one enum member.
"""

import importlib
from enum import Enum
from types import ModuleType
from typing import Any, Dict, List


class Dialect(str, Enum):
    """Upstream request/response shapes the relay knows how to speak."""

    CHAT = "chat"
    RESPONSES = "responses"


def _module_for(dialect: Dialect) -> ModuleType:
    return importlib.import_module(f"chat_relay.dialects.{dialect.value}_dialect")


def endpoint_path(dialect: Dialect) -> str:
    """Path (relative to the upstream base URL) a dialect is served on."""
    return _module_for(dialect).endpoint_path()


def build_payload(
    dialect: Dialect,
    model: str,
    messages: List[Dict[str, Any]],
    temperature: float,
) -> Dict[str, Any]:
    """
    Build the outbound JSON body for one upstream call.

    Args:
        dialect (Dialect): Shape to produce.
        model (str): Upstream model id (not the display name).
        messages (List[Dict]): Chat history in OpenAI format.
        temperature (float): Sampling temperature.

    Returns:
        Dict[str, Any]: JSON-serializable request body.
    """
    return _module_for(dialect).build_payload(model, messages, temperature)


def extract_text(dialect: Dialect, body: Any) -> str:
    """
    Extract the assistant text from an upstream response body.

    Never raises: a body missing the expected fields yields "".
    """
    return _module_for(dialect).extract_text(body)
