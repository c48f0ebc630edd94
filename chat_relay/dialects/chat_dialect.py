# chat_relay/dialects/chat_dialect.py

"""
Chat Completions dialect.

Request:  {"model", "messages", "temperature", "stream": false}
Response: {"choices": [{"message": {"content": "..."}}]}
"""

from typing import Any, Dict, List

CHAT_PATH = "/v1/chat/completions"


def endpoint_path() -> str:
    return CHAT_PATH


def build_payload(
    model: str,
    messages: List[Dict[str, Any]],
    temperature: float,
) -> Dict[str, Any]:
    return {
        "model": model,
        "messages": messages,
        "temperature": temperature,
        "stream": False,
    }


def extract_text(body: Any) -> str:
    """
    Read `choices[0].message.content`.

    Returns "" when any level is missing or has the wrong type.
    """
    if not isinstance(body, dict):
        return ""
    choices = body.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    first = choices[0]
    if not isinstance(first, dict):
        return ""
    message = first.get("message")
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    return content if isinstance(content, str) else ""
