# chat_relay/dialects/responses_dialect.py

"""
Responses dialect.

Request:  {"model", "input", "temperature"}
Response: {"output_text": "..."} or
          {"output": [{"content": [{"type": "output_text", "text": "..."}]}]}

The chat history is sent verbatim as `input`. Relays accept the
OpenAI-style `{role, content}` list there, so no conversion is done.

Some relays answer a Responses request in Chat Completions shape, so text
extraction falls back to the chat dialect's reader as a last resort.
"""

from typing import Any, Dict, List

from chat_relay.dialects import chat_dialect

RESPONSES_PATH = "/v1/responses"


def endpoint_path() -> str:
    return RESPONSES_PATH


def build_payload(
    model: str,
    messages: List[Dict[str, Any]],
    temperature: float,
) -> Dict[str, Any]:
    return {
        "model": model,
        "input": messages,
        "temperature": temperature,
    }


def _non_blank(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def _first_output_text(output: Any) -> str:
    # output[0].content[0].text is the common case; reasoning items may come first
    if not isinstance(output, list):
        return ""
    for item in output:
        if not isinstance(item, dict):
            continue
        content = item.get("content")
        if not isinstance(content, list):
            continue
        for part in content:
            if isinstance(part, dict) and _non_blank(part.get("text")):
                return part["text"]
    return ""


def extract_text(body: Any) -> str:
    """
    Try, in order:
        1. top-level `output_text`
        2. `output[*].content[*].text`
        3. Chat Completions shape (`choices[0].message.content`)

    The first non-blank value wins; otherwise "".
    """
    if not isinstance(body, dict):
        return ""

    output_text = body.get("output_text")
    if _non_blank(output_text):
        return output_text

    nested = _first_output_text(body.get("output"))
    if nested:
        return nested

    fallback = chat_dialect.extract_text(body)
    return fallback if _non_blank(fallback) else ""
