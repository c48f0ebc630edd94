# chat_relay/schemas.py

"""
Pydantic models for validating `/api/chat` request bodies.

The `action` and `password` fields are checked by the handler before these
models run (an unknown action or a bad password must be rejected before any
other validation). `ChatRequest` then validates what a chat needs:

- `messages`: non-empty, ordered list of `{role, content}` items
- `model`: optional display name (the handler falls back to the default model)
- `temperature`: optional number in [0, 2]

The total input size limit is passed in through the validation context
(`{"max_input_chars": n}`), so the schema does not read global settings.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator


class ChatMessage(BaseModel):
    """
    One chat turn in OpenAI format.

    `content` is either plain text or a list of content parts
    (e.g. [{"type": "text", "text": "..."}]). Extra keys are kept and
    forwarded upstream untouched.
    """
    model_config = ConfigDict(extra="allow")

    role: str = Field(..., min_length=1)
    content: Union[str, List[Dict[str, Any]]]


def _content_length(message: ChatMessage) -> int:
    if isinstance(message.content, str):
        return len(message.content)
    return sum(len(str(part.get("text", ""))) for part in message.content)


class ChatRequest(BaseModel):
    """
    Body of a `{"action": "chat"}` request.

    Fields:
        model (str | None): Display name from the model registry.
        messages (List[ChatMessage]): Required, non-empty chat history.
        temperature (float | None): Sampling temperature; default applied by the handler.
    """
    model_config = ConfigDict(extra="ignore")

    model: Optional[str] = None
    messages: List[ChatMessage] = Field(..., min_length=1)
    temperature: Optional[float] = Field(default=None, ge=0, le=2)

    @field_validator("messages")
    @classmethod
    def check_input_size(cls, messages: List[ChatMessage], info: ValidationInfo) -> List[ChatMessage]:
        """
        Reject histories whose total content exceeds `max_input_chars`.

        Raises:
            ValueError: If the combined content is too large.
        """
        limit = (info.context or {}).get("max_input_chars")
        if limit is None:
            return messages
        total_chars = sum(_content_length(m) for m in messages)
        if total_chars > limit:
            raise ValueError(
                f"Total message content too large ({total_chars} chars); max is {limit}"
            )
        return messages

    def upstream_messages(self) -> List[Dict[str, Any]]:
        """Messages as plain dicts, ready to forward."""
        return [m.model_dump(exclude_none=True) for m in self.messages]
