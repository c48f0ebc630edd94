# chat_relay/registry.py

"""
Model registry: the static table the relay routes from.

Maps a logical display name (what the chat page shows and sends) to:
- the upstream model id the relay actually asks for
- the API dialect(s) the upstream serves that model on, preferred first
- the routing class, which picks the chain of credential pools to spend

The table is built once at import time and is read-only for the lifetime of
the process. Lookups are exact and case-sensitive.

🔁 To add a model, add a row to `_ENTRIES`. To change which credentials a
model spends, change its routing class (see `pools.py`).
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import FrozenSet, Mapping, Optional, Tuple

from chat_relay.dialects.adapter import Dialect
from chat_relay.exceptions import ModelNotFound


class RoutingClass(str, Enum):
    OPENAI = "openai"
    GEMINI = "gemini"
    CLAUDE = "claude"


@dataclass(frozen=True)
class ModelEntry:
    """
    One registry row.

    Fields:
        upstream_id (str): Model id sent upstream, e.g. "gpt-5.2".
        dialects (Tuple[Dialect, ...]): Supported dialects, preferred first.
        routing_class (RoutingClass): Which credential chain pays for it.
    """
    upstream_id: str
    dialects: Tuple[Dialect, ...]
    routing_class: RoutingClass

    def __post_init__(self) -> None:
        if not self.dialects or len(set(self.dialects)) != len(self.dialects):
            raise ValueError(f"{self.upstream_id}: dialects must be non-empty and unique")

    @property
    def preferred_dialect(self) -> Dialect:
        return self.dialects[0]

    @property
    def fallback_dialect(self) -> Optional[Dialect]:
        return self.dialects[1] if len(self.dialects) > 1 else None

    @property
    def supported_dialects(self) -> FrozenSet[Dialect]:
        return frozenset(self.dialects)


# ─── Registry Table ───────────────────────────────────────────────────────────
_ENTRIES = {
    "GPT-5.2": ModelEntry("gpt-5.2", (Dialect.RESPONSES, Dialect.CHAT), RoutingClass.OPENAI),
    "GPT-5.1": ModelEntry("gpt-5.1", (Dialect.RESPONSES, Dialect.CHAT), RoutingClass.OPENAI),
    "GPT-4o": ModelEntry("gpt-4o", (Dialect.CHAT,), RoutingClass.OPENAI),
    "Gemini 3 Pro": ModelEntry("gemini-3-pro-preview", (Dialect.CHAT,), RoutingClass.GEMINI),
    "Claude Opus 4.5": ModelEntry("claude-opus-4-5-20251101", (Dialect.CHAT,), RoutingClass.CLAUDE),
    "Grok-4.1": ModelEntry("grok-4.1", (Dialect.CHAT,), RoutingClass.OPENAI),
}

MODEL_REGISTRY: Mapping[str, ModelEntry] = MappingProxyType(_ENTRIES)


def available_models() -> Tuple[str, ...]:
    """Display names the relay serves, in registry order."""
    return tuple(MODEL_REGISTRY)


def resolve(display_name: str) -> ModelEntry:
    """
    Look up a display name.

    Args:
        display_name (str): Logical model name sent by the client, e.g. "GPT-5.2".

    Returns:
        ModelEntry: The registry row for that name.

    Raises:
        ModelNotFound: If the name is not in the registry (surfaces as HTTP 400).
    """
    entry = MODEL_REGISTRY.get(display_name)
    if entry is None:
        raise ModelNotFound(display_name, ", ".join(available_models()))
    return entry
