# chat_relay/pools.py

"""
Credential pool builder.

Turns a routing class plus the configured secrets into the ordered list of
credentials the upstream router will spend, one `PoolCredential` per key.

💸 Pool order is the cost policy: each chain lists its cheapest, most available
capacity first and its most expensive, most reliable capacity last. The router
only reaches a later pool once everything before it failed.

Rules:
- A pool's secret is a comma-separated string of bearer tokens.
- Empty or unset pools are skipped; they never appear in the output.
- When every pool of a chain is empty, the `default` pool is used instead.
- Key order inside a pool is preserved as configured.

Credentials never show up in `repr()`; log the pool name and index only.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from chat_relay.registry import RoutingClass

FALLBACK_POOL = "default"

ROUTING_CHAINS: Dict[RoutingClass, Tuple[str, ...]] = {
    RoutingClass.OPENAI: ("reverse", "official"),
    RoutingClass.GEMINI: ("gemini", "official"),
    RoutingClass.CLAUDE: ("claude", "official"),
}


@dataclass(frozen=True)
class PoolCredential:
    pool_name: str
    credential: str = field(repr=False)
    index: int = 0

    @property
    def label(self) -> str:
        return f"{self.pool_name}#{self.index}"


def split_secret(raw: Optional[str]) -> List[str]:
    """Split a comma-separated secret into its non-empty, stripped keys."""
    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


def _expand(pool_name: str, raw: Optional[str]) -> List[PoolCredential]:
    return [
        PoolCredential(pool_name=pool_name, credential=key, index=i)
        for i, key in enumerate(split_secret(raw))
    ]


def build_pool(
    routing_class: RoutingClass,
    configured_secrets: Mapping[str, Optional[str]],
) -> List[PoolCredential]:
    """
    Expand a routing class into its ordered credential list.

    Args:
        routing_class (RoutingClass): The model's routing class.
        configured_secrets (Mapping[str, str]): Pool name → raw comma-separated secret.

    Returns:
        List[PoolCredential]: Credentials in spend order. Empty only when neither
        the chain's pools nor the fallback pool hold any key; the caller must
        report that as a configuration error before dispatching.
    """
    credentials: List[PoolCredential] = []
    for pool_name in ROUTING_CHAINS[routing_class]:
        credentials.extend(_expand(pool_name, configured_secrets.get(pool_name)))

    if not credentials:
        credentials = _expand(FALLBACK_POOL, configured_secrets.get(FALLBACK_POOL))

    return credentials


def configured_pools(configured_secrets: Mapping[str, Optional[str]]) -> Dict[str, int]:
    """Pool name → number of configured keys, for startup logs and readiness."""
    return {
        name: len(split_secret(raw))
        for name, raw in configured_secrets.items()
        if split_secret(raw)
    }
