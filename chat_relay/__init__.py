# chat_relay/__init__.py

"""
Package initializer for `chat_relay`.

The relay is a FastAPI application (`chat_relay.main:app`). Its routing core
is importable on its own, without starting the web app:

- `chat_relay.registry`         → display name → upstream model, dialects, routing class
- `chat_relay.pools`            → routing class → ordered credential list
- `chat_relay.dialects`         → payload builders / text extractors per API dialect
- `chat_relay.upstream_router`  → failover across dialects, pools and credentials

Nothing is initialized here; configuration is loaded by `chat_relay.config`.
"""
