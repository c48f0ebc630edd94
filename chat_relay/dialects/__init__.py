# chat_relay/dialects/__init__.py

"""
Package initializer for `chat_relay.dialects`.

Each module in this package describes one upstream API dialect, i.e. one
request/response JSON shape spoken by OpenAI-compatible relays:

- `chat_dialect.py`       → POST /v1/chat/completions (`messages` in, `choices` out)
- `responses_dialect.py`  → POST /v1/responses (`input` in, `output` / `output_text` out)

Every dialect module exposes the same three plain functions:
`endpoint_path()`, `build_payload(...)` and `extract_text(...)`.

🧠 See also: `adapter.py`, which picks the module for a given `Dialect` value.
"""
