# chat_relay/metrics.py

"""
Prometheus metrics for the chat relay.

- HTTP request volume and latency per method + path (fed by `main.py` middleware)
- Upstream calls per dialect, pool and outcome (fed by the upstream router)
- Terminal route results per display model and outcome

Labels never carry credentials; pools are identified by name only.
"""

from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "http_status"]
)

REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint"]
)

UPSTREAM_CALLS = Counter(
    "relay_upstream_calls_total",
    "Upstream HTTP calls issued by the router",
    ["dialect", "pool", "outcome"]
)

ROUTE_RESULTS = Counter(
    "relay_route_results_total",
    "Terminal routing results per client request",
    ["model", "outcome"]
)
