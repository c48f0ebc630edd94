# chat_relay/logging_config.py

"""
Configures structured JSON logging for the chat relay.

The root logger gets a single stdout handler that writes one JSON object per
event, tagged with the request's correlation id (from `asgi-correlation-id`),
so every upstream call of one client request can be grouped in the log store.

💡 Verbosity is controlled with the LOG_LEVEL setting (DEBUG, INFO, WARNING...).
"""

import logging
import sys

from asgi_correlation_id import CorrelationIdFilter
from pythonjsonlogger.json import JsonFormatter


def configure_logging(level: str = "INFO") -> None:
    """
    Replace any existing root handlers with one JSON handler on stdout.

    Args:
        level (str): Log level (e.g., "DEBUG", "INFO", "ERROR").
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(CorrelationIdFilter(uuid_length=32, default_value="-"))

    fmt = "%(asctime)s %(levelname)s %(name)s %(correlation_id)s %(message)s"
    handler.setFormatter(JsonFormatter(fmt))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
