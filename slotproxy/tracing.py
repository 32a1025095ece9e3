"""Correlation tokens for tracing one inbound request through the logs.

A token arrives on the ``x-correlation-id`` request header or is minted
per route as ``<prefix>-<epoch ms>``.  It is threaded explicitly through
the handlers and the upstream client; nothing stores it globally.
"""

from __future__ import annotations

import logging
import time
from typing import Any, MutableMapping, Optional

CORRELATION_HEADER = "x-correlation-id"


class CorrelatedLogger(logging.LoggerAdapter):
    """Suffix every message with ``[token]`` when a token is present."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        token = self.extra.get("correlation_id") if self.extra else None
        if token:
            return f"{msg} [{token}]", kwargs
        return msg, kwargs


def correlated(logger: logging.Logger, correlation_id: Optional[str]) -> CorrelatedLogger:
    return CorrelatedLogger(logger, {"correlation_id": correlation_id})


def new_correlation_id(prefix: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}"


def resolve_correlation_id(header_value: Optional[str], prefix: str) -> str:
    """Use the caller's token verbatim, or mint one for this route."""
    if header_value and header_value.strip():
        return header_value.strip()
    return new_correlation_id(prefix)
