"""Delivery of ``notify`` hook messages.

``HttpNotifier`` posts a JSON payload to the hook's webhook endpoint with
httpx. Hooks without an endpoint only emit a log line.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

import httpx

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def notify(self, endpoint: str, payload: Dict[str, Any]) -> None:
        ...


class HttpNotifier:
    """Post notifications to webhook endpoints.

    Args:
        timeout: Request timeout in seconds.
        transport: Optional httpx transport, mainly for tests.
    """

    def __init__(self, *, timeout: float = 5.0, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._timeout = timeout
        self._transport = transport

    async def notify(self, endpoint: str, payload: Dict[str, Any]) -> None:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(endpoint, json=payload)
            response.raise_for_status()
        logger.debug("Delivered hook notification to %s", endpoint)
