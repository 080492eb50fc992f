from __future__ import annotations

import logging
from collections import deque
from typing import Any, Deque, Dict, Optional, Tuple

import httpx

from dayplan import errors

logger = logging.getLogger(__name__)

TIMELINE_UPDATES = "timeline-updates"
TASK_PROCESSING = "task-processing"


class LoggingBroadcaster:
    """Broadcast transport used when no realtime endpoint is configured.

    Keeps the last payloads around so ops endpoints and tests can inspect them.
    """

    def __init__(self, history: int = 200):
        self.published: Deque[Tuple[str, Dict[str, Any]]] = deque(maxlen=history)

    async def publish(self, channel: str, payload: Dict[str, Any]) -> None:
        self.published.append((channel, payload))
        logger.debug(f"[{channel}] {payload}")


class HttpBroadcaster:
    """Posts broadcast messages to a realtime HTTP endpoint."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout_s: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_s = timeout_s
        self.transport = transport

    async def publish(self, channel: str, payload: Dict[str, Any]) -> None:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        body = {"channel": channel, "event": "broadcast", "payload": payload}

        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self.transport) as client:
                r = await client.post(f"{self.base_url}/broadcast", headers=headers, json=body)
                r.raise_for_status()
        except httpx.HTTPError as e:
            raise errors.TransientIOError(f"Broadcast to {channel} failed: {e}") from e
