from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Optional

import asyncpg

from storage import db

logger = logging.getLogger(__name__)

WORK_ITEM_CHANNEL = "work_item_created"


class WorkItemListener:
    """
    Holds one pooled connection on ``LISTEN work_item_created`` and forwards
    each decoded payload to ``on_record``.
    """

    def __init__(self, on_record: Callable[[Dict[str, Any]], Any], channel: str = WORK_ITEM_CHANNEL):
        self.on_record = on_record
        self.channel = channel
        self._conn: Optional[asyncpg.Connection] = None

    async def start(self) -> None:
        if self._conn is not None:
            return
        self._conn = await db.get_pool().acquire()
        await self._conn.add_listener(self.channel, self._handle)
        logger.info(f"Listening for {self.channel} notifications")

    async def stop(self) -> None:
        if self._conn is None:
            return
        try:
            await self._conn.remove_listener(self.channel, self._handle)
        finally:
            await db.get_pool().release(self._conn)
            self._conn = None
        logger.info(f"Stopped listening for {self.channel}")

    def _handle(self, connection, pid: int, channel: str, payload: str) -> None:
        try:
            record = json.loads(payload)
        except json.JSONDecodeError as e:
            logger.warning(f"Undecodable {channel} payload: {e}")
            return
        self.on_record(record)
