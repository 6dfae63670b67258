"""
Live epoch feed for spectators.

Every completed epoch is pushed as ``{"type": "epoch", "seq": n, "data": summary}``.
A newly connected socket is sent the most recent summary straight away so a
page opened between epochs is not blank.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket

_log = logging.getLogger(__name__)

SEND_TIMEOUT_SECONDS = 5.0


class EpochFeed:
    def __init__(self) -> None:
        self._sockets: Set[WebSocket] = set()
        self._seq = 0
        self._last: Optional[Dict[str, Any]] = None

    @property
    def connection_count(self) -> int:
        return len(self._sockets)

    async def connect(self, ws: WebSocket) -> None:
        await ws.accept()
        self._sockets.add(ws)
        if self._last is not None:
            await self._send(ws, self._last)

    async def disconnect(self, ws: WebSocket) -> None:
        self._sockets.discard(ws)

    async def broadcast_epoch(self, summary: Dict[str, Any]) -> int:
        """Push an epoch summary to every socket; returns how many received it."""
        self._seq += 1
        self._last = {"type": "epoch", "seq": self._seq, "data": dict(summary)}
        sockets = list(self._sockets)
        if not sockets:
            return 0
        results = await asyncio.gather(*(self._send(ws, self._last) for ws in sockets))
        return sum(results)

    async def _send(self, ws: WebSocket, msg: Dict[str, Any]) -> bool:
        try:
            await asyncio.wait_for(ws.send_json(msg), timeout=SEND_TIMEOUT_SECONDS)
            return True
        except Exception as e:
            _log.info("Dropping spectator socket: %s", type(e).__name__)
            self._sockets.discard(ws)
            return False


epoch_feed = EpochFeed()
