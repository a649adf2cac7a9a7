from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict

import websockets

from .proto import encode_frame

log = logging.getLogger("callrelay.ws")


class LinkClosed(Exception):
    """Raised when a frame is sent on a link whose websocket already closed."""


class Link:
    """Send handle for one client websocket.

    Sends are serialized per link so frames relayed from different callers
    never interleave on the same socket.
    """

    def __init__(self, websocket) -> None:
        self.ws = websocket
        self.remote = fmt_remote(websocket)
        self._send_lock = asyncio.Lock()

    async def send(self, frame: Dict[str, Any]) -> None:
        text = encode_frame(frame)
        async with self._send_lock:
            try:
                await self.ws.send(text)
            except websockets.ConnectionClosed as exc:
                log.debug("Send on closed link %s", self.remote)
                raise LinkClosed(self.remote) from exc

    async def close(self, code: int = 1001, reason: str = "server shutdown") -> None:
        await self.ws.close(code=code, reason=reason)

    def __repr__(self) -> str:
        return f"Link({self.remote})"


def fmt_remote(websocket) -> str:
    peer = getattr(websocket, "remote_address", None)
    if isinstance(peer, tuple) and len(peer) >= 2:
        return f"{peer[0]}:{peer[1]}"
    return str(peer)
