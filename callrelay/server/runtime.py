from __future__ import annotations

import asyncio
import logging
from typing import Optional

import websockets

from callrelay.core import proto
from callrelay.core.relay import RelayOutcome, SignalingRelay
from callrelay.core.ws import Link, LinkClosed
from callrelay.server.config import ServerConfig

log = logging.getLogger("callrelay.server.runtime")

_UNREACHABLE_CODES = {
    RelayOutcome.TARGET_UNKNOWN: "USER_NOT_FOUND",
    RelayOutcome.TARGET_OFFLINE: "USER_OFFLINE",
    RelayOutcome.SEND_FAILED: "USER_OFFLINE",
}


class ServerRuntime:
    """Websocket front end for one SignalingRelay."""

    def __init__(self, config: Optional[ServerConfig] = None, relay: Optional[SignalingRelay] = None) -> None:
        self.cfg = config or ServerConfig()
        self.relay = relay if relay is not None else SignalingRelay(log_payloads=self.cfg.log_payloads)
        self._links: dict[str, Link] = {}
        self._ws_server = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self._ws_server = await websockets.serve(
            self._handle_connection,
            self.cfg.host,
            self.cfg.port,
            ping_interval=self.cfg.ping_interval,
            ping_timeout=self.cfg.ping_timeout,
            max_size=self.cfg.max_message_bytes,
        )
        log.info("Call relay listening on ws://%s:%d", self.cfg.host, self.bound_port)

    async def stop(self) -> None:
        for link in list(self._links.values()):
            try:
                await link.close()
            except Exception:
                log.debug("Error closing %s during shutdown", link, exc_info=True)

        if self._ws_server is not None:
            self._ws_server.close()
            await self._ws_server.wait_closed()
            self._ws_server = None

        self._links.clear()
        self.relay.close()
        log.info("Call relay stopped")

    async def run_until(self, stop_event: asyncio.Event) -> None:
        """Serve until stop_event is set, then shut down even if waiting was cancelled."""
        await self.start()
        try:
            await stop_event.wait()
        finally:
            await self.stop()

    @property
    def bound_port(self) -> int:
        if self._ws_server is None:
            return self.cfg.port
        for sock in self._ws_server.sockets:
            return sock.getsockname()[1]
        return self.cfg.port

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    async def _handle_connection(self, websocket) -> None:
        link = Link(websocket)
        connection_id = self.relay.open(link)
        self._links[connection_id] = link
        log.info("Client connected from %s (connection %s)", link.remote, connection_id)
        try:
            async for raw in websocket:
                try:
                    event = proto.parse_event(raw)
                except proto.MalformedEvent as exc:
                    log.warning("Dropped malformed event from %s: %s", link.remote, exc)
                    continue
                await self._dispatch(connection_id, link, event)
        except websockets.ConnectionClosed:
            pass
        finally:
            self._links.pop(connection_id, None)
            self.relay.disconnect(connection_id)
            log.info("Client %s disconnected (connection %s)", link.remote, connection_id)

    async def _dispatch(self, connection_id: str, link: Link, event: proto.Event) -> None:
        bound = self.relay.user_of(connection_id)

        if isinstance(event, proto.RegisterEvent):
            self.relay.register(connection_id, event.user_id)

        elif isinstance(event, proto.CallInitiateEvent):
            caller = bound or event.from_
            if not caller:
                log.warning("Dropped call-initiate from anonymous %s without 'from'", link.remote)
                return
            if bound and event.from_ and event.from_ != bound:
                log.warning("call-initiate claims from=%s on connection of %s; using %s", event.from_, bound, bound)
            outcome = await self.relay.relay_call(caller, event.to, event.signal)
            await self._report_unreachable(link, outcome, event.to)

        elif isinstance(event, proto.CallAnswerEvent):
            await self.relay.relay_answer(event.to, event.signal, from_user_id=bound)

        elif isinstance(event, proto.CallTerminateEvent):
            await self.relay.relay_hangup(event.to, from_user_id=bound)

    async def _report_unreachable(self, link: Link, outcome: RelayOutcome, target: str) -> None:
        if outcome.reachable or not self.cfg.notify_unreachable:
            return
        frame = proto.error_frame(
            _UNREACHABLE_CODES[outcome],
            f"{target} is not reachable",
            ref=proto.EventType.CALL_INITIATE.value,
        )
        try:
            await link.send(frame)
        except LinkClosed:
            pass


__all__ = ["ServerRuntime"]
