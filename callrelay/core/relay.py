from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import orjson

from .presence import PresenceEntry, PresenceTable
from .proto import EventType, build_frame
from .registry import ConnectionRegistry
from .ws import LinkClosed

log = logging.getLogger("callrelay.relay")

_ABSENT = object()


class RelayOutcome(str, Enum):
    DELIVERED = "delivered"
    TARGET_OFFLINE = "target-offline"
    TARGET_UNKNOWN = "target-unknown"
    SEND_FAILED = "send-failed"

    @property
    def reachable(self) -> bool:
        return self is RelayOutcome.DELIVERED


@dataclass(frozen=True)
class SignalEnvelope:
    kind: EventType
    from_user_id: Optional[str]
    to_user_id: str
    payload: Any = _ABSENT

    def to_frame(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {}
        if self.kind is EventType.CALL_INITIATE:
            body = {"from": self.from_user_id, "name": self.from_user_id, "signal": self.payload}
        elif self.kind is EventType.CALL_ANSWER:
            body = {"signal": self.payload}
            if self.from_user_id:
                body["from"] = self.from_user_id
        elif self.from_user_id:
            body["from"] = self.from_user_id
        return build_frame(self.kind.value, body)


class SignalingRelay:
    """Presence-aware relay for call signaling between two connected users.

    Owns the connection registry and the presence table. Every register/disconnect/lookup
    runs as one critical section under a single lock; the lock is never held across a
    send, so a slow target cannot stall unrelated users.
    """

    def __init__(
        self,
        registry: Optional[ConnectionRegistry] = None,
        presence: Optional[PresenceTable] = None,
        *,
        log_payloads: bool = False,
    ) -> None:
        self.registry = registry if registry is not None else ConnectionRegistry()
        self.presence = presence if presence is not None else PresenceTable()
        self.log_payloads = log_payloads
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def open(self, link: object) -> str:
        with self._lock:
            return self.registry.on_open(link)

    def register(self, connection_id: str, user_id: str) -> bool:
        if not user_id:
            raise ValueError("user_id is required")
        with self._lock:
            if connection_id not in self.registry:
                log.warning("Register for %s on closed connection %s ignored", user_id, connection_id)
                return False
            previous_user = self.registry.bind(connection_id, user_id)
            if previous_user and previous_user != user_id:
                # this connection no longer speaks for previous_user
                self.presence.clear_if_current(previous_user, connection_id)
            self.presence.upsert_online(user_id, connection_id)
        log.info("User %s registered on connection %s", user_id, connection_id)
        return True

    def disconnect(self, connection_id: str) -> Optional[str]:
        with self._lock:
            user_id = self.registry.unbind(connection_id)
            self.registry.forget(connection_id)
            cleared = bool(user_id) and self.presence.clear_if_current(user_id, connection_id)
        if user_id:
            if cleared:
                log.info("User %s disconnected (connection %s)", user_id, connection_id)
            else:
                log.info("Stale connection %s of %s closed; presence kept", connection_id, user_id)
        return user_id

    # ------------------------------------------------------------------
    # Signaling
    # ------------------------------------------------------------------

    async def relay_call(self, from_user_id: str, to_user_id: str, payload: Any) -> RelayOutcome:
        caller = self.lookup(from_user_id)
        if caller is None or not caller.online:
            log.info("Caller %s not found or not connected", from_user_id)
        env = SignalEnvelope(EventType.CALL_INITIATE, from_user_id, to_user_id, payload)
        return await self._forward(env)

    async def relay_answer(
        self,
        to_caller_user_id: str,
        payload: Any,
        *,
        from_user_id: Optional[str] = None,
    ) -> RelayOutcome:
        env = SignalEnvelope(EventType.CALL_ANSWER, from_user_id, to_caller_user_id, payload)
        return await self._forward(env)

    async def relay_hangup(self, to_user_id: str, *, from_user_id: Optional[str] = None) -> RelayOutcome:
        env = SignalEnvelope(EventType.CALL_TERMINATE, from_user_id, to_user_id)
        return await self._forward(env)

    async def _forward(self, env: SignalEnvelope) -> RelayOutcome:
        outcome, link = self._resolve(env.to_user_id)
        if link is None:
            log.info("%s for %s not relayed: %s", env.kind.value, env.to_user_id, outcome.value)
            return outcome

        frame = env.to_frame()
        if self.log_payloads:
            log.debug("Relaying to %s via %s: %s", env.to_user_id, link, frame)
        try:
            await link.send(frame)
        except orjson.JSONEncodeError as exc:
            log.warning("%s for %s dropped: payload cannot be encoded (%s)", env.kind.value, env.to_user_id, exc)
            return RelayOutcome.SEND_FAILED
        except LinkClosed:
            log.info("%s for %s not relayed: connection closed mid-send", env.kind.value, env.to_user_id)
            return RelayOutcome.SEND_FAILED
        log.info("Relayed %s from %s to %s", env.kind.value, env.from_user_id, env.to_user_id)
        return RelayOutcome.DELIVERED

    def _resolve(self, user_id: str) -> Tuple[Optional[RelayOutcome], Optional[Any]]:
        with self._lock:
            entry = self.presence.get(user_id)
            if entry is None:
                return RelayOutcome.TARGET_UNKNOWN, None
            if not entry.online or entry.connection_id is None:
                return RelayOutcome.TARGET_OFFLINE, None
            link = self.registry.link_of(entry.connection_id)
        if link is None:
            return RelayOutcome.TARGET_OFFLINE, None
        return None, link

    # ------------------------------------------------------------------
    # Introspection / teardown
    # ------------------------------------------------------------------

    def lookup(self, user_id: str) -> Optional[PresenceEntry]:
        with self._lock:
            return self.presence.get(user_id)

    def user_of(self, connection_id: str) -> Optional[str]:
        with self._lock:
            return self.registry.user_of(connection_id)

    def online_users(self) -> List[str]:
        with self._lock:
            return self.presence.online_users()

    def close(self) -> None:
        with self._lock:
            self.registry.clear()
            self.presence.clear()
        log.debug("Relay state cleared")


__all__ = ["RelayOutcome", "SignalEnvelope", "SignalingRelay"]
