from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional

from .proto import now_ms

"""
Presence table
--------------
Transient, in-memory map of user id -> PresenceEntry:
  • register upserts an online entry pointing at the registering connection (last register wins)
  • disconnect uses compare-and-clear: the entry only goes offline if it still points at the
    disconnecting connection, so a stale close never wipes a newer registration
  • offline entries are kept, which lets lookups tell "registered but offline" from "never seen"

There is no deletion API; the table is driven entirely by connection events and is lost on restart.
"""

log = logging.getLogger("callrelay.presence")

NowFn = Callable[[], int]


@dataclass(frozen=True, slots=True)
class PresenceEntry:
    user_id: str
    online: bool
    connection_id: Optional[str]
    updated_ms: int


class PresenceTable:
    def __init__(self, now: NowFn = now_ms) -> None:
        self.now = now
        self._entries: Dict[str, PresenceEntry] = {}

    def upsert_online(self, user_id: str, connection_id: str) -> Optional[PresenceEntry]:
        """Mark user_id online via connection_id; returns the entry it replaced."""
        if not user_id:
            raise ValueError("user_id is required")
        previous = self._entries.get(user_id)
        self._entries[user_id] = PresenceEntry(
            user_id=user_id,
            online=True,
            connection_id=connection_id,
            updated_ms=self.now(),
        )
        if previous and previous.online and previous.connection_id != connection_id:
            log.info("Presence for %s moved %s -> %s", user_id, previous.connection_id, connection_id)
        return previous

    def clear_if_current(self, user_id: str, connection_id: str) -> bool:
        """Compare-and-clear: flip user_id offline only if it is still served by connection_id."""
        current = self._entries.get(user_id)
        if current is None or not current.online or current.connection_id != connection_id:
            log.debug(
                "Ignored clear for %s (current=%s, closing=%s)",
                user_id,
                current.connection_id if current else None,
                connection_id,
            )
            return False
        self._entries[user_id] = replace(current, online=False, connection_id=None, updated_ms=self.now())
        return True

    def get(self, user_id: str) -> Optional[PresenceEntry]:
        return self._entries.get(user_id)

    def online_users(self) -> List[str]:
        return sorted(uid for uid, entry in self._entries.items() if entry.online)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["PresenceEntry", "PresenceTable"]
