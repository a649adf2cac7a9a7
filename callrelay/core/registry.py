from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, Optional

log = logging.getLogger("callrelay.registry")

IdFactory = Callable[[], str]


def _new_connection_id() -> str:
    return uuid.uuid4().hex


@dataclass(slots=True)
class ConnectionRecord:
    connection_id: str
    link: object
    user_id: Optional[str] = None


class ConnectionRegistry:
    """Open connections and the user id each one registered under.

    Not synchronized on its own; SignalingRelay calls it while holding its lock.
    """

    def __init__(self, id_factory: IdFactory = _new_connection_id) -> None:
        self._id_factory = id_factory
        self._records: Dict[str, ConnectionRecord] = {}

    def on_open(self, link: object) -> str:
        connection_id = self._id_factory()
        if connection_id in self._records:
            raise RuntimeError(f"connection id collision: {connection_id}")
        self._records[connection_id] = ConnectionRecord(connection_id=connection_id, link=link)
        log.debug("Opened connection %s (%s)", connection_id, link)
        return connection_id

    def bind(self, connection_id: str, user_id: str) -> Optional[str]:
        """Bind user_id to the connection, returning the id it replaced.

        Unknown connection ids are ignored.
        """
        record = self._records.get(connection_id)
        if record is None:
            log.debug("bind on unknown connection %s ignored", connection_id)
            return None
        previous, record.user_id = record.user_id, user_id
        return previous

    def unbind(self, connection_id: str) -> Optional[str]:
        record = self._records.get(connection_id)
        if record is None:
            return None
        user_id, record.user_id = record.user_id, None
        return user_id

    def forget(self, connection_id: str) -> None:
        self._records.pop(connection_id, None)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def user_of(self, connection_id: str) -> Optional[str]:
        record = self._records.get(connection_id)
        return record.user_id if record else None

    def link_of(self, connection_id: str) -> Optional[object]:
        record = self._records.get(connection_id)
        return record.link if record else None

    def clear(self) -> None:
        self._records.clear()

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._records

    def __len__(self) -> int:
        return len(self._records)


__all__ = ["ConnectionRecord", "ConnectionRegistry"]
