# src/notice_relay/connectors/connection_registry.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..core.ports import ClientConnection

logger = logging.getLogger(__name__)


def owner_identity(host: str | None, port: int | None) -> str:
    """Owner id for a connection: stable for its lifetime, not across reconnects."""
    return f"{host or 'unknown'}:{port if port is not None else 0}"


@dataclass(slots=True)
class ConnectionRecord:
    connection: ClientConnection
    source_address: str
    owner: str
    # lookup only; the TaskStore decides task lifetime
    task_ids: set[str] = field(default_factory=set)


class ConnectionRegistry:
    """
    Bidirectional index between live connections and the tasks they own.

    owner -> ConnectionRecord, and task id -> owner, kept in step on
    register/unregister/assign/release so no lookup needs a scan.
    """

    def __init__(self) -> None:
        self._by_owner: dict[str, ConnectionRecord] = {}
        self._task_owner: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._by_owner)

    def register(
        self,
        owner: str,
        source_address: str,
        connection: ClientConnection,
    ) -> ConnectionRecord:
        previous = self._by_owner.get(owner)
        record = ConnectionRecord(connection=connection, source_address=source_address, owner=owner)
        if previous is not None:
            # Same owner id reconnecting: it reclaims the tasks the old record knew about.
            logger.warning("Owner %s re-registered; replacing previous connection record", owner)
            record.task_ids |= previous.task_ids
        self._by_owner[owner] = record
        return record

    def unregister(self, owner: str) -> ConnectionRecord | None:
        record = self._by_owner.pop(owner, None)
        if record is None:
            return None
        for task_id in record.task_ids:
            if self._task_owner.get(task_id) == owner:
                del self._task_owner[task_id]
        return record

    def get(self, owner: str) -> ConnectionRecord | None:
        return self._by_owner.get(owner)

    def connection_for(self, owner: str) -> ClientConnection | None:
        """The owner's connection if it is registered and still open."""
        record = self._by_owner.get(owner)
        if record is None or not record.connection.is_open:
            return None
        return record.connection

    def assign_task(self, owner: str, task_id: str) -> None:
        record = self._by_owner.get(owner)
        if record is None:
            return
        record.task_ids.add(task_id)
        self._task_owner[task_id] = owner

    def release_task(self, task_id: str) -> None:
        owner = self._task_owner.pop(task_id, None)
        if owner is None:
            return
        record = self._by_owner.get(owner)
        if record is not None:
            record.task_ids.discard(task_id)

    def owner_of_task(self, task_id: str) -> str | None:
        return self._task_owner.get(task_id)

    def connection_for_task(self, task_id: str) -> ClientConnection | None:
        owner = self._task_owner.get(task_id)
        return self.connection_for(owner) if owner is not None else None
