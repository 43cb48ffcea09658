# src/notice_relay/tasks/streams.py

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

StreamKey = tuple[str, str, str]  # (owner, target_url, METHOD)


@dataclass(slots=True, frozen=True)
class StreamHandle:
    """A running continuous-poll timer. The runner only knows its task id."""

    task_id: str
    owner: str
    key: StreamKey
    runner: asyncio.Task[None]


class StreamRegistry:
    """
    task id -> live timer handle for continuous-poll tasks.

    Entries exist only while the timer runs. pop()/cancel() remove an entry
    exactly once, so a cancelled timer is never cancelled (or restarted) twice.
    """

    def __init__(self) -> None:
        self._by_task: dict[str, StreamHandle] = {}
        self._by_key: dict[StreamKey, str] = {}

    def __len__(self) -> int:
        return len(self._by_task)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._by_task

    def task_ids(self) -> frozenset[str]:
        return frozenset(self._by_task)

    def get(self, task_id: str) -> StreamHandle | None:
        return self._by_task.get(task_id)

    def find_by_key(self, key: StreamKey) -> StreamHandle | None:
        task_id = self._by_key.get(key)
        return self._by_task.get(task_id) if task_id is not None else None

    def for_owner(self, owner: str) -> list[StreamHandle]:
        return [h for h in self._by_task.values() if h.owner == owner]

    def add(self, handle: StreamHandle) -> None:
        if handle.key in self._by_key:
            raise ValueError(f"stream already running for {handle.key}")
        self._by_task[handle.task_id] = handle
        self._by_key[handle.key] = handle.task_id

    def pop(self, task_id: str) -> StreamHandle | None:
        handle = self._by_task.pop(task_id, None)
        if handle is None:
            return None
        if self._by_key.get(handle.key) == task_id:
            del self._by_key[handle.key]
        return handle

    def cancel(self, task_id: str) -> bool:
        """Remove the entry and cancel its runner. False if no such stream."""
        handle = self.pop(task_id)
        if handle is None:
            return False
        # A runner finishing its own last execution pops itself; never cancel the caller.
        if not handle.runner.done() and handle.runner is not asyncio.current_task():
            handle.runner.cancel()
        logger.debug("Stream cancelled task_id=%s owner=%s", task_id, handle.owner)
        return True

    async def cancel_all(self) -> None:
        runners = []
        for task_id in list(self._by_task):
            handle = self._by_task.get(task_id)
            if handle is not None and self.cancel(task_id):
                runners.append(handle.runner)
        if runners:
            await asyncio.gather(*runners, return_exceptions=True)
