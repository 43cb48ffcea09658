# src/notice_relay/tasks/task_store.py

from __future__ import annotations

import json
import logging
import os
from collections.abc import Collection
from pathlib import Path

from .task_models import Task, TaskMode, TaskStatus

logger = logging.getLogger(__name__)


class TaskStore:
    """
    In-memory task table with JSON snapshotting.

    - tasks are keyed by id, with a secondary owner -> ids index
    - the store is the only owner of Task records; nothing else deletes them
    - save_snapshot() overwrites the whole file (last writer wins),
      load_snapshot() is meant to be called once at startup

    Not thread-safe: all callers run on the scheduler's event loop.
    """

    def __init__(self, snapshot_path: str | Path | None = "tasks.json") -> None:
        self._snapshot_path = Path(snapshot_path) if snapshot_path is not None else None
        self._tasks: dict[str, Task] = {}
        self._by_owner: dict[str, set[str]] = {}

    @property
    def snapshot_path(self) -> Path | None:
        return self._snapshot_path

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    # ---- public API ----

    def add(self, task: Task) -> None:
        if task.id in self._tasks:
            raise ValueError(f"duplicate task id {task.id}")
        self._tasks[task.id] = task
        self._by_owner.setdefault(task.owner, set()).add(task.id)
        logger.debug(
            "Task added id=%s owner=%s mode=%s status=%s",
            task.id,
            task.owner,
            task.mode.value,
            task.status.value,
        )

    def get(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def delete(self, task_id: str) -> Task | None:
        task = self._tasks.pop(task_id, None)
        if task is None:
            return None
        ids = self._by_owner.get(task.owner)
        if ids is not None:
            ids.discard(task_id)
            if not ids:
                del self._by_owner[task.owner]
        logger.debug("Task deleted id=%s owner=%s", task_id, task.owner)
        return task

    def list_tasks(self) -> list[Task]:
        return list(self._tasks.values())

    def list_by_owner(self, owner: str) -> list[Task]:
        return [self._tasks[i] for i in self._by_owner.get(owner, ())]

    def list_by_status(self, *statuses: TaskStatus) -> list[Task]:
        wanted = set(statuses)
        out = [t for t in self._tasks.values() if t.status in wanted]
        out.sort(key=lambda t: (t.updated_at, t.created_at))
        return out

    def find_subscription(self, owner: str, target_url: str) -> Task | None:
        for task in self.list_by_owner(owner):
            if task.mode == TaskMode.SUBSCRIBE and task.target_url == target_url:
                return task
        return None

    def prune_finished(
        self,
        *,
        older_than_ts: float,
        keep: Collection[str] = frozenset(),
    ) -> list[str]:
        """
        Drop finished one-shot/continuous tasks last updated before older_than_ts.

        Subscribe-webhook tasks are never pruned here: they leave the store
        through unsubscribe, a remote delete, or connection cleanup.
        Ids in `keep` (live streams) are skipped too.
        """
        doomed = [
            t.id
            for t in self._tasks.values()
            if t.mode != TaskMode.SUBSCRIBE
            and t.status.is_finished
            and t.updated_at < older_than_ts
            and t.id not in keep
        ]
        for task_id in doomed:
            self.delete(task_id)
        if doomed:
            logger.info("Pruned %d finished tasks", len(doomed))
        return doomed

    # ---- snapshotting ----

    def save_snapshot(self) -> bool:
        """Write every task to the snapshot file. Failures are logged, never raised."""
        if self._snapshot_path is None:
            return False
        path = self._snapshot_path
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            data = [t.to_record() for t in self._tasks.values()]
            tmp = path.with_suffix(".tmp")
            tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), "utf-8")
            os.replace(tmp, path)
            return True
        except Exception:
            logger.exception("Failed to save task snapshot to %s", path)
            return False

    def load_snapshot(self) -> int:
        """
        Repopulate the store from the snapshot file.

        Malformed records are skipped. Returns the number of tasks loaded.
        """
        if self._snapshot_path is None or not self._snapshot_path.exists():
            return 0
        path = self._snapshot_path
        try:
            raw = json.loads(path.read_text("utf-8"))
        except Exception:
            logger.exception("Failed to read task snapshot from %s", path)
            return 0

        if not isinstance(raw, list):
            logger.warning("Task snapshot %s is not a JSON array; ignoring it", path)
            return 0

        loaded = 0
        for rec in raw:
            if not isinstance(rec, dict):
                continue
            try:
                task = Task.from_record(rec)
            except (TypeError, ValueError) as e:
                logger.warning("Skipping malformed task record: %s", e)
                continue
            if task.id in self._tasks:
                continue
            self.add(task)
            loaded += 1

        logger.info("Loaded %d tasks from %s", loaded, path)
        return loaded

