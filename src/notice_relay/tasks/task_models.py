# src/notice_relay/tasks/task_models.py

from __future__ import annotations

import hashlib
import itertools
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

_id_seq = itertools.count(1)


class TaskMode(StrEnum):
    ONE_SHOT = "one_shot"
    CONTINUOUS = "continuous"
    SUBSCRIBE = "subscribe"

    @classmethod
    def from_record(cls, raw: Any) -> TaskMode:
        try:
            return cls(str(raw))
        except ValueError:
            return cls.ONE_SHOT


class TaskStatus(StrEnum):
    """
    Task lifecycle status.

    One-shot:    pending -> completed | error
    Continuous:  running -> (running | error)* -> completed | stopped
    Subscribe:   initiating -> awaiting_data <-> ready_to_push, paused (remote-triggered)
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"
    STOPPED = "stopped"

    INITIATING = "initiating"
    AWAITING_DATA = "awaiting_data"
    READY_TO_PUSH = "ready_to_push"
    PAUSED = "paused"

    @classmethod
    def from_record(cls, raw: Any) -> TaskStatus:
        if not raw:
            return cls.PENDING
        try:
            return cls(str(raw))
        except ValueError:
            return cls.ERROR

    @property
    def is_finished(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.ERROR, TaskStatus.STOPPED)


def make_task_id(target_url: str, method: str, created_at: float) -> str:
    """Opaque id derived from target, method and creation time (plus a process-local sequence)."""
    raw = f"{method.upper()} {target_url} {created_at!r} {next(_id_seq)}"
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()[:16]


@dataclass(slots=True)
class Task:
    id: str
    owner: str
    target_url: str
    http_method: str
    mode: TaskMode
    status: TaskStatus
    created_at: float
    updated_at: float

    request_body: Any = None
    last_result: Any = None

    # subscribe-webhook only
    service: str | None = None
    token: str | None = None

    # continuous-poll only
    interval_ms: int = 0
    total_executions: int = 0  # 0 = unbounded
    executions_so_far: int = 0
    run_until_close: bool = False

    # bumped on every mutation; lets the polling loop detect concurrent updates
    revision: int = 0

    def touch(self, status: TaskStatus | None = None) -> None:
        if status is not None:
            self.status = status
        self.updated_at = time.time()
        self.revision += 1

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "cliente": self.owner,
            "url_api_destino": self.target_url,
            "metodo_peticion": self.http_method,
            "body_peticion": self.request_body,
            "modo": self.mode.value,
            "estado": self.status.value,
            "creado": self.created_at,
            "ultima_actualizacion": self.updated_at,
            "ultimo_resultado": self.last_result,
            "servicio": self.service,
            "token": self.token,
            "intervalo": self.interval_ms,
            "ejecuciones_totales": self.total_executions,
            "ejecuciones_realizadas": self.executions_so_far,
            "ejecutandose_hasta_cierre": self.run_until_close,
        }

    @classmethod
    def from_record(cls, rec: dict[str, Any]) -> Task:
        task_id = str(rec.get("id") or "").strip()
        if not task_id:
            raise ValueError("task record without id")
        now = time.time()
        return cls(
            id=task_id,
            owner=str(rec.get("cliente") or ""),
            target_url=str(rec.get("url_api_destino") or ""),
            http_method=str(rec.get("metodo_peticion") or "GET").upper(),
            mode=TaskMode.from_record(rec.get("modo")),
            status=TaskStatus.from_record(rec.get("estado")),
            created_at=float(rec.get("creado") or now),
            updated_at=float(rec.get("ultima_actualizacion") or now),
            request_body=rec.get("body_peticion"),
            last_result=rec.get("ultimo_resultado"),
            service=rec.get("servicio"),
            token=rec.get("token"),
            interval_ms=int(rec.get("intervalo") or 0),
            total_executions=int(rec.get("ejecuciones_totales") or 0),
            executions_so_far=int(rec.get("ejecuciones_realizadas") or 0),
            run_until_close=bool(rec.get("ejecutandose_hasta_cierre", False)),
        )
