# src/notice_relay/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time.
- Components never read the environment themselves; the composition root
  hands them the values they need.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

ENV_PREFIX = "NOTICE"

load_dotenv(override=False)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    parts = [p.strip() for p in raw.replace(",", " ").split() if p.strip()]
    return parts


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


def _env_optional_path(name: str) -> Optional[Path]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Transport (owned by uvicorn; we only pass values through) ----
    host: str
    port: int
    ssl_certfile: Optional[Path]
    ssl_keyfile: Optional[Path]

    # ---- Local data paths ----
    data_dir: Path
    tasks_snapshot_path: Path

    # ---- Scheduler ----
    poll_interval_seconds: float
    api_timeout_seconds: float
    default_interval_ms: int
    default_total_executions: int
    task_retention_seconds: float

    # ---- Admission control ----
    max_connections_per_ip: int
    origin_check_enabled: bool
    allowed_origins: List[str]

    # ---- Webhook ----
    webhook_base_url: str
    webhook_path: str

    @property
    def webhook_url(self) -> str:
        return f"{self.webhook_base_url.rstrip('/')}{self.webhook_path}"

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "notice-relay") or "notice-relay"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        host = _env(_k("HOST"), "0.0.0.0")
        port = _env_int(_k("PORT"), 8443)
        ssl_certfile = _env_optional_path(_k("SSL_CERTFILE"))
        ssl_keyfile = _env_optional_path(_k("SSL_KEYFILE"))

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/notice_relay"))
        tasks_snapshot_path = _env_path(_k("TASKS_SNAPSHOT_PATH"), data_dir / "tasks.json")

        poll_interval_seconds = _env_float(_k("POLL_INTERVAL_SECONDS"), 5.0)
        api_timeout_seconds = _env_float(_k("API_TIMEOUT_SECONDS"), 5.0)
        default_interval_ms = _env_int(_k("DEFAULT_INTERVAL_MS"), 5000)
        default_total_executions = _env_int(_k("DEFAULT_TOTAL_EXECUTIONS"), 10)
        task_retention_seconds = _env_float(_k("TASK_RETENTION_SECONDS"), 3600.0)

        max_connections_per_ip = _env_int(_k("MAX_CONNECTIONS_PER_IP"), 5)
        origin_check_enabled = _env_bool(_k("ORIGIN_CHECK_ENABLED"), False)
        allowed_origins = _env_list(_k("ALLOWED_ORIGINS"), [])

        # SERVER_URL is the name the deployed API gateways already know.
        webhook_base_url = (
            _first_env(_k("SERVER_URL"), "SERVER_URL", default="http://localhost:8443")
            or "http://localhost:8443"
        ).strip()
        webhook_path = _env(_k("WEBHOOK_PATH"), "/webhook").strip() or "/webhook"
        if not webhook_path.startswith("/"):
            webhook_path = "/" + webhook_path

        return Settings(
            app_name=app_name,
            log_level=log_level,
            host=host,
            port=port,
            ssl_certfile=ssl_certfile,
            ssl_keyfile=ssl_keyfile,
            data_dir=data_dir,
            tasks_snapshot_path=tasks_snapshot_path,
            poll_interval_seconds=poll_interval_seconds,
            api_timeout_seconds=api_timeout_seconds,
            default_interval_ms=default_interval_ms,
            default_total_executions=default_total_executions,
            task_retention_seconds=task_retention_seconds,
            max_connections_per_ip=max_connections_per_ip,
            origin_check_enabled=origin_check_enabled,
            allowed_origins=allowed_origins,
            webhook_base_url=webhook_base_url,
            webhook_path=webhook_path,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
