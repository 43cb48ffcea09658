# src/notice_relay/connectors/admission.py

"""
Connection admission control.

Gate for new client connections:
- per-source-address concurrency cap (default 5),
- optional Origin allow-list.

Independent of task logic. The transport calls on_connect_attempt() once per
handshake and release() exactly once when an accepted connection closes.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from ..core.ports import CLOSE_POLICY_VIOLATION

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class AdmissionDecision:
    accepted: bool
    code: int | None = None
    reason: str = ""


ACCEPT = AdmissionDecision(accepted=True)


class AdmissionControl:
    def __init__(
        self,
        *,
        max_connections_per_ip: int = 5,
        origin_check_enabled: bool = False,
        allowed_origins: Iterable[str] = (),
    ) -> None:
        self._max = max(1, int(max_connections_per_ip))
        self._origin_check = bool(origin_check_enabled)
        self._allowed = {o.strip().rstrip("/") for o in allowed_origins if o and o.strip()}
        self._counts: dict[str, int] = {}

    @property
    def max_connections_per_ip(self) -> int:
        return self._max

    def count(self, source_address: str) -> int:
        return self._counts.get(source_address, 0)

    def counts(self) -> dict[str, int]:
        return dict(self._counts)

    def on_connect_attempt(self, source_address: str, origin: str | None) -> AdmissionDecision:
        """Accept (and count) or reject a new connection. Rejections are never counted."""
        current = self._counts.get(source_address, 0)
        if current >= self._max:
            logger.warning(
                "Connection limit (%d) exceeded for %s; rejecting.", self._max, source_address
            )
            return AdmissionDecision(
                accepted=False,
                code=CLOSE_POLICY_VIOLATION,
                reason="Límite de conexiones excedido",
            )

        if self._origin_check:
            normalized = (origin or "").strip().rstrip("/")
            if not normalized or normalized not in self._allowed:
                logger.warning("Origin %r not allowed for %s; rejecting.", origin, source_address)
                return AdmissionDecision(
                    accepted=False,
                    code=CLOSE_POLICY_VIOLATION,
                    reason="Origen no permitido",
                )

        self._counts[source_address] = current + 1
        logger.info(
            "Client connected from %s. Active connections: %d",
            source_address,
            self._counts[source_address],
        )
        return ACCEPT

    def release(self, source_address: str) -> int:
        """Decrement the counter for a closed connection; the entry is dropped at zero."""
        current = self._counts.get(source_address, 0)
        remaining = current - 1
        if remaining <= 0:
            self._counts.pop(source_address, None)
            remaining = 0
        else:
            self._counts[source_address] = remaining
        logger.info("Client %s disconnected. Active connections: %d", source_address, remaining)
        return remaining
