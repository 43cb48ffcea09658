# src/notice_relay/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The scheduler depends on Protocols instead of concrete implementations.
The WebSocket transport and the outbound HTTP client live in connectors/,
which keeps them swappable and makes testing easier.
"""

from typing import Any, Protocol

JsonPayload = dict[str, Any]

# WebSocket close codes used by the relay.
CLOSE_NORMAL = 1000
CLOSE_POLICY_VIOLATION = 1008


class RemoteCallError(Exception):
    """Outbound call failed. `kind` is one of: network, timeout, http_status, invalid_json."""

    def __init__(self, kind: str, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code

    def to_descriptor(self) -> JsonPayload:
        out: JsonPayload = {"type": self.kind, "message": self.message}
        if self.status_code is not None:
            out["status_code"] = self.status_code
        return out


class ClientConnection(Protocol):
    """
    A live client connection as seen by the scheduler.

    The transport decides how to frame and send; the scheduler only needs
    to know whether the connection can still receive, and how to push JSON
    and close it.
    """

    @property
    def is_open(self) -> bool: ...

    async def send_json(self, payload: JsonPayload) -> None: ...

    async def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> None: ...


class OutboundHttp(Protocol):
    """
    Outbound HTTP port used for one-shot/poll requests and webhook (de)registration.

    Implementations return the parsed JSON body (None for an empty body) and
    raise RemoteCallError for network failures, timeouts, non-2xx statuses
    and non-JSON bodies.
    """

    async def request_json(
            self,
            method: str,
            url: str,
            *,
            body: Any = None,
            timeout: float | None = None,
    ) -> Any: ...

    async def aclose(self) -> None: ...
