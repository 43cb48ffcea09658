# src/notice_relay/connectors/http_client.py

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from ..core.ports import RemoteCallError

logger = logging.getLogger(__name__)


def _make_timeout_obj(total_s: float) -> httpx.Timeout:
    # One budget for the whole call; connect gets the same bound.
    return httpx.Timeout(total_s, connect=total_s)


class HttpxOutbound:
    """
    OutboundHttp implementation on top of a shared httpx.AsyncClient.

    - JSON bodies for dict/list payloads, raw content for strings, nothing for None
    - empty response body -> None
    - non-2xx, timeouts, transport errors and non-JSON bodies -> RemoteCallError
    - no automatic retries anywhere
    """

    def __init__(self, *, default_timeout: float = 5.0, client: httpx.AsyncClient | None = None) -> None:
        self._default_timeout = float(default_timeout)
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=_make_timeout_obj(self._default_timeout),
                follow_redirects=True,
            )
        return self._client

    async def request_json(
            self,
            method: str,
            url: str,
            *,
            body: Any = None,
            timeout: float | None = None,
    ) -> Any:
        method = (method or "GET").upper()
        kwargs: dict[str, Any] = {}
        if body is not None and method not in ("GET", "HEAD"):
            if isinstance(body, (str, bytes)):
                kwargs["content"] = body
            else:
                kwargs["json"] = body
        if timeout is not None:
            kwargs["timeout"] = _make_timeout_obj(float(timeout))

        client = self._get_client()
        try:
            response = await client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise RemoteCallError("timeout", f"Timeout calling {method} {url}") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise RemoteCallError(
                "http_status",
                f"{method} {url} returned HTTP {status}",
                status_code=status,
            ) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise RemoteCallError("network", f"{e.__class__.__name__}: {e}") from e

        if not response.content.strip():
            return None
        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise RemoteCallError(
                "invalid_json",
                f"{method} {url} did not return JSON",
                status_code=response.status_code,
            ) from e

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            try:
                await self._client.aclose()
            except Exception:
                logger.debug("httpx client close failed.", exc_info=True)
        self._client = None
