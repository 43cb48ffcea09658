# src/notice_relay/tasks/subscriptions.py

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

SubscriptionKey = tuple[str, str]  # (owner, target_url)


class SubscriptionIndex:
    """
    (owner, target_url) -> task id for subscribe-webhook tasks.

    A pair is reserved as soon as the task is created (state initiating),
    so a second subscribe for the same pair is rejected even while the
    remote registration of the first one is still in flight.
    """

    def __init__(self) -> None:
        self._entries: dict[SubscriptionKey, str] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, owner: str, target_url: str) -> str | None:
        return self._entries.get((owner, target_url))

    def reserve(self, owner: str, target_url: str, task_id: str) -> bool:
        key = (owner, target_url)
        if key in self._entries:
            return False
        self._entries[key] = task_id
        return True

    def release(self, owner: str, target_url: str, task_id: str | None = None) -> bool:
        """Remove the pair. With task_id, only if it still points at that task."""
        key = (owner, target_url)
        current = self._entries.get(key)
        if current is None:
            return False
        if task_id is not None and current != task_id:
            return False
        del self._entries[key]
        logger.debug("Subscription released owner=%s url=%s", owner, target_url)
        return True

    def urls_for_owner(self, owner: str) -> list[str]:
        return [url for (o, url) in self._entries if o == owner]
