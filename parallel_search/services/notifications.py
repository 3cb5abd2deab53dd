"""Per-request fan-out of terminal enrichment events."""
from __future__ import annotations

import asyncio

from parallel_search.models.events import SSEEvent


class NotificationHub:
    """Multicast channel keyed by request id.

    Each observer registers a one-shot future. ``emit`` resolves every future
    currently registered for the request and forgets them, so an observer
    sees at most one terminal event.
    """

    def __init__(self) -> None:
        self._waiters: dict[str, set[asyncio.Future[SSEEvent]]] = {}

    def register(self, request_id: str) -> asyncio.Future[SSEEvent]:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[SSEEvent] = loop.create_future()
        self._waiters.setdefault(request_id, set()).add(future)
        return future

    def unregister(self, request_id: str, future: asyncio.Future[SSEEvent]) -> None:
        waiters = self._waiters.get(request_id)
        if not waiters:
            return
        waiters.discard(future)
        if not waiters:
            del self._waiters[request_id]

    def emit(self, request_id: str, event: SSEEvent) -> int:
        """Deliver ``event`` to current observers; returns how many got it."""
        waiters = self._waiters.pop(request_id, set())
        delivered = 0
        for future in waiters:
            if future.done():
                continue
            future.set_result(event)
            delivered += 1
        return delivered

    def observer_count(self, request_id: str) -> int:
        return len(self._waiters.get(request_id, ()))
