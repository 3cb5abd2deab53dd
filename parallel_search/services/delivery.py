"""Poll and push reads over request records."""
from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator

from loguru import logger

from parallel_search.models.events import SSEEvent
from parallel_search.models.record import RequestRecord, RequestStatus
from parallel_search.services import streaming
from parallel_search.services.notifications import NotificationHub
from parallel_search.services.store import RecordForbidden, RequestStore


class DeliveryError(Exception):
    def __init__(self, status_code: int, code: str):
        super().__init__(code)
        self.status_code = status_code
        self.code = code


# Non-2xx outcomes of an enrichment read, keyed by the reconciled status.
_RESULT_ERRORS = {
    RequestStatus.EXPIRED: (410, "expired"),
    RequestStatus.FAILED: (424, "mcp_failed"),
    RequestStatus.PENDING: (409, "mcp_not_ready"),
}


class DeliveryService:
    def __init__(self, store: RequestStore, hub: NotificationHub):
        self.store = store
        self.hub = hub

    def _owned_record(self, request_id: str, user_id: str) -> RequestRecord:
        try:
            record = self.store.get_for_owner(request_id, user_id)
        except RecordForbidden:
            raise DeliveryError(403, "forbidden") from None
        if record is None:
            raise DeliveryError(404, "not_found")
        return record

    def status(self, request_id: str, user_id: str) -> RequestStatus:
        return self._owned_record(request_id, user_id).status

    def enrichment_result(self, request_id: str, user_id: str) -> dict[str, Any]:
        record = self._owned_record(request_id, user_id)
        if record.status in _RESULT_ERRORS:
            status_code, code = _RESULT_ERRORS[record.status]
            raise DeliveryError(status_code, code)
        return record.results.mcp or {}

    def open_subscription(self, request_id: str, user_id: str) -> AsyncIterator[SSEEvent]:
        """Validate ownership now, then return the event stream.

        Errors surface before any stream bytes are sent, so the HTTP layer
        can still answer with a plain JSON error.
        """
        record = self._owned_record(request_id, user_id)
        return self._subscription(record)

    async def _subscription(self, record: RequestRecord) -> AsyncIterator[SSEEvent]:
        request_id = record.request_id
        current = self.store.get(request_id) or record
        if current.status.is_terminal:
            yield streaming.terminal_event(request_id, current.status)
            return

        future = self.hub.register(request_id)
        logger.debug(f"Subscriber waiting on {request_id} ({self.hub.observer_count(request_id)} open)")
        delay_s = max(current.expires_at - self.store.clock(), 0) / 1000
        try:
            event = await asyncio.wait_for(future, timeout=delay_s)
        except asyncio.TimeoutError:
            event = streaming.enrichment_expired(request_id)
        finally:
            self.hub.unregister(request_id, future)
        yield event
