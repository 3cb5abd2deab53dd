from __future__ import annotations

from parallel_search.models.events import EventType, SSEEvent
from parallel_search.models.record import RequestStatus


def normal_start(request_id: str) -> SSEEvent:
    return SSEEvent(event=EventType.NORMAL_START, data={"requestId": request_id})


def normal_chunk(delta: str) -> SSEEvent:
    return SSEEvent(event=EventType.NORMAL_CHUNK, data={"delta": delta})


def normal_done(request_id: str) -> SSEEvent:
    return SSEEvent(event=EventType.NORMAL_DONE, data={"requestId": request_id})


def normal_error(request_id: str, message: str = "normal_search_failed") -> SSEEvent:
    return SSEEvent(
        event=EventType.NORMAL_ERROR,
        data={"requestId": request_id, "message": message},
    )


def enrichment_ready(request_id: str) -> SSEEvent:
    return SSEEvent(event=EventType.ENRICHMENT_READY, data={"requestId": request_id})


def enrichment_failed(request_id: str) -> SSEEvent:
    return SSEEvent(event=EventType.ENRICHMENT_FAILED, data={"requestId": request_id})


def enrichment_expired(request_id: str) -> SSEEvent:
    return SSEEvent(event=EventType.ENRICHMENT_EXPIRED, data={"requestId": request_id})


_TERMINAL_EVENTS = {
    RequestStatus.READY: enrichment_ready,
    RequestStatus.FAILED: enrichment_failed,
    RequestStatus.EXPIRED: enrichment_expired,
}


def terminal_event(request_id: str, status: RequestStatus) -> SSEEvent:
    """Map a terminal record status to its push event."""
    try:
        builder = _TERMINAL_EVENTS[status]
    except KeyError:
        raise ValueError(f"status {status.value!r} is not terminal") from None
    return builder(request_id)
