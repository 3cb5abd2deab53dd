from __future__ import annotations

from typing import Any, AsyncIterator
from uuid import uuid4

from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from parallel_search.api.deps import Services, error_response, get_services, resolve_user_id
from parallel_search.models.events import SSEEvent
from parallel_search.models.record import RequestStatus
from parallel_search.models.schemas import SearchRequest, SearchResponse, StatusResponse
from parallel_search.providers.answer import AnswerError
from parallel_search.services import logger as log_service
from parallel_search.services.delivery import DeliveryError

router = APIRouter(prefix="/search", tags=["search"])


def _wants_stream(request: Request) -> bool:
    if request.query_params.get("stream") == "true":
        return True
    return "text/event-stream" in request.headers.get("accept", "")


async def _sse_messages(events: AsyncIterator[SSEEvent]) -> AsyncIterator[dict[str, str]]:
    async for event in events:
        yield event.to_message()


def _event_stream(events: AsyncIterator[SSEEvent]) -> EventSourceResponse:
    return EventSourceResponse(_sse_messages(events), sep="\n")


@router.post("")
async def create_search(
    request: Request,
    payload: SearchRequest | None = None,
    services: Services = Depends(get_services),
):
    """Start both channels for a query.

    Answers with the buffered primary result, or streams it when
    ``?stream=true`` / ``Accept: text/event-stream``. Enrichment keeps running
    in the background either way.
    """
    payload = payload or SearchRequest()
    query = "" if payload.query is None else str(payload.query).strip()
    body_context = payload.userContext.model_dump() if payload.userContext else {}
    user_id = resolve_user_id(request, body_context.get("userId"))

    if not query:
        return error_response(400, "query_required")
    if not user_id:
        return error_response(400, "user_required")

    request_id = str(uuid4())
    services.store.create(request_id, user_id, query)
    user_context: dict[str, Any] = {
        **body_context,
        "userId": user_id,
        "previousContext": services.contexts.get(user_id),
    }
    log_service.log_event(
        event_type="search_created",
        message="Search request created",
        request_id=request_id,
        user_id=user_id,
        query=query[:100],
    )

    services.enrichment.start(request_id, user_id, query, user_context)

    if _wants_stream(request):
        return _event_stream(services.answers.stream(request_id, user_id, query, user_context))

    try:
        normal = await services.answers.buffered(request_id, user_id, query, user_context)
    except AnswerError:
        return error_response(502, "normal_search_failed")

    return SearchResponse(
        requestId=request_id,
        results=normal["results"],
        status=RequestStatus.PENDING.value,
    )


@router.get("/{request_id}/status")
async def get_status(
    request_id: str,
    request: Request,
    services: Services = Depends(get_services),
):
    user_id = resolve_user_id(request)
    if not user_id:
        return error_response(400, "user_required")
    try:
        status = services.delivery.status(request_id, user_id)
    except DeliveryError as e:
        return error_response(e.status_code, e.code)
    return StatusResponse(status=status.value)


@router.get("/{request_id}/mcp")
async def get_enrichment(
    request_id: str,
    request: Request,
    services: Services = Depends(get_services),
):
    user_id = resolve_user_id(request)
    if not user_id:
        return error_response(400, "user_required")
    try:
        return services.delivery.enrichment_result(request_id, user_id)
    except DeliveryError as e:
        return error_response(e.status_code, e.code)


@router.get("/{request_id}/stream")
async def stream_enrichment(
    request_id: str,
    request: Request,
    services: Services = Depends(get_services),
):
    """SSE channel carrying exactly one terminal enrichment event."""
    user_id = resolve_user_id(request)
    if not user_id:
        return error_response(400, "user_required")
    try:
        events = services.delivery.open_subscription(request_id, user_id)
    except DeliveryError as e:
        return error_response(e.status_code, e.code)
    return _event_stream(events)
