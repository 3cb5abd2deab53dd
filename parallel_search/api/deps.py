from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request
from fastapi.responses import JSONResponse

from parallel_search.config import Settings
from parallel_search.orchestration.answer import AnswerOrchestrator
from parallel_search.orchestration.enrichment import EnrichmentOrchestrator
from parallel_search.services.delivery import DeliveryService
from parallel_search.services.notifications import NotificationHub
from parallel_search.services.store import ContextStore, RequestStore

USER_HEADER = "x-user-id"


@dataclass
class Services:
    settings: Settings
    store: RequestStore
    contexts: ContextStore
    hub: NotificationHub
    delivery: DeliveryService
    enrichment: EnrichmentOrchestrator
    answers: AnswerOrchestrator


def get_services(request: Request) -> Services:
    return request.app.state.services


def resolve_user_id(request: Request, body_user_id: str | None = None) -> str | None:
    """Identity priority: ``x-user-id`` header, then body, then ``?userId=``."""
    header_user = request.headers.get(USER_HEADER)
    query_user = request.query_params.get("userId")
    return header_user or body_user_id or query_user or None


def error_response(status_code: int, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": code})
