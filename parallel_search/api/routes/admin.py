from __future__ import annotations

from fastapi import APIRouter, Depends

from parallel_search.api.deps import Services, get_services
from parallel_search.models.schemas import ResetRequest, ResetResponse
from parallel_search.services import logger as log_service

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/reset", response_model=ResetResponse, response_model_exclude_none=True)
async def reset_context(
    payload: ResetRequest | None = None,
    services: Services = Depends(get_services),
):
    """Forget previous-context entries for one user, or for everyone."""
    user_id = payload.userId if payload else None
    if not user_id:
        services.contexts.clear_all()
        log_service.log_event(event_type="context_reset", message="Cleared all previous contexts")
        return ResetResponse(ok=True, scope="all")

    removed = services.contexts.clear(user_id)
    log_service.log_event(
        event_type="context_reset",
        message="Cleared previous context for user",
        user_id=user_id,
        removed=removed,
    )
    return ResetResponse(ok=True, scope="user", removed=removed)
