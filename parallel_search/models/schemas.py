from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict


# --- Requests ---


class UserContext(BaseModel):
    model_config = ConfigDict(extra="allow")

    userId: str | None = None


class SearchRequest(BaseModel):
    query: Any = None
    userContext: UserContext | None = None


class ResetRequest(BaseModel):
    userId: str | None = None


# --- Responses ---


class SearchResponse(BaseModel):
    requestId: str
    results: list[dict[str, Any]]
    status: str


class StatusResponse(BaseModel):
    status: str


class ResetResponse(BaseModel):
    ok: bool
    scope: str
    removed: bool | None = None
