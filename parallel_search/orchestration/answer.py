from __future__ import annotations

import time
from typing import Any, AsyncIterator

from loguru import logger

from parallel_search.models.events import SSEEvent
from parallel_search.providers.answer import AnswerError, AnswerStream
from parallel_search.services import logger as log_service
from parallel_search.services import streaming
from parallel_search.services.store import ContextStore, RequestStore


def normal_payload(query: str, answer: str, user_context: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "results": [
            {
                "type": "llm",
                "answer": answer,
                "source": "llm",
            }
        ],
        "meta": {
            "query": query.strip(),
            "userContext": _public_context(user_context),
        },
    }


def _public_context(user_context: dict[str, Any] | None) -> dict[str, Any] | None:
    if not user_context:
        return None
    public = {k: v for k, v in user_context.items() if k != "previousContext"}
    previous = user_context.get("previousContext")
    public["previousContext"] = previous.to_dict() if previous is not None else None
    return public


class AnswerOrchestrator:
    """Drives the primary-answer provider in buffered or incremental mode."""

    def __init__(self, store: RequestStore, contexts: ContextStore, stream_answer: AnswerStream):
        self.store = store
        self.contexts = contexts
        self.stream_answer = stream_answer

    async def buffered(
        self,
        request_id: str,
        user_id: str,
        query: str,
        user_context: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        started = time.monotonic()
        try:
            answer = "".join([chunk async for chunk in self.stream_answer(query, user_context or {})])
        except Exception as e:
            self._log_failure(request_id, started, e)
            raise AnswerError("normal_search_failed") from e

        payload = normal_payload(query, answer, user_context)
        self._commit(request_id, user_id, query, answer, payload)
        return payload

    async def stream(
        self,
        request_id: str,
        user_id: str,
        query: str,
        user_context: dict[str, Any] | None = None,
    ) -> AsyncIterator[SSEEvent]:
        started = time.monotonic()
        yield streaming.normal_start(request_id)

        parts: list[str] = []
        try:
            async for chunk in self.stream_answer(query, user_context or {}):
                parts.append(chunk)
                yield streaming.normal_chunk(chunk)
        except Exception as e:
            # Nothing is committed; the enrichment channel carries on.
            self._log_failure(request_id, started, e)
            yield streaming.normal_error(request_id)
            return

        answer = "".join(parts)
        self._commit(request_id, user_id, query, answer, normal_payload(query, answer, user_context))
        yield streaming.normal_done(request_id)

    def _commit(
        self,
        request_id: str,
        user_id: str,
        query: str,
        answer: str,
        payload: dict[str, Any],
    ) -> None:
        if not self.store.set_normal_result(request_id, payload):
            logger.debug(f"Primary answer for {request_id} not stored (expired or already set)")
        # Merge keeps any enrichment summary already recorded for the user.
        self.contexts.merge(user_id, query=query, answer=answer)

    @staticmethod
    def _log_failure(request_id: str, started: float, error: Exception) -> None:
        log_service.log_event(
            event_type="normal_failed",
            message="Primary answer provider failed",
            request_id=request_id,
            duration_ms=int((time.monotonic() - started) * 1000),
            error=str(error) or type(error).__name__,
        )
