from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, TypeVar

from loguru import logger

from parallel_search.config import Settings
from parallel_search.models.record import EnrichmentSummary, RequestStatus
from parallel_search.orchestration.decision import ToolDecision, decide_tool_call
from parallel_search.providers.decider import Decider, get_decider
from parallel_search.providers.enrichment import (
    EnrichmentEmpty,
    EnrichmentError,
    EnrichmentLookup,
    EnrichmentTimeout,
    get_enrichment_lookup,
)
from parallel_search.services import logger as log_service
from parallel_search.services.store import ContextStore, RequestStore

T = TypeVar("T")


class EnrichmentOrchestrator:
    """Runs the best-effort enrichment channel for one request at a time.

    The tool-call decision and the provider call share one timer. Whichever
    settles first wins; work that loses is left to finish on its own and its
    result is dropped.
    """

    def __init__(
        self,
        store: RequestStore,
        contexts: ContextStore,
        settings: Settings,
        *,
        lookup: EnrichmentLookup | None = None,
        decider: Decider | None = None,
    ):
        self.store = store
        self.contexts = contexts
        self.settings = settings
        self.lookup = lookup or get_enrichment_lookup(settings)
        if decider is None and not settings.uses_simple_tool_mode:
            decider = get_decider(settings)
        self.decider = decider
        self._tasks: set[asyncio.Task] = set()

    @property
    def timeout_s(self) -> float:
        return max(self.settings.mcp_timeout_ms, 0) / 1000

    def start(
        self,
        request_id: str,
        user_id: str,
        query: str,
        user_context: dict[str, Any] | None = None,
    ) -> asyncio.Task:
        """Schedule ``run`` in the background and keep a reference to it."""
        task = asyncio.create_task(self.run(request_id, user_id, query, user_context))
        self._track(task)
        return task

    async def drain(self) -> None:
        """Wait for every scheduled or abandoned task to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def run(
        self,
        request_id: str,
        user_id: str,
        query: str,
        user_context: dict[str, Any] | None = None,
    ) -> RequestStatus | None:
        started = time.monotonic()
        try:
            decision, payload = await self._race(self._decide_and_lookup(query, user_context))
        except EnrichmentError as e:
            self._fail(request_id, started, reason=str(e) or type(e).__name__)
            return self._status(request_id)
        except Exception as e:
            logger.exception(f"Unexpected enrichment failure for request {request_id}")
            self._fail(request_id, started, reason=f"unexpected: {e}")
            return self._status(request_id)

        if not decision.should_call:
            # Skipped and failed are deliberately indistinguishable to callers.
            self.store.set_failed(request_id)
            log_service.log_event(
                event_type="mcp_skipped",
                message="Enrichment not needed for query",
                request_id=request_id,
                duration_ms=self._elapsed_ms(started),
                decision_source=decision.source,
            )
            return self._status(request_id)

        keyword = decision.keyword or query
        if not self.store.set_enrichment_result(request_id, payload):
            log_service.log_event(
                event_type="enrichment_discarded",
                message="Enrichment settled after the request became terminal",
                request_id=request_id,
                duration_ms=self._elapsed_ms(started),
            )
            return self._status(request_id)

        summary = EnrichmentSummary.from_payload(payload)
        if summary is not None:
            existing = self.contexts.get(user_id)
            self.contexts.merge(
                user_id,
                query=None if existing else query,
                summary=summary,
            )

        log_service.log_event(
            event_type="mcp_ready",
            message="Enrichment ready",
            request_id=request_id,
            duration_ms=self._elapsed_ms(started),
            keyword=keyword,
            source=payload.get("source") if isinstance(payload, dict) else None,
        )
        return self._status(request_id)

    async def _decide_and_lookup(
        self,
        query: str,
        user_context: dict[str, Any] | None,
    ) -> tuple[ToolDecision, dict[str, Any] | None]:
        decision = await decide_tool_call(
            query,
            user_context,
            settings=self.settings,
            decider=self.decider,
        )
        if not decision.should_call:
            return decision, None
        payload = await self._lookup_with_retry(decision.keyword or query, query)
        return decision, payload

    async def _lookup_with_retry(self, keyword: str, query: str) -> dict[str, Any]:
        try:
            return await self.lookup(keyword)
        except EnrichmentEmpty:
            if keyword == query:
                raise
            logger.debug(f"Empty result for keyword {keyword!r}; retrying with raw query")
            return await self.lookup(query)

    async def _race(self, work: Awaitable[T]) -> T:
        task = asyncio.ensure_future(work)
        done, _ = await asyncio.wait({task}, timeout=self.timeout_s)
        if task in done:
            return task.result()
        self._abandon(task)
        raise EnrichmentTimeout("MCP_TIMEOUT")

    def _abandon(self, task: asyncio.Task) -> None:
        def _discard(finished: asyncio.Task) -> None:
            if finished.cancelled():
                return
            error = finished.exception()
            log_service.log_event(
                event_type="enrichment_discarded",
                message="Abandoned enrichment call settled after timeout",
                error=str(error) if error else None,
            )

        task.add_done_callback(_discard)
        self._track(task)

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _fail(self, request_id: str, started: float, *, reason: str) -> None:
        self.store.set_failed(request_id)
        log_service.log_event(
            event_type="mcp_failed",
            message="Enrichment failed",
            request_id=request_id,
            duration_ms=self._elapsed_ms(started),
            reason=reason,
        )

    def _status(self, request_id: str) -> RequestStatus | None:
        record = self.store.get(request_id)
        return record.status if record else None

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)
