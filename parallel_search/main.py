from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from parallel_search.api.deps import Services
from parallel_search.api.routes import admin, search
from parallel_search.config import Settings, settings as default_settings
from parallel_search.orchestration.answer import AnswerOrchestrator
from parallel_search.orchestration.enrichment import EnrichmentOrchestrator
from parallel_search.providers.answer import AnswerStream, get_answer_stream
from parallel_search.providers.decider import Decider
from parallel_search.providers.enrichment import EnrichmentLookup
from parallel_search.services.delivery import DeliveryService
from parallel_search.services.mirror import RecordMirror
from parallel_search.services.notifications import NotificationHub
from parallel_search.services.store import Clock, ContextStore, RequestStore


def build_services(
    settings: Settings,
    *,
    clock: Clock | None = None,
    lookup: EnrichmentLookup | None = None,
    decider: Decider | None = None,
    stream_answer: AnswerStream | None = None,
) -> Services:
    """Wire stores, hub and orchestrators for one application instance."""
    hub = NotificationHub()
    mirror = RecordMirror(settings.record_mirror_dir) if settings.record_mirror_dir else None
    store = RequestStore(
        settings.search_ttl_ms,
        clock=clock,
        hub=hub,
        mirror=mirror,
        retention_ms=settings.search_retention_ms,
    )
    contexts = ContextStore(clock=clock)
    return Services(
        settings=settings,
        store=store,
        contexts=contexts,
        hub=hub,
        delivery=DeliveryService(store, hub),
        enrichment=EnrichmentOrchestrator(
            store,
            contexts,
            settings,
            lookup=lookup,
            decider=decider,
        ),
        answers=AnswerOrchestrator(store, contexts, stream_answer or get_answer_stream(settings)),
    )


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    settings = settings or default_settings
    services = services or build_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        # Let in-flight enrichment settle so its outcome is logged.
        await services.enrichment.drain()

    app = FastAPI(
        title="parallel-search",
        description="Primary answer plus best-effort wiki enrichment, per request",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(search.router)
    app.include_router(admin.router)

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "parallel-search"}

    return app


app = create_app()
