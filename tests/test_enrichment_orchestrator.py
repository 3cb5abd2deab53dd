"""Tests for the enrichment orchestrator's race, retry and commit rules."""
import asyncio
from unittest.mock import AsyncMock

import pytest

from parallel_search.models.record import RequestStatus
from parallel_search.orchestration.enrichment import EnrichmentOrchestrator
from parallel_search.providers.enrichment import EnrichmentEmpty, EnrichmentError
from parallel_search.services.notifications import NotificationHub
from parallel_search.services.store import ContextStore, RequestStore

WIKI_PAYLOAD = {
    "source": "wikipedia",
    "query": "선충",
    "summary": {
        "title": "선충",
        "extract": "선충은 선형동물문에 속하는 동물이다.",
        "originalimage": {"source": "https://upload.example/nematode.png"},
    },
}


@pytest.fixture
def store(clock):
    return RequestStore(10_000, clock=clock, hub=NotificationHub())


@pytest.fixture
def contexts():
    return ContextStore()


def make_orchestrator(store, contexts, settings, lookup):
    return EnrichmentOrchestrator(store, contexts, settings, lookup=lookup)


@pytest.mark.asyncio
async def test_skip_marks_failed_without_calling_provider(store, contexts, settings):
    lookup = AsyncMock()
    orchestrator = make_orchestrator(store, contexts, settings, lookup)
    store.create("r1", "u1", "안녕하세요")

    status = await orchestrator.run("r1", "u1", "안녕하세요")

    assert status is RequestStatus.FAILED
    lookup.assert_not_awaited()
    assert store.get("r1").results.mcp is None


@pytest.mark.asyncio
async def test_success_commits_payload_and_summary(store, contexts, settings):
    lookup = AsyncMock(return_value=WIKI_PAYLOAD)
    orchestrator = make_orchestrator(store, contexts, settings, lookup)
    store.create("r1", "u1", "선충이 뭐야?")

    status = await orchestrator.run("r1", "u1", "선충이 뭐야?")

    assert status is RequestStatus.READY
    lookup.assert_awaited_once_with("선충")
    assert store.get("r1").results.mcp == WIKI_PAYLOAD

    entry = contexts.get("u1")
    assert entry.query == "선충이 뭐야?"
    assert entry.summary.title == "선충"
    assert entry.summary.image == "https://upload.example/nematode.png"


@pytest.mark.asyncio
async def test_summary_merge_keeps_existing_answer(store, contexts, settings):
    contexts.merge("u1", query="이전 질문", answer="이전 답변")
    orchestrator = make_orchestrator(store, contexts, settings, AsyncMock(return_value=WIKI_PAYLOAD))
    store.create("r1", "u1", "선충이 뭐야?")

    await orchestrator.run("r1", "u1", "선충이 뭐야?")

    entry = contexts.get("u1")
    assert entry.query == "이전 질문"
    assert entry.answer == "이전 답변"
    assert entry.summary.extract.startswith("선충은")


@pytest.mark.asyncio
async def test_empty_keyword_result_retries_with_raw_query(store, contexts, settings):
    lookup = AsyncMock(side_effect=[EnrichmentEmpty("MCP_WIKI_EMPTY"), {"source": "wikipedia"}])
    orchestrator = make_orchestrator(store, contexts, settings, lookup)
    store.create("r1", "u1", "선충이 뭐야?")

    status = await orchestrator.run("r1", "u1", "선충이 뭐야?")

    assert status is RequestStatus.READY
    assert [c.args[0] for c in lookup.await_args_list] == ["선충", "선충이 뭐야?"]


@pytest.mark.asyncio
async def test_empty_result_not_retried_when_keyword_equals_query(store, contexts, settings):
    lookup = AsyncMock(side_effect=EnrichmentEmpty("MCP_WIKI_EMPTY"))
    orchestrator = make_orchestrator(store, contexts, settings, lookup)
    store.create("r1", "u1", "선충")

    status = await orchestrator.run("r1", "u1", "선충")

    assert status is RequestStatus.FAILED
    lookup.assert_awaited_once_with("선충")


@pytest.mark.asyncio
async def test_other_errors_are_terminal(store, contexts, settings):
    lookup = AsyncMock(side_effect=EnrichmentError("MCP_WIKI_FAILED: HTTP_500"))
    orchestrator = make_orchestrator(store, contexts, settings, lookup)
    store.create("r1", "u1", "선충이 뭐야?")

    status = await orchestrator.run("r1", "u1", "선충이 뭐야?")

    assert status is RequestStatus.FAILED
    lookup.assert_awaited_once()


@pytest.mark.asyncio
async def test_unexpected_exception_is_folded_into_failed(store, contexts, settings):
    lookup = AsyncMock(side_effect=KeyError("boom"))
    orchestrator = make_orchestrator(store, contexts, settings, lookup)
    store.create("r1", "u1", "선충이 뭐야?")

    assert await orchestrator.run("r1", "u1", "선충이 뭐야?") is RequestStatus.FAILED


@pytest.mark.asyncio
async def test_timeout_fails_and_late_result_is_discarded(store, contexts):
    from parallel_search.config import Settings

    settings = Settings(mcp_tool_mode="simple", mcp_timeout_ms=50)
    release = asyncio.Event()
    finished = asyncio.Event()

    async def slow_lookup(keyword):
        await release.wait()
        finished.set()
        return WIKI_PAYLOAD

    orchestrator = make_orchestrator(store, contexts, settings, slow_lookup)
    store.create("r1", "u1", "선충이 뭐야?")

    status = await orchestrator.run("r1", "u1", "선충이 뭐야?")
    assert status is RequestStatus.FAILED

    # The abandoned call still runs to completion, but nothing is written.
    release.set()
    await orchestrator.drain()
    assert finished.is_set()
    record = store.get("r1")
    assert record.status is RequestStatus.FAILED
    assert record.results.mcp is None
    assert contexts.get("u1") is None


@pytest.mark.asyncio
async def test_result_after_expiry_is_discarded(store, contexts, settings, clock):
    async def lookup(keyword):
        clock.advance(20_000)
        return WIKI_PAYLOAD

    orchestrator = make_orchestrator(store, contexts, settings, lookup)
    store.create("r1", "u1", "선충이 뭐야?")

    status = await orchestrator.run("r1", "u1", "선충이 뭐야?")

    assert status is RequestStatus.EXPIRED
    assert store.get("r1").results.mcp is None


@pytest.mark.asyncio
async def test_start_runs_in_background(store, contexts, settings):
    orchestrator = make_orchestrator(store, contexts, settings, AsyncMock(return_value={"source": "mock"}))
    store.create("r1", "u1", "선충이 뭐야?")

    task = orchestrator.start("r1", "u1", "선충이 뭐야?")
    assert store.get("r1").status is RequestStatus.PENDING

    await orchestrator.drain()
    assert task.done()
    assert store.get("r1").status is RequestStatus.READY


@pytest.mark.asyncio
async def test_timeout_budget_includes_the_decision(store, contexts):
    from parallel_search.config import Settings

    settings = Settings(mcp_tool_mode="delegate", mcp_timeout_ms=100, mcp_tool_timeout_ms=1000)

    async def slow_decider(prompt):
        await asyncio.sleep(0.09)
        return '{"shouldCallTool": true, "keyword": "선충"}'

    async def slow_lookup(keyword):
        await asyncio.sleep(0.09)
        return WIKI_PAYLOAD

    orchestrator = EnrichmentOrchestrator(
        store, contexts, settings, lookup=slow_lookup, decider=slow_decider
    )
    store.create("r1", "u1", "선충이 뭐야?")

    status = await orchestrator.run("r1", "u1", "선충이 뭐야?")
    await orchestrator.drain()

    assert status is RequestStatus.FAILED
    record = store.get("r1")
    assert record.status is RequestStatus.FAILED
    assert record.results.mcp is None


@pytest.mark.asyncio
async def test_slow_decision_within_budget_still_succeeds(store, contexts):
    from parallel_search.config import Settings

    settings = Settings(mcp_tool_mode="delegate", mcp_timeout_ms=1000, mcp_tool_timeout_ms=1000)
    decider = AsyncMock(return_value='{"shouldCallTool": true, "keyword": "선충"}')
    orchestrator = EnrichmentOrchestrator(
        store, contexts, settings, lookup=AsyncMock(return_value=WIKI_PAYLOAD), decider=decider
    )
    store.create("r1", "u1", "안녕하세요")

    assert await orchestrator.run("r1", "u1", "안녕하세요") is RequestStatus.READY
    decider.assert_awaited_once()
