"""Tests for buffered and incremental primary answers."""
import pytest

from parallel_search.models.events import EventType
from parallel_search.models.record import EnrichmentSummary
from parallel_search.orchestration.answer import AnswerOrchestrator
from parallel_search.providers.answer import AnswerError
from parallel_search.services.store import ContextStore, RequestStore


def fragments(*parts, fail_after=None):
    async def stream_answer(query, user_context):
        for index, part in enumerate(parts):
            if fail_after is not None and index == fail_after:
                raise RuntimeError("provider exploded")
            yield part

    return stream_answer


@pytest.fixture
def store(clock):
    return RequestStore(1000, clock=clock)


@pytest.fixture
def contexts():
    return ContextStore()


@pytest.mark.asyncio
async def test_buffered_concatenates_and_commits(store, contexts):
    store.create("r1", "u1", "선충이 뭐야?")
    orchestrator = AnswerOrchestrator(store, contexts, fragments("선충은 ", "동물이다."))

    payload = await orchestrator.buffered("r1", "u1", "선충이 뭐야?", {"userId": "u1"})

    assert payload["results"] == [{"type": "llm", "answer": "선충은 동물이다.", "source": "llm"}]
    assert payload["meta"]["query"] == "선충이 뭐야?"
    assert store.get("r1").results.normal == payload
    assert contexts.get("u1").answer == "선충은 동물이다."


@pytest.mark.asyncio
async def test_buffered_failure_raises_and_stores_nothing(store, contexts):
    store.create("r1", "u1", "q")
    orchestrator = AnswerOrchestrator(store, contexts, fragments("a", "b", fail_after=1))

    with pytest.raises(AnswerError):
        await orchestrator.buffered("r1", "u1", "q")

    assert store.get("r1").results.normal is None
    assert contexts.get("u1") is None


@pytest.mark.asyncio
async def test_answer_keeps_existing_enrichment_summary(store, contexts):
    summary = EnrichmentSummary(title="선충", extract="선형동물")
    contexts.merge("u1", query="old", summary=summary)
    store.create("r1", "u1", "new")
    orchestrator = AnswerOrchestrator(store, contexts, fragments("answer"))

    await orchestrator.buffered("r1", "u1", "new")

    entry = contexts.get("u1")
    assert entry.query == "new"
    assert entry.answer == "answer"
    assert entry.summary == summary


@pytest.mark.asyncio
async def test_stream_emits_start_chunks_done(store, contexts):
    store.create("r1", "u1", "q")
    orchestrator = AnswerOrchestrator(store, contexts, fragments("one ", "two"))

    events = [event async for event in orchestrator.stream("r1", "u1", "q")]

    assert [e.event for e in events] == [
        EventType.NORMAL_START,
        EventType.NORMAL_CHUNK,
        EventType.NORMAL_CHUNK,
        EventType.NORMAL_DONE,
    ]
    assert [e.data["delta"] for e in events[1:3]] == ["one ", "two"]
    assert events[0].data == {"requestId": "r1"}
    assert store.get("r1").results.normal["results"][0]["answer"] == "one two"


@pytest.mark.asyncio
async def test_stream_error_is_terminal_and_uncommitted(store, contexts):
    store.create("r1", "u1", "q")
    orchestrator = AnswerOrchestrator(store, contexts, fragments("one ", "two", fail_after=1))

    events = [event async for event in orchestrator.stream("r1", "u1", "q")]

    assert [e.event for e in events] == [
        EventType.NORMAL_START,
        EventType.NORMAL_CHUNK,
        EventType.NORMAL_ERROR,
    ]
    assert events[-1].data == {"requestId": "r1", "message": "normal_search_failed"}
    assert store.get("r1").results.normal is None


@pytest.mark.asyncio
async def test_payload_reports_context_as_it_was_when_request_started(store, contexts):
    contexts.merge("u1", query="old q", answer="old a")
    store.create("r1", "u1", "q")
    user_context = {"userId": "u1", "previousContext": contexts.get("u1")}

    async def stream_answer(query, ctx):
        # Another round for the same user lands while this answer is generated.
        contexts.merge("u1", query="new q", answer="new a")
        yield "answer"

    orchestrator = AnswerOrchestrator(store, contexts, stream_answer)
    payload = await orchestrator.buffered("r1", "u1", "q", user_context)

    previous = payload["meta"]["userContext"]["previousContext"]
    assert previous["query"] == "old q"
    assert previous["answer"] == "old a"
    assert contexts.get("u1").answer == "answer"
