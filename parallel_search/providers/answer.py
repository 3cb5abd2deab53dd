"""Primary-answer providers.

Every provider is an async generator ``(query, user_context) -> text
fragments``; timeouts and commit logic belong to the orchestrator.
"""
from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Callable

from parallel_search.config import Settings
from parallel_search.models.record import PreviousContext
from parallel_search.providers.codex import CodexError, iter_agent_messages

AnswerStream = Callable[[str, dict[str, Any]], AsyncIterator[str]]

SYSTEM_PROMPT = "You are a concise search assistant."
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"


class AnswerError(RuntimeError):
    pass


def _previous_context(user_context: dict[str, Any] | None) -> PreviousContext | None:
    if not user_context:
        return None
    previous = user_context.get("previousContext")
    return previous if isinstance(previous, PreviousContext) else None


def build_messages(query: str, user_context: dict[str, Any] | None) -> list[dict[str, str]]:
    messages = [{"role": "system", "content": SYSTEM_PROMPT}]
    previous = _previous_context(user_context)
    if previous is not None:
        messages.append({"role": "system", "content": previous.to_prompt()})
    messages.append({"role": "user", "content": query.strip()})
    return messages


def build_cli_prompt(query: str, user_context: dict[str, Any] | None) -> str:
    lines = ["You are a concise search assistant. Answer the user query in Korean."]
    previous = _previous_context(user_context)
    if previous is not None:
        lines.append(previous.to_prompt())
    lines.append(f"User query: {query.strip()}")
    user_id = (user_context or {}).get("userId")
    if user_id:
        lines.append(f"User id: {user_id}")
    return "\n".join(lines)


async def mock_stream_answer(
    query: str,
    user_context: dict[str, Any] | None,
    *,
    settings: Settings,
) -> AsyncIterator[str]:
    content = f'LLM mock answer for "{query.strip()}". This is a placeholder streaming response.'
    delay_s = max(settings.llm_mock_delay_ms, 0) / 1000
    for word in content.split(" "):
        if delay_s:
            await asyncio.sleep(delay_s)
        yield f"{word} "


async def openai_stream_answer(
    query: str,
    user_context: dict[str, Any] | None,
    *,
    settings: Settings,
    client: Any | None = None,
) -> AsyncIterator[str]:
    """Stream deltas from an OpenAI-compatible chat completions endpoint."""
    if client is None:
        if not settings.llm_api_key:
            raise AnswerError("LLM_API_KEY_REQUIRED")
        from openai import AsyncOpenAI

        client = AsyncOpenAI(api_key=settings.llm_api_key, base_url=settings.llm_api_base)

    kwargs: dict[str, Any] = {
        "model": settings.llm_model or DEFAULT_OPENAI_MODEL,
        "messages": build_messages(query, user_context),
        "stream": True,
    }
    user_id = (user_context or {}).get("userId")
    if user_id:
        kwargs["user"] = str(user_id)

    try:
        stream = await client.chat.completions.create(**kwargs)
    except Exception as e:
        raise AnswerError(f"LLM_STREAM_FAILED: {e}") from e

    async for chunk in stream:
        choices = getattr(chunk, "choices", None) or []
        if not choices:
            continue
        delta = getattr(choices[0], "delta", None)
        text = getattr(delta, "content", None) if delta else None
        if text:
            yield text


async def codex_stream_answer(
    query: str,
    user_context: dict[str, Any] | None,
    *,
    settings: Settings,
) -> AsyncIterator[str]:
    """Run the codex CLI and re-chunk each agent message for streaming."""
    prompt = build_cli_prompt(query, user_context)
    chunk_size = max(settings.llm_chunk_size, 1)
    delay_s = max(settings.llm_chunk_delay_ms, 0) / 1000
    try:
        async for text in iter_agent_messages(settings, prompt, settings.llm_timeout_ms):
            for offset in range(0, len(text), chunk_size):
                yield text[offset : offset + chunk_size]
                if delay_s:
                    await asyncio.sleep(delay_s)
    except CodexError as e:
        raise AnswerError(str(e)) from e


def get_answer_stream(settings: Settings) -> AnswerStream:
    """Pick the primary provider from configuration."""
    if settings.llm_use_mock:
        provider = mock_stream_answer
    elif settings.llm_provider.lower().strip() == "openai":
        provider = openai_stream_answer
    else:
        provider = codex_stream_answer

    def stream_answer(query: str, user_context: dict[str, Any]) -> AsyncIterator[str]:
        return provider(query, user_context, settings=settings)

    return stream_answer
