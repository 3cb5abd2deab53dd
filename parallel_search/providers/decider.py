"""Delegate decision-makers for the tool-call gate.

A decider takes a prompt and returns the raw model text; parsing and the
timeout are handled by the gate.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable

from parallel_search.config import Settings
from parallel_search.providers.answer import DEFAULT_OPENAI_MODEL
from parallel_search.providers.codex import CodexError, run_codex_cli

Decider = Callable[[str], Awaitable[str]]


class DeciderError(RuntimeError):
    pass


async def codex_decide(prompt: str, *, settings: Settings) -> str:
    try:
        # The gate enforces the real deadline; this only stops a stuck process.
        return await run_codex_cli(settings, prompt, timeout_ms=settings.mcp_tool_timeout_ms)
    except CodexError as e:
        raise DeciderError(str(e)) from e


async def openai_decide(prompt: str, *, settings: Settings, client: Any | None = None) -> str:
    if client is None:
        if not settings.llm_api_key:
            raise DeciderError("LLM_API_KEY_REQUIRED")
        from openai import AsyncOpenAI

        client = AsyncOpenAI(api_key=settings.llm_api_key, base_url=settings.llm_api_base)

    try:
        response = await client.chat.completions.create(
            model=settings.llm_model or DEFAULT_OPENAI_MODEL,
            messages=[{"role": "user", "content": prompt}],
            temperature=0,
        )
    except Exception as e:
        raise DeciderError(str(e)) from e

    choices = getattr(response, "choices", None) or []
    if not choices:
        raise DeciderError("DECIDER_NO_OUTPUT")
    text = getattr(choices[0].message, "content", None)
    if not text:
        raise DeciderError("DECIDER_NO_OUTPUT")
    return text


def get_decider(settings: Settings) -> Decider:
    backend = settings.mcp_tool_decider.lower().strip()
    if backend == "openai":
        provider = openai_decide
    elif backend == "codex":
        provider = codex_decide
    else:
        raise ValueError(f"Unsupported MCP_TOOL_DECIDER: {settings.mcp_tool_decider}")

    async def decide(prompt: str) -> str:
        return await provider(prompt, settings=settings)

    return decide
