"""Tool-call gate: should the enrichment channel run, and with what keyword."""
from __future__ import annotations

import asyncio
import json
import re
import time
from dataclasses import dataclass
from typing import Any

from parallel_search.config import Settings
from parallel_search.providers.decider import Decider
from parallel_search.services import logger as log_service

HEURISTIC_PATTERNS = [
    re.compile(r"\b(what|who|where|when|why|how)\b", re.IGNORECASE),
    re.compile(r"설명|요약|정의|배경|역사|원리|구조|연구|논문|문헌|개요|소개"),
    re.compile(r"누구|무엇|뭐|어떤"),
    re.compile(r"위키|백과|정보"),
    re.compile(r"커넥텀|커넥톰"),
    re.compile(r"예쁜꼬마선충|선충|C\.?\s*elegans", re.IGNORECASE),
]

# Checked in order; longer terms come before the terms they contain.
KNOWN_TERMS = ["예쁜꼬마선충", "커넥텀", "커넥톰", "선충", "C. elegans", "C elegans"]

HANGUL_RUN = re.compile(r"[가-힣]{2,}")


@dataclass(frozen=True)
class ToolDecision:
    should_call: bool
    keyword: str
    source: str = "heuristic"  # heuristic | delegate | fallback


def should_call_by_heuristic(query: str) -> bool:
    return any(pattern.search(query) for pattern in HEURISTIC_PATTERNS)


def simple_keyword(query: str) -> str:
    for term in KNOWN_TERMS:
        if term in query:
            return term
    match = HANGUL_RUN.search(query)
    if match:
        return match.group(0)
    tokens = query.split()
    return tokens[0] if tokens else query


def heuristic_decision(query: str, source: str = "heuristic") -> ToolDecision:
    should_call = should_call_by_heuristic(query)
    return ToolDecision(
        should_call=should_call,
        keyword=simple_keyword(query) if should_call else "",
        source=source,
    )


def build_decider_prompt(query: str, user_context: dict[str, Any] | None) -> str:
    lines = [
        "너는 검색 도구 호출 여부를 결정하는 에이전트다.",
        "사용자 질의를 읽고 위키 검색 도구를 호출할지 판단해라.",
        "응답은 반드시 JSON으로만 출력한다.",
        '형식: {"shouldCallTool": true|false, "keyword": "검색어"}',
        "keyword는 1개의 한국어 검색어 또는 짧은 구로만 작성하라.",
        f"Query: {query}",
    ]
    user_id = (user_context or {}).get("userId")
    if user_id:
        lines.append(f"UserId: {user_id}")
    return "\n".join(lines)


def parse_decision(raw: str | None) -> dict[str, Any] | None:
    """Parse the delegate's JSON reply; tolerate prose around one object."""
    if not raw:
        return None
    trimmed = raw.strip()
    candidates = [trimmed]
    match = re.search(r"\{.*\}", trimmed, re.DOTALL)
    if match and match.group(0) != trimmed:
        candidates.append(match.group(0))
    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


async def decide_tool_call(
    query: str,
    user_context: dict[str, Any] | None,
    *,
    settings: Settings,
    decider: Decider | None,
) -> ToolDecision:
    """Combine the local heuristic with an optional delegate. Never raises."""
    safe_query = str(query or "").strip()
    heuristic = heuristic_decision(safe_query)

    if settings.uses_simple_tool_mode or decider is None:
        return heuristic

    prompt = build_decider_prompt(safe_query, user_context)
    started = time.monotonic()
    try:
        raw = await asyncio.wait_for(decider(prompt), timeout=settings.mcp_tool_timeout_ms / 1000)
    except Exception as e:
        log_service.log_provider_call(
            provider=settings.mcp_tool_decider,
            caller="tool_decider",
            duration_ms=int((time.monotonic() - started) * 1000),
            status="error",
            error=str(e) or type(e).__name__,
        )
        return heuristic_decision(safe_query, source="fallback")

    log_service.log_provider_call(
        provider=settings.mcp_tool_decider,
        caller="tool_decider",
        duration_ms=int((time.monotonic() - started) * 1000),
    )

    parsed = parse_decision(raw)
    if not parsed or not isinstance(parsed.get("shouldCallTool"), bool):
        return heuristic_decision(safe_query, source="fallback")

    # Never suppress a heuristic "yes".
    should_call = heuristic.should_call or parsed["shouldCallTool"]
    keyword = ""
    if should_call:
        delegate_keyword = parsed.get("keyword")
        keyword = str(delegate_keyword or simple_keyword(safe_query)).strip()
    return ToolDecision(should_call=should_call, keyword=keyword, source="delegate")
