"""Enrichment (knowledge source) providers.

Each provider resolves a keyword to a structured payload or raises
``EnrichmentError``; ``EnrichmentEmpty`` marks "nothing found for this
keyword", which the orchestrator may retry with the raw query.
"""
from __future__ import annotations

import asyncio
import re
from typing import Any, Awaitable, Callable
from urllib.parse import quote

import httpx
from bs4 import BeautifulSoup

from parallel_search.config import Settings

EnrichmentLookup = Callable[[str], Awaitable[dict[str, Any]]]


class EnrichmentError(RuntimeError):
    pass


class EnrichmentEmpty(EnrichmentError):
    pass


class EnrichmentTimeout(EnrichmentError):
    pass


def _normalize_text(text: str) -> str:
    text = text.replace("\xa0", " ")
    return re.sub(r"\s+", " ", text).strip()


async def mock_lookup(keyword: str, *, settings: Settings) -> dict[str, Any]:
    safe_query = keyword.strip()
    delay_s = max(settings.mcp_simulated_delay_ms, 0) / 1000
    if delay_s:
        await asyncio.sleep(delay_s)

    return {
        "source": "mock",
        "query": safe_query,
        "results": [
            {
                "title": f'MCP expanded insight for "{safe_query}"',
                "url": "https://mcp.example.com/insights",
                "snippet": "Parallel MCP result placeholder. Replace with MCP integration output.",
            },
            {
                "title": "MCP supplemental dataset",
                "url": "https://mcp.example.com/datasets",
                "snippet": "Additional context returned by MCP sources.",
            },
        ],
    }


async def wikipedia_lookup(keyword: str, *, settings: Settings) -> dict[str, Any]:
    """Search the wiki for the best page and fetch its REST summary."""
    base = settings.mcp_wiki_base.rstrip("/")
    headers = {"User-Agent": settings.mcp_user_agent, "Accept": "application/json"}

    try:
        async with httpx.AsyncClient(timeout=settings.mcp_http_timeout_s) as client:
            search_response = await client.get(
                f"{base}/w/rest.php/v1/search/page",
                params={"q": keyword, "limit": 1},
                headers=headers,
            )
            if search_response.status_code >= 400:
                raise EnrichmentError(f"MCP_WIKI_FAILED: HTTP_{search_response.status_code}")
            search_payload = search_response.json()

            pages = search_payload.get("pages") or []
            first = pages[0] if pages else {}
            title = first.get("title") if isinstance(first, dict) else None
            if not title:
                raise EnrichmentEmpty("MCP_WIKI_EMPTY")

            summary_response = await client.get(
                f"{base}/api/rest_v1/page/summary/{quote(title, safe='')}",
                headers=headers,
            )
            if summary_response.status_code >= 400:
                raise EnrichmentError(f"MCP_WIKI_FAILED: HTTP_{summary_response.status_code}")
            summary = summary_response.json()
    except httpx.HTTPError as e:
        raise EnrichmentError(f"MCP_WIKI_FAILED: {e}") from e
    except ValueError as e:
        raise EnrichmentError(f"MCP_WIKI_FAILED: invalid JSON ({e})") from e

    return {
        "source": "wikipedia",
        "query": keyword,
        "search": search_payload,
        "summary": summary,
    }


def extract_namuwiki_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    root = soup.select_one("#app")
    if root is None:
        return ""
    parts = []
    for child in root.find_all(True):
        for node in child.find_all(string=True, recursive=False):
            text = node.strip()
            if text:
                parts.append(text)
    return _normalize_text(" ".join(parts))


async def namuwiki_lookup(keyword: str, *, settings: Settings) -> dict[str, Any]:
    safe_title = keyword.strip()
    url = f"{settings.mcp_namu_base.rstrip('/')}/w/{quote(safe_title, safe='')}"
    headers = {
        "User-Agent": settings.mcp_user_agent,
        "Accept-Language": "ko-KR,ko;q=0.9,en;q=0.7",
    }

    try:
        async with httpx.AsyncClient(timeout=settings.mcp_http_timeout_s) as client:
            response = await client.get(url, headers=headers)
            if response.status_code >= 400:
                raise EnrichmentError(f"MCP_NAMU_FAILED: HTTP_{response.status_code}")
            html = response.text
    except httpx.HTTPError as e:
        raise EnrichmentError(f"MCP_NAMU_FAILED: {e}") from e

    content = extract_namuwiki_text(html)
    if not content:
        raise EnrichmentEmpty("MCP_WIKI_EMPTY: namuwiki page has no text")

    return {
        "source": "namuwiki",
        "query": safe_title,
        "content": content,
    }


def get_enrichment_lookup(settings: Settings) -> EnrichmentLookup:
    """Pick the enrichment provider from configuration."""
    if settings.mcp_use_mock:
        provider = mock_lookup
    else:
        name = settings.mcp_provider.lower().strip()
        if name == "wikipedia":
            provider = wikipedia_lookup
        elif name == "namuwiki":
            provider = namuwiki_lookup
        else:
            raise ValueError(f"Unsupported MCP_PROVIDER: {settings.mcp_provider}")

    async def lookup(keyword: str) -> dict[str, Any]:
        return await provider(keyword, settings=settings)

    return lookup
