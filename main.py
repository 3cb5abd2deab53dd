"""parallel-search

Small CLI: run the HTTP service, or push one query through both channels
in-process and print what each produced.
"""

import argparse
import asyncio
import json
import sys
from uuid import uuid4

from parallel_search.config import Settings
from parallel_search.main import build_services
from parallel_search.models.events import EventType


async def run_query(query: str, user_id: str, settings: Settings) -> int:
    """Stream the primary answer, then wait for enrichment to settle."""
    print(f"Query: {query}")
    print("-" * 50)

    services = build_services(settings)
    request_id = str(uuid4())
    services.store.create(request_id, user_id, query)
    user_context = {"userId": user_id, "previousContext": services.contexts.get(user_id)}

    services.enrichment.start(request_id, user_id, query, user_context)

    exit_code = 0
    async for event in services.answers.stream(request_id, user_id, query, user_context):
        if event.event == EventType.NORMAL_CHUNK:
            print(event.data.get("delta", ""), end="", flush=True)
        elif event.event == EventType.NORMAL_ERROR:
            print(f"\n[!] Primary answer failed: {event.data.get('message')}")
            exit_code = 1

    print("\n")
    print("[~] Waiting for enrichment...")
    await services.enrichment.drain()

    record = services.store.get(request_id)
    status = record.status.value if record else "missing"
    print(f"[*] Enrichment status: {status}")
    if record and record.results.mcp:
        print(json.dumps(record.results.mcp, ensure_ascii=False, indent=2)[:4000])
    return exit_code


def serve(settings: Settings) -> None:
    import uvicorn

    uvicorn.run(
        "parallel_search.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.noisy_log_level.lower(),
    )


def main():
    parser = argparse.ArgumentParser(description="parallel-search service")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("serve", help="Run the HTTP API")

    ask = subparsers.add_parser("ask", help="Run one query in-process")
    ask.add_argument("--query", "-q", required=True, help="User query")
    ask.add_argument("--user", "-u", default="cli", help="User id (default: cli)")

    args = parser.parse_args()
    settings = Settings()

    if args.command == "serve":
        serve(settings)
        return

    sys.exit(asyncio.run(run_query(args.query, args.user, settings)))


if __name__ == "__main__":
    main()
