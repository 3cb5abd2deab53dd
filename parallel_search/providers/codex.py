"""Helpers for driving the local ``codex`` CLI as a text provider."""
from __future__ import annotations

import asyncio
import json
from typing import AsyncIterator

from parallel_search.config import Settings


class CodexError(RuntimeError):
    pass


def codex_args(settings: Settings, prompt: str) -> list[str]:
    args = [settings.codex_bin, "exec", "--json", "--skip-git-repo-check", "--color", "never"]
    if settings.llm_model:
        args.extend(["-m", settings.llm_model])
    args.append(prompt)
    return args


def parse_agent_message(line: str) -> str | None:
    """Return the agent message text carried by one JSONL event line."""
    trimmed = line.strip()
    if not trimmed:
        return None
    try:
        parsed = json.loads(trimmed)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict) or parsed.get("type") != "item.completed":
        return None
    item = parsed.get("item") or {}
    if item.get("type") != "agent_message":
        return None
    text = item.get("text")
    return text if isinstance(text, str) and text else None


async def iter_agent_messages(settings: Settings, prompt: str, timeout_ms: int) -> AsyncIterator[str]:
    """Yield each agent message emitted by ``codex exec --json``.

    The subprocess is killed once ``timeout_ms`` elapses; a timeout, spawn
    failure or non-zero exit raises ``CodexError`` after the messages already
    read have been yielded.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *codex_args(settings, prompt),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise CodexError(str(e)) from e

    # stderr is read concurrently; a full stderr pipe would stall codex.
    assert proc.stderr is not None
    stderr_task = asyncio.ensure_future(proc.stderr.read())

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_ms / 1000
    timed_out = False
    finished = False
    try:
        assert proc.stdout is not None
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                timed_out = True
                break
            try:
                raw = await asyncio.wait_for(proc.stdout.readline(), timeout=remaining)
            except asyncio.TimeoutError:
                timed_out = True
                break
            if not raw:
                break
            text = parse_agent_message(raw.decode("utf-8", errors="replace"))
            if text:
                yield text
        finished = True
    finally:
        # Reader gave up early or the deadline passed: don't leave codex running.
        if proc.returncode is None and (timed_out or not finished):
            proc.kill()
        if not finished:
            stderr_task.cancel()

    if timed_out:
        await proc.wait()
        stderr_task.cancel()
        raise CodexError("CODEX_TIMEOUT")

    stderr = await stderr_task
    exit_code = await proc.wait()
    if exit_code != 0:
        detail = stderr.decode("utf-8", errors="replace").strip()
        raise CodexError(detail or "CODEX_FAILED")


async def run_codex_cli(settings: Settings, prompt: str, timeout_ms: int) -> str:
    """Run codex once and return its last agent message."""
    output = ""
    async for text in iter_agent_messages(settings, prompt, timeout_ms):
        output = text
    if not output:
        raise CodexError("CODEX_NO_OUTPUT")
    return output
