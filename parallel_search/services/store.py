"""In-memory request record and previous-context stores.

All mutation methods are synchronous: on a single asyncio event loop each
call is atomic with respect to every other coroutine touching the same
record, which makes the store the single serialization point for writers.
"""
from __future__ import annotations

import time
from dataclasses import replace
from typing import Any, Callable

from parallel_search.models.record import (
    EnrichmentSummary,
    PreviousContext,
    RequestRecord,
    RequestStatus,
)
from parallel_search.services import streaming
from parallel_search.services.mirror import RecordMirror
from parallel_search.services.notifications import NotificationHub

Clock = Callable[[], int]


def system_clock() -> int:
    return int(time.time() * 1000)


class StoreError(Exception):
    """Base class for store lookup errors."""


class DuplicateRequestError(StoreError):
    pass


class RecordForbidden(StoreError):
    """The record exists but belongs to another user."""


class RequestStore:
    def __init__(
        self,
        ttl_ms: int,
        *,
        clock: Clock | None = None,
        hub: NotificationHub | None = None,
        mirror: RecordMirror | None = None,
        retention_ms: int | None = None,
    ):
        self.ttl_ms = int(ttl_ms)
        # How long an expired record keeps answering "expired" before eviction.
        self.retention_ms = self.ttl_ms if retention_ms is None else max(int(retention_ms), 0)
        self.clock = clock or system_clock
        self.hub = hub
        self.mirror = mirror
        self._records: dict[str, RequestRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    # --- creation / lookup ---

    def create(
        self,
        request_id: str,
        user_id: str,
        query: str,
        ttl_ms: int | None = None,
    ) -> RequestRecord:
        if request_id in self._records:
            raise DuplicateRequestError(f"request {request_id} already exists")
        now = self.clock()
        self.evict_expired(now)
        ttl = self.ttl_ms if ttl_ms is None else int(ttl_ms)
        record = RequestRecord(
            request_id=request_id,
            user_id=user_id,
            query=query,
            created_at=now,
            expires_at=now + ttl,
        )
        self._records[request_id] = record
        self._mirror(record)
        return record

    def get(self, request_id: str) -> RequestRecord | None:
        record = self._lookup(request_id)
        if record is None:
            return None
        self._reconcile_expiry(record)
        return record

    def get_for_owner(self, request_id: str, user_id: str) -> RequestRecord | None:
        """Owner-checked read.

        Ownership is checked before expiry reconciliation so a foreign caller
        learns only that the record exists.
        """
        record = self._lookup(request_id)
        if record is None:
            return None
        if record.user_id != user_id:
            raise RecordForbidden(request_id)
        self._reconcile_expiry(record)
        return record

    # --- mutations ---

    def set_normal_result(self, request_id: str, payload: dict[str, Any]) -> bool:
        record = self.get(request_id)
        if record is None or record.status is RequestStatus.EXPIRED:
            return False
        if record.results.normal is not None:
            return False
        record.results.normal = payload
        self._mirror(record)
        return True

    def set_enrichment_result(self, request_id: str, payload: dict[str, Any]) -> bool:
        record = self.get(request_id)
        if record is None or record.status is not RequestStatus.PENDING:
            return False
        record.results.mcp = payload
        record.status = RequestStatus.READY
        self._mirror(record)
        self._notify(record)
        return True

    def set_failed(self, request_id: str) -> bool:
        record = self.get(request_id)
        if record is None or record.status is not RequestStatus.PENDING:
            return False
        record.status = RequestStatus.FAILED
        self._mirror(record)
        self._notify(record)
        return True

    def delete(self, request_id: str) -> None:
        self._records.pop(request_id, None)
        if self.mirror is not None:
            self.mirror.delete(request_id)

    def evict_expired(self, now: int | None = None) -> int:
        """Drop records whose expiry is older than the retention window."""
        now = self.clock() if now is None else now
        stale = [
            request_id
            for request_id, record in self._records.items()
            if now > record.expires_at + self.retention_ms
        ]
        for request_id in stale:
            self.delete(request_id)
        return len(stale)

    # --- internals ---

    def _lookup(self, request_id: str) -> RequestRecord | None:
        record = self._records.get(request_id)
        if record is None and self.mirror is not None:
            record = self.mirror.load(request_id)
            if record is not None and self.clock() > record.expires_at + self.retention_ms:
                self.mirror.delete(request_id)
                record = None
            if record is not None:
                self._records[request_id] = record
        return record

    def _reconcile_expiry(self, record: RequestRecord) -> None:
        if record.status is RequestStatus.EXPIRED:
            return
        if not record.is_expired(self.clock()):
            return
        record.status = RequestStatus.EXPIRED
        # The payload is never served once expired.
        record.results.mcp = None
        self._mirror(record)
        self._notify(record)

    def _notify(self, record: RequestRecord) -> None:
        # Commit happens before this call, so observers re-reading the store
        # always see the terminal status.
        if self.hub is None:
            return
        self.hub.emit(record.request_id, streaming.terminal_event(record.request_id, record.status))

    def _mirror(self, record: RequestRecord) -> None:
        if self.mirror is not None:
            self.mirror.save(record)


class ContextStore:
    """Previous-context entries keyed by user id.

    Both orchestrators write here for the same user, so updates merge the
    provided fields into the existing entry instead of replacing it.
    """

    def __init__(self, *, clock: Clock | None = None):
        self.clock = clock or system_clock
        self._entries: dict[str, PreviousContext] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, user_id: str) -> PreviousContext | None:
        return self._entries.get(user_id)

    def merge(
        self,
        user_id: str,
        *,
        query: str | None = None,
        answer: str | None = None,
        summary: EnrichmentSummary | None = None,
    ) -> PreviousContext | None:
        if not user_id:
            return None
        # Entries are replaced, never mutated, so a caller holding the previous
        # entry keeps a stable snapshot.
        changes: dict[str, Any] = {"updated_at": self.clock()}
        if query is not None:
            changes["query"] = query
        if answer is not None:
            changes["answer"] = answer
        if summary is not None:
            changes["summary"] = summary
        entry = replace(self._entries.get(user_id) or PreviousContext(), **changes)
        self._entries[user_id] = entry
        return entry

    def clear(self, user_id: str) -> bool:
        if not user_id:
            return False
        return self._entries.pop(user_id, None) is not None

    def clear_all(self) -> None:
        self._entries.clear()
