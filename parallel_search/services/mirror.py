from __future__ import annotations

import json
import re
from pathlib import Path

from parallel_search.models.record import RequestRecord
from parallel_search.services import logger as log_service

MIRROR_VERSION = 1

VALID_REQUEST_ID = re.compile(r"[A-Za-z0-9_-]+")


class RecordMirror:
    """Best-effort JSON copy of request records on local disk.

    The in-memory store stays the source of truth; the mirror only lets a
    restarted process answer reads for records it no longer holds.
    """

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def path_for(self, request_id: str) -> Path:
        if not VALID_REQUEST_ID.fullmatch(request_id or ""):
            raise ValueError(f"request id not mirrorable: {request_id!r}")
        return self.directory / f"request_{request_id}.json"

    def save(self, record: RequestRecord) -> None:
        try:
            path = self.path_for(record.request_id)
            payload = {"version": MIRROR_VERSION, "record": record.to_dict()}
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
        except (OSError, TypeError, ValueError) as e:
            log_service.log_event(
                event_type="mirror_failed",
                message="Failed to mirror request record",
                request_id=record.request_id,
                error=str(e),
            )

    def load(self, request_id: str) -> RequestRecord | None:
        if not VALID_REQUEST_ID.fullmatch(request_id or ""):
            return None
        path = self.path_for(request_id)
        if not path.exists():
            return None

        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None

        if not isinstance(payload, dict) or payload.get("version") != MIRROR_VERSION:
            return None

        raw = payload.get("record")
        if not isinstance(raw, dict):
            return None

        try:
            record = RequestRecord.from_dict(raw)
        except (KeyError, TypeError, ValueError):
            return None
        # A file renamed by hand must not answer for another id.
        return record if record.request_id == request_id else None

    def delete(self, request_id: str) -> None:
        if VALID_REQUEST_ID.fullmatch(request_id or ""):
            self.path_for(request_id).unlink(missing_ok=True)
