from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class RequestStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not RequestStatus.PENDING


@dataclass
class RequestResults:
    normal: dict[str, Any] | None = None
    mcp: dict[str, Any] | None = None


@dataclass
class RequestRecord:
    request_id: str
    user_id: str
    query: str
    created_at: int
    expires_at: int
    status: RequestStatus = RequestStatus.PENDING
    results: RequestResults = field(default_factory=RequestResults)

    def is_expired(self, now_ms: int) -> bool:
        return now_ms > self.expires_at

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RequestRecord":
        results = data.get("results") or {}
        return cls(
            request_id=str(data["request_id"]),
            user_id=str(data["user_id"]),
            query=str(data["query"]),
            created_at=int(data["created_at"]),
            expires_at=int(data["expires_at"]),
            status=RequestStatus(data.get("status", RequestStatus.PENDING.value)),
            results=RequestResults(
                normal=results.get("normal"),
                mcp=results.get("mcp"),
            ),
        )


@dataclass
class EnrichmentSummary:
    title: str = ""
    extract: str = ""
    image: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any] | None) -> "EnrichmentSummary | None":
        """Build a compact summary from a wiki-style payload, if it has one."""
        if not isinstance(payload, dict):
            return None
        summary = payload.get("summary")
        if not isinstance(summary, dict) or not summary:
            return None
        original_image = summary.get("originalimage")
        image = original_image.get("source") if isinstance(original_image, dict) else None
        return cls(
            title=summary.get("title") or "",
            extract=summary.get("extract") or summary.get("description") or "",
            image=image,
        )


@dataclass
class PreviousContext:
    query: str = ""
    answer: str = ""
    summary: EnrichmentSummary | None = None
    updated_at: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_prompt(self) -> str:
        text = f"Previous context: {self.query} | {self.answer}"
        if self.summary and (self.summary.title or self.summary.extract):
            text += f"\nPrevious reference: {self.summary.title} - {self.summary.extract}"
        return text
