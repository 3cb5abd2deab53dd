from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventType(str, Enum):
    NORMAL_START = "normal-start"
    NORMAL_CHUNK = "normal-chunk"
    NORMAL_DONE = "normal-done"
    NORMAL_ERROR = "normal-error"
    ENRICHMENT_READY = "enrichment-ready"
    ENRICHMENT_FAILED = "enrichment-failed"
    ENRICHMENT_EXPIRED = "enrichment-expired"


@dataclass
class SSEEvent:
    event: EventType
    data: dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> dict[str, str]:
        """Shape expected by sse_starlette's EventSourceResponse."""
        return {
            "event": self.event.value,
            "data": json.dumps(self.data, ensure_ascii=False),
        }
