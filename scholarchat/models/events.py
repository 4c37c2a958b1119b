from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventType(str, Enum):
    TRANSCRIPT_SNAPSHOT = "transcript_snapshot"
    MESSAGE_APPENDED = "message_appended"
    MESSAGE_UPDATED = "message_updated"
    TRANSCRIPT_RESET = "transcript_reset"
    ERROR = "error"


@dataclass
class SSEEvent:
    event: EventType
    data: dict[str, Any] = field(default_factory=dict)

    def format(self) -> str:
        return f"event: {self.event.value}\ndata: {json.dumps(self.data)}\n\n"
