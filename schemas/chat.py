from __future__ import annotations

import json
from enum import Enum
from typing import Any, Dict, Literal

from pydantic import BaseModel, Field, field_validator


Role = Literal["user", "assistant"]


class TurnState(str, Enum):
    IDLE = "idle"
    AWAITING_FIRST_FRAGMENT = "awaiting-first-fragment"
    STREAMING = "streaming"
    SETTLED = "settled"


class ChatMessage(BaseModel):
    role: Role
    text: str = ""
    state: TurnState = TurnState.SETTLED
    in_progress: bool = False

    @property
    def is_thinking(self) -> bool:
        return self.state is TurnState.AWAITING_FIRST_FRAGMENT


class ChatSendRequest(BaseModel):
    message: str = Field(min_length=1, max_length=4000)

    @field_validator("message")
    @classmethod
    def _strip_message(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("Message is required")
        return v


SSEEventType = Literal["thinking", "token", "done", "error"]


class SSEEvent(BaseModel):
    event: SSEEventType
    data: Dict[str, Any] = Field(default_factory=dict)


def format_sse(event: str, data: Dict[str, Any]) -> str:
    payload = json.dumps(data, separators=(",", ":"), ensure_ascii=False)
    return f"event: {event}\ndata: {payload}\n\n"
