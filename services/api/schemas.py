from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from app.analytics.types import ChatResponse, ConversationTurn, coerce_turns

__all__ = ["ChatRequest", "ChatResponse", "HealthResponse"]


class ChatRequest(BaseModel):
    # a missing or non-text question is answered with invalid_input, not a 422
    question: Optional[Any] = None
    history: List[ConversationTurn] = Field(default_factory=list)

    @field_validator("history", mode="before")
    @classmethod
    def _lenient_history(cls, v: Any) -> List[ConversationTurn]:
        if not isinstance(v, list):
            return []
        return coerce_turns(v)


class HealthResponse(BaseModel):
    status: str
    message: Optional[str] = None
    endpoints: Dict[str, str] = Field(default_factory=dict)
