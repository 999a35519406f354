from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

Role = Literal["user", "assistant"]
PlanMode = Literal["chat", "clarify", "sql"]

ResultRow = Dict[str, Any]


class ConversationTurn(BaseModel):
    """One caller-supplied chat message. Anything but ``assistant`` counts as a user turn."""

    model_config = ConfigDict(frozen=True)

    role: Role = "user"
    content: str = ""

    @field_validator("role", mode="before")
    @classmethod
    def _normalize_role(cls, v: Any) -> str:
        return "assistant" if v == "assistant" else "user"

    @field_validator("content", mode="before")
    @classmethod
    def _coerce_content(cls, v: Any) -> str:
        if v is None:
            return ""
        return v if isinstance(v, str) else str(v)

    def to_message(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


class Plan(BaseModel):
    """Router decision: how to answer one request."""

    model_config = ConfigDict(frozen=True)

    mode: PlanMode
    sql: Optional[str] = None
    message: Optional[str] = None

    @model_validator(mode="after")
    def _check_sql_matches_mode(self) -> "Plan":
        if self.mode != "sql" and self.sql is not None:
            raise ValueError("sql must be null unless mode is 'sql'")
        if self.mode == "sql" and self.sql is None:
            raise ValueError("sql mode requires a sql string")
        return self


class ResponseMeta(BaseModel):
    """Descriptive facts about an executed query, passed to the narrator."""

    model_config = ConfigDict(frozen=True)

    row_count: int
    sql: str


class ChatResponse(BaseModel):
    """Externally visible answer. Serialized with ``rowCount`` on the wire."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    answer: str
    row_count: Optional[int] = Field(default=None, alias="rowCount")
    mode: str

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


def coerce_turns(history: Optional[List[Any]]) -> List[ConversationTurn]:
    """Keep well-formed entries of caller history, dropping anything that isn't a mapping."""
    turns: List[ConversationTurn] = []
    for item in history or []:
        if isinstance(item, ConversationTurn):
            turns.append(item)
        elif isinstance(item, dict):
            turns.append(ConversationTurn.model_validate(item))
    return turns
