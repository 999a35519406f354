from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Optional, Sequence

from app.analytics.history import DEFAULT_HISTORY_WINDOW, history_messages
from app.analytics.types import ChatResponse, Plan
from app.llm.openai_client import OpenAIClient
from app.utils.prompt_loader import load_prompt

logger = logging.getLogger(__name__)

GENERAL_SYSTEM = load_prompt("general_chat_system.txt")

INVALID_INPUT_ANSWER = (
    'Please provide your question as text, for example: "Show me total COD sales for last month" or "Hi".'
)
DEFAULT_CHAT_ANSWER = "I am here to help with your ecommerce analytics questions."
SQL_REJECTED_ANSWER = (
    "I could not safely build a query for that. Please try rephrasing or narrowing your request "
    "(e.g., specify a time range, branch, or store)."
)
SQL_REJECTED_SUFFIX = "However, I couldn't run that safely. Please rephrase or narrow your question."
ERROR_ANSWER = (
    "Something went wrong while processing your request. "
    "Please try again with a slightly different or more specific question."
)
ERROR_PROMPT = (
    "The system had an internal issue while handling this user question: {question}. "
    "Respond in a friendly way and ask them to try again or narrow their query, "
    "without mentioning any technical errors or databases."
)


class FallbackMode(str, Enum):
    INVALID_INPUT = "invalid_input"
    SQL_REJECTED = "sql_rejected"
    FALLBACK = "fallback"
    ERROR_FALLBACK = "error_fallback"


class FallbackResponder:
    """
    Last-resort answers. Every response has ``rowCount == 0`` and never carries
    error text, SQL or identifiers. Oracle failures here end in a literal string.
    """

    def __init__(self, llm: OpenAIClient, history_window: int = DEFAULT_HISTORY_WINDOW):
        self.llm = llm
        self.history_window = history_window

    def general_chat(self, question: str, history: Optional[Sequence[Any]] = None) -> str:
        """Small-talk reply from the oracle; raises whatever the oracle raises."""
        messages = [{"role": "system", "content": GENERAL_SYSTEM}]
        messages += history_messages(history, self.history_window)
        messages.append({"role": "user", "content": question})
        return self.llm.complete(messages, temperature=0.7, max_tokens=400).strip()

    def _phrase(self, question: str, history: Optional[Sequence[Any]], literal: str) -> str:
        try:
            return self.general_chat(question, history) or literal
        except Exception:
            logger.error("Fallback chat error", exc_info=True)
            return literal

    def invalid_input(self) -> ChatResponse:
        return ChatResponse(answer=INVALID_INPUT_ANSWER, row_count=0, mode=FallbackMode.INVALID_INPUT.value)

    def empty_sql(self, question: str, history: Optional[Sequence[Any]] = None) -> ChatResponse:
        logger.warning("Empty SQL generated for SQL mode. Falling back to chat.")
        answer = self._phrase(question, history, DEFAULT_CHAT_ANSWER)
        return ChatResponse(answer=answer, row_count=0, mode=FallbackMode.FALLBACK.value)

    def sql_rejected(self, plan: Plan) -> ChatResponse:
        if plan.message:
            answer = f"{plan.message}\n\n{SQL_REJECTED_SUFFIX}"
        else:
            answer = SQL_REJECTED_ANSWER
        return ChatResponse(answer=answer, row_count=0, mode=FallbackMode.SQL_REJECTED.value)

    def internal_error(self, question: str, history: Optional[Sequence[Any]] = None) -> ChatResponse:
        answer = self._phrase(ERROR_PROMPT.format(question=question), history, ERROR_ANSWER)
        return ChatResponse(answer=answer, row_count=0, mode=FallbackMode.ERROR_FALLBACK.value)
