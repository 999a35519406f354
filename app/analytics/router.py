from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from app.analytics.errors import DecodeError
from app.analytics.history import DEFAULT_HISTORY_WINDOW, history_messages
from app.analytics.types import Plan
from app.llm.openai_client import OpenAIClient
from app.utils.prompt_loader import load_prompt

logger = logging.getLogger(__name__)


# -----------------------------
# Prompt
# -----------------------------
ROUTER_SYSTEM = load_prompt("router_system.txt")

SCHEMA_HEADER = (
    "======================\n"
    "SCHEMA (SOURCE OF TRUTH)\n"
    "======================"
)

UNREADABLE_ANSWER = "Sorry, I could not understand that. Please try asking your question again."

VALID_MODES = ("chat", "clarify", "sql")


# -----------------------------
# Decoding
# -----------------------------
def decode_plan(raw: str) -> Any:
    """Parse oracle text as JSON. Raises DecodeError on anything unparseable."""
    try:
        return json.loads(raw)
    except (TypeError, ValueError, RecursionError) as e:
        raise DecodeError("router output is not valid JSON") from e


def normalize_plan(raw: str) -> Plan:
    """
    Turn untrusted oracle text into a valid Plan. Never raises.

    Each field is repaired on its own: an unknown mode becomes ``chat``, a
    non-string sql in sql mode becomes ``""``, a non-string message becomes None.
    Text that isn't JSON at all is treated as the chat reply itself.
    """
    try:
        obj = decode_plan(raw)
    except DecodeError:
        logger.warning("Failed to parse router JSON from LLM; treating as chat")
        logger.debug("Raw router output: %s", raw)
        return Plan(mode="chat", sql=None, message=raw if isinstance(raw, str) else None)

    if not isinstance(obj, dict):
        logger.warning("Router output is not a JSON object")
        return Plan(mode="chat", sql=None, message=UNREADABLE_ANSWER)

    mode = obj.get("mode")
    if mode not in VALID_MODES:
        mode = "chat"

    sql = obj.get("sql")
    if mode != "sql":
        sql = None
    elif not isinstance(sql, str):
        sql = ""

    message = obj.get("message")
    if message is not None and not isinstance(message, str):
        message = None

    return Plan(mode=mode, sql=sql, message=message)


# -----------------------------
# Router
# -----------------------------
class Router:
    """Classifies a question as chat / clarify / sql and, for sql, asks the LLM for the query."""

    def __init__(
        self,
        llm: OpenAIClient,
        schema_description: str,
        history_window: int = DEFAULT_HISTORY_WINDOW,
    ):
        self.llm = llm
        self.schema_description = schema_description
        self.history_window = history_window

    def system_prompt(self) -> str:
        return f"{ROUTER_SYSTEM}\n\n{SCHEMA_HEADER}\n{self.schema_description}"

    def build_messages(self, question: str, history: Optional[Sequence[Any]] = None) -> List[Dict[str, str]]:
        messages = [{"role": "system", "content": self.system_prompt()}]
        messages += history_messages(history, self.history_window)
        messages.append({"role": "user", "content": question})
        return messages

    def route(self, question: str, history: Optional[Sequence[Any]] = None) -> Plan:
        """Ask the LLM for a plan and normalize whatever comes back."""
        logger.debug("Routing question: %s", question)
        raw = self.llm.complete(
            self.build_messages(question, history),
            temperature=0.1,
            max_tokens=700,
            json_mode=True,
        )
        plan = normalize_plan(raw)
        logger.info("Router decision: mode=%s has_sql=%s", plan.mode, bool(plan.sql))
        return plan
