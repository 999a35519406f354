from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Sequence

from app.analytics.errors import InputError, PolicyRejection
from app.analytics.fallback import DEFAULT_CHAT_ANSWER, FallbackResponder
from app.analytics.history import DEFAULT_HISTORY_WINDOW, recent_turns
from app.analytics.narrator import Narrator
from app.analytics.router import Router
from app.analytics.sql_agent import SQLAgent
from app.analytics.sql_safety import SQLSafetyConfig, enforce_sql_safety
from app.analytics.types import ChatResponse, ConversationTurn, ResponseMeta

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    START = "start"
    ROUTED = "routed"
    VALIDATED = "validated"
    EXECUTED = "executed"
    NARRATED = "narrated"
    FALLBACK = "fallback"
    DONE = "done"


@dataclass
class PipelineOutcome:
    response: Optional[ChatResponse] = None
    stages: List[Stage] = field(default_factory=lambda: [Stage.START])


def validate_question(question: Any) -> str:
    """Return the trimmed question; raises InputError if it is missing or not text."""
    if not isinstance(question, str) or not question.strip():
        raise InputError("question must be a non-empty string")
    return question.strip()


class ChatPipeline:
    """
    One request, one pass:

        start -> routed -> [sql] validated -> executed -> narrated -> done

    Any stage may divert to ``fallback -> done``. Nothing is retried and no state
    survives the request.
    """

    def __init__(
        self,
        router: Router,
        executor: SQLAgent,
        narrator: Narrator,
        fallback: FallbackResponder,
        safety_cfg: Optional[SQLSafetyConfig] = None,
        history_window: int = DEFAULT_HISTORY_WINDOW,
    ):
        self.router = router
        self.executor = executor
        self.narrator = narrator
        self.fallback = fallback
        self.safety_cfg = safety_cfg or SQLSafetyConfig()
        self.history_window = history_window

    def handle(self, question: Any, history: Optional[Sequence[Any]] = None) -> ChatResponse:
        return self.run(question, history).response

    def run(self, question: Any, history: Optional[Sequence[Any]] = None) -> PipelineOutcome:
        outcome = PipelineOutcome()

        try:
            question = validate_question(question)
        except InputError:
            logger.info("Invalid chat input")
            return self._finish(outcome, self.fallback.invalid_input(), fallback=True)

        turns = recent_turns(history if isinstance(history, (list, tuple)) else None, self.history_window)
        try:
            return self._run(outcome, question, turns)
        except Exception:
            # Never leak internal errors; the detail stays in the log.
            logger.error("Chat pipeline internal error", exc_info=True)
            return self._finish(outcome, self.fallback.internal_error(question, turns), fallback=True)

    def _run(self, outcome: PipelineOutcome, question: str, turns: List[ConversationTurn]) -> PipelineOutcome:
        plan = self.router.route(question, turns)
        outcome.stages.append(Stage.ROUTED)

        if plan.mode in ("chat", "clarify"):
            answer = plan.message or DEFAULT_CHAT_ANSWER
            return self._finish(outcome, ChatResponse(answer=answer, row_count=None, mode=plan.mode))

        sql_text = (plan.sql or "").strip()
        if not sql_text:
            return self._finish(outcome, self.fallback.empty_sql(question, turns), fallback=True)

        try:
            sql_text = enforce_sql_safety(sql_text, self.safety_cfg)
        except PolicyRejection:
            logger.debug("Blocked SQL: %s", sql_text)
            return self._finish(outcome, self.fallback.sql_rejected(plan), fallback=True)
        outcome.stages.append(Stage.VALIDATED)

        rows = self.executor.execute(sql_text)
        outcome.stages.append(Stage.EXECUTED)

        meta = ResponseMeta(row_count=len(rows), sql=sql_text)
        answer = self.narrator.narrate(question, rows, meta)
        outcome.stages.append(Stage.NARRATED)

        return self._finish(outcome, ChatResponse(answer=answer, row_count=len(rows), mode="sql"))

    def _finish(self, outcome: PipelineOutcome, response: ChatResponse, fallback: bool = False) -> PipelineOutcome:
        if fallback:
            outcome.stages.append(Stage.FALLBACK)
        outcome.stages.append(Stage.DONE)
        outcome.response = response
        logger.info(
            "Chat handled: mode=%s rows=%s stages=%s",
            response.mode,
            response.row_count,
            "->".join(s.value for s in outcome.stages),
        )
        return outcome
