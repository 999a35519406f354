from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence

from app.analytics.forecasting import (
    Forecast,
    build_forecast,
    find_entity_ambiguity,
    format_number,
    growth_rates,
    is_forecast_question,
    is_id_column,
    rows_frame,
    summarize_metrics,
)
from app.analytics.types import ResponseMeta
from app.llm.openai_client import OpenAIClient
from app.utils.prompt_loader import load_prompt

logger = logging.getLogger(__name__)

SYSTEM = load_prompt("narrator_system.txt")

NO_DATA_ANSWER = (
    "I couldn't find any matching records for those filters. "
    "Please double-check the names you used (store, branch, courier, city) and the date range, "
    "or try a broader filter."
)

MAX_PROMPT_ROWS = 200

_NUM_RE = re.compile(r"(?<![A-Za-z0-9_.])(\d{1,3}(?:,\d{3})+|\d+)(\.\d+)?(?:\s?([kKmM])(?![A-Za-z]))?")
_SCALE = {"k": 1e3, "m": 1e6}


def _numbers_in_text(s: str) -> List[float]:
    """Return every number in the text, with thousands separators and k/m suffixes resolved."""
    out = []
    for m in _NUM_RE.finditer(s):
        value = float(m.group(1).replace(",", "") + (m.group(2) or ""))
        if m.group(3):
            value *= _SCALE[m.group(3).lower()]
        out.append(value)
    return out


def _numbers_in_rows(rows: Sequence[Dict[str, Any]]) -> List[float]:
    """Return all numbers found within a JSON dump of result rows."""
    blob = json.dumps(list(rows), default=str)
    return _numbers_in_text(blob)


def _is_supported(value: float, allowed: Iterable[float]) -> bool:
    if value.is_integer() and (value <= 31 or 1900 <= value <= 2100):
        # counts of periods, days and calendar years
        return True
    for a in allowed:
        if abs(value - a) <= max(0.005 * abs(a), 0.01):
            return True
    return False


def public_rows(rows: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Rows without internal identifier columns; unchanged if ids are all there is."""
    out = [{k: v for k, v in r.items() if not is_id_column(k)} for r in rows]
    if out and not any(out):
        return [dict(r) for r in rows]
    return out


class Narrator:
    def __init__(self, llm: OpenAIClient):
        """Create a data narrator using the provided LLM client."""
        self.llm = llm

    def narrate(self, question: str, rows: Sequence[Dict[str, Any]], meta: ResponseMeta) -> str:
        """
        Turn result rows into a business explanation.

        Empty results and ambiguous entity matches are answered without the LLM.
        Forecast questions always carry a labeled projection computed from the rows,
        and the answer may only use numbers found in the rows or in those calculations.
        """
        logger.info("Narrating answer; rows=%s", meta.row_count)
        if not rows:
            return NO_DATA_ANSWER

        forecast: Optional[Forecast] = None
        if is_forecast_question(question):
            ambiguity = find_entity_ambiguity(question, rows)
            if ambiguity is not None:
                return ambiguity.answer()
            forecast = build_forecast(question, rows)

        shown = public_rows(rows)
        calculations = self._calculations(shown, forecast)
        allowed = self._allowed_numbers(question, shown, calculations, forecast)

        answer = self._ask(question, shown, meta, calculations).strip()
        extra = [n for n in _numbers_in_text(answer) if not _is_supported(n, allowed)]
        if extra:
            logger.warning("LLM introduced unsupported numbers: %s", sorted(set(extra)))
            answer = self._ask(question, shown, meta, calculations, unsupported=extra).strip()
            extra = [n for n in _numbers_in_text(answer) if not _is_supported(n, allowed)]
            if extra:
                logger.warning("Unsupported numbers remain after rewrite; using data summary")
                answer = describe_rows(shown)

        if not answer:
            answer = describe_rows(shown)
        if forecast is not None and not self._mentions_projection(answer, forecast):
            answer = f"{answer}\n\n{forecast.summary()}"

        logger.info("Answer narrated successfully")
        return answer

    def _calculations(
        self, rows: Sequence[Dict[str, Any]], forecast: Optional[Forecast]
    ) -> Dict[str, Any]:
        calc: Dict[str, Any] = {"metrics": summarize_metrics(rows)}
        if forecast is not None:
            calc["forecast"] = {
                "method": forecast.method,
                "horizon_periods": forecast.horizon,
                "periods_used": forecast.periods_used,
                "projections": {p.label: list(p.values) for p in forecast.projections},
            }
        return calc

    def _allowed_numbers(
        self,
        question: str,
        rows: Sequence[Dict[str, Any]],
        calculations: Dict[str, Any],
        forecast: Optional[Forecast],
    ) -> List[float]:
        allowed = _numbers_in_rows(rows)
        allowed += _numbers_in_text(question)
        allowed += _numbers_in_text(json.dumps(calculations, default=str))
        allowed += growth_rates(rows)
        if forecast is not None:
            allowed += forecast.numbers()
        return allowed

    def _mentions_projection(self, answer: str, forecast: Forecast) -> bool:
        projected = forecast.numbers()
        return any(
            abs(n - v) <= max(0.005 * abs(v), 0.01)
            for n in _numbers_in_text(answer)
            for v in projected
        )

    def _ask(
        self,
        question: str,
        rows: Sequence[Dict[str, Any]],
        meta: ResponseMeta,
        calculations: Dict[str, Any],
        unsupported: Optional[List[float]] = None,
    ) -> str:
        payload = {
            "question": question,
            "meta": {
                "rowCount": meta.row_count,
                "rowsShown": min(len(rows), MAX_PROMPT_ROWS),
            },
            "calculations": calculations,
            "rows": list(rows[:MAX_PROMPT_ROWS]),
        }
        user = json.dumps(payload, default=str, ensure_ascii=False)
        if unsupported:
            user = (
                "Your previous answer included numbers that are not in the rows or the calculations: "
                f"{sorted(set(unsupported))}.\n"
                "Rewrite the answer using ONLY numbers from the rows or the calculations.\n\n"
                + user
            )
        return self.llm.text(SYSTEM, user, temperature=0.5, max_tokens=1200)


def describe_rows(rows: Sequence[Dict[str, Any]]) -> str:
    """Plain summary of the rows, used when the narrative can't be trusted."""
    if len(rows) == 1:
        parts = [f"- {k}: {_format_value(v)}" for k, v in rows[0].items()]
        return "Here is what the data shows:\n" + "\n".join(parts)
    lines = [f"Here is what the data shows ({len(rows)} rows):"]
    for metric, stats in summarize_metrics(rows).items():
        lines.append(
            f"- {metric}: total {format_number(stats['total'])}, "
            f"average {format_number(stats['average'])}"
        )
    if len(lines) == 1:
        columns = ", ".join(str(c) for c in rows_frame(rows).columns)
        lines.append(f"- columns: {columns}")
    return "\n".join(lines)


def _format_value(value: Any) -> str:
    if isinstance(value, bool) or value is None:
        return str(value)
    try:
        return format_number(float(value))
    except (TypeError, ValueError):
        return str(value)
