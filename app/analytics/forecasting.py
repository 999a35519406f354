"""
Deterministic arithmetic over result rows: projections, summaries, entity checks.

Everything here is computed in-process so the narrator can disclose exactly how a
figure was derived and so numeric claims can be checked against the data.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

DEFAULT_HORIZON = 3
MAX_HORIZON = 24
MAX_CANDIDATES = 5
MAX_METRICS = 3
MAX_ENTITIES = 10

_WORD_NUMBERS = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6,
    "seven": 7, "eight": 8, "nine": 9, "ten": 10, "eleven": 11, "twelve": 12,
    "eighteen": 18, "twenty-four": 24,
}

_FORECAST_RE = re.compile(
    r"\b(forecast\w*|predict\w*|projection\w*|projected|project|extrapolat\w*|estimate\w*)\b"
    r"|\bnext\s+(?:[\w-]+\s+)?(?:days?|weeks?|months?|quarters?|years?)\b",
    re.IGNORECASE,
)
_HORIZON_RE = re.compile(
    r"\bnext\s+(\d{1,3}|" + "|".join(_WORD_NUMBERS) + r")\s+(?:days?|weeks?|months?|quarters?|years?)\b",
    re.IGNORECASE,
)

_ENTITY_WORDS = {
    "name", "store", "branch", "city", "area", "courier", "product",
    "customer", "brand", "seller", "merchant", "vendor", "client", "sku",
}
_PERIOD_WORDS = {
    "month", "date", "period", "year", "week", "quarter", "day", "yr",
    "yearmonth", "ym", "time", "datetime",
}
# words too generic to identify an entity in a question
_STOP_WORDS = {
    "the", "and", "for", "of", "in", "on", "at", "to", "by", "with", "from", "is", "are",
    "be", "will", "what", "how", "much", "many", "me", "my", "our", "please", "show",
    "next", "last", "this", "total", "sales", "sale", "orders", "order", "amount", "cod",
    "forecast", "predict", "projection", "projected", "estimate", "trend", "expected",
    "day", "days", "week", "weeks", "month", "months", "quarter", "quarters", "year", "years",
}
_BREAKDOWN_RE = re.compile(
    r"\b(per|each|every|compare|comparison|versus|vs|breakdown|split)\b"
    r"|\b(?:by|all|across)\s+(?:the\s+)?(?:stores?|branch(?:es)?|cit(?:y|ies)|areas?|couriers?|"
    r"products?|customers?|brands?|sellers?|merchants?|vendors?|clients?)\b",
    re.IGNORECASE,
)


def _name_words(column: str) -> List[str]:
    return [w.lower() for w in re.findall(r"[A-Z]+(?![a-z])|[A-Z]?[a-z]+|\d+", str(column))]


def is_id_column(column: str) -> bool:
    words = _name_words(column)
    return "id" in words or "guid" in words


def is_period_column(column: str) -> bool:
    return any(w in _PERIOD_WORDS for w in _name_words(column))


def is_entity_column(column: str) -> bool:
    return not is_id_column(column) and any(w in _ENTITY_WORDS for w in _name_words(column))


def to_number(value: Any) -> float:
    """Float for int/float/Decimal values, NaN for everything else (bools included)."""
    if isinstance(value, bool) or value is None:
        return float("nan")
    if isinstance(value, (int, float, Decimal, np.integer, np.floating)):
        return float(value)
    return float("nan")


def format_number(value: float) -> str:
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,.2f}"


def is_forecast_question(question: str) -> bool:
    return bool(_FORECAST_RE.search(question or ""))


def asks_for_breakdown(question: str) -> bool:
    return bool(_BREAKDOWN_RE.search(question or ""))


def forecast_horizon(question: str, default: int = DEFAULT_HORIZON) -> int:
    m = _HORIZON_RE.search(question or "")
    if not m:
        return default
    raw = m.group(1).lower()
    n = int(raw) if raw.isdigit() else _WORD_NUMBERS.get(raw, default)
    return max(1, min(MAX_HORIZON, n))


def rows_frame(rows: Sequence[Dict[str, Any]]) -> pd.DataFrame:
    return pd.DataFrame.from_records(list(rows))


def period_columns(df: pd.DataFrame) -> List[str]:
    return [c for c in df.columns if is_period_column(c)]


def metric_columns(df: pd.DataFrame) -> List[str]:
    """Columns whose non-null values are all numeric, excluding periods and ids."""
    metrics = []
    for c in df.columns:
        if is_period_column(c) or is_id_column(c):
            continue
        present = df[c].dropna()
        if present.empty:
            continue
        numeric = present.map(to_number)
        if numeric.notna().all():
            metrics.append(c)
    return metrics


def entity_column(df: pd.DataFrame) -> Optional[str]:
    for c in df.columns:
        if not is_entity_column(c) or is_period_column(c):
            continue
        present = df[c].dropna()
        if not present.empty and present.map(lambda v: isinstance(v, str)).all():
            return c
    return None


def distinct_values(df: pd.DataFrame, column: str) -> List[str]:
    seen: List[str] = []
    for v in df[column].dropna():
        s = str(v).strip()
        if s and s not in seen:
            seen.append(s)
    return seen


def _time_series(df: pd.DataFrame, metric: str) -> pd.Series:
    """Metric values in the order the store returned the periods; rows sharing a period are summed."""
    values = df[metric].map(to_number)
    periods = period_columns(df)
    if not periods:
        return values.dropna().reset_index(drop=True)
    frame = df[periods].copy()
    frame["_value"] = values
    # labels such as "2024-1" or "January" do not sort chronologically as text
    series = frame.groupby(periods, sort=False, dropna=False)["_value"].sum(min_count=1)
    return series.dropna().reset_index(drop=True)


def _words(text: Any) -> List[str]:
    return re.findall(r"[a-z0-9]+", str(text).lower())


def mentioned_entities(question: str, names: Sequence[str]) -> List[str]:
    """Names that appear in the question as whole phrases, case-insensitively."""
    q = (question or "").lower()
    return [
        n for n in names
        if re.search(r"(?<![a-z0-9])" + re.escape(n.lower()) + r"(?![a-z0-9])", q)
    ]


def _referenced_group(question: str, names: Sequence[str]) -> List[str]:
    """
    Largest set of names that share a word the question uses, when the question
    does not spell each of them out. "Sunset" matches both "Sunset" and
    "Sunset Arrive"; "Sunset and Trend Arabia" references two distinct names.
    """
    named = set(mentioned_entities(question, names))
    best: List[str] = []
    for word in dict.fromkeys(_words(question)):
        if len(word) < 2 or word in _STOP_WORDS:
            continue
        group = [n for n in names if word in _words(n)]
        if len(group) >= 2 and not set(group) <= named and len(group) > len(best):
            best = group
    return best


@dataclass(frozen=True)
class MetricProjection:
    metric: str
    values: tuple[float, ...]
    entity: Optional[str] = None

    @property
    def label(self) -> str:
        return f"{self.metric} ({self.entity})" if self.entity else self.metric


@dataclass(frozen=True)
class Forecast:
    horizon: int
    periods_used: int
    method: str
    projections: tuple[MetricProjection, ...]

    def numbers(self) -> List[float]:
        return [v for p in self.projections for v in p.values]

    def summary(self) -> str:
        lines = [
            f"Projection (estimate, method: {self.method}) for the next {self.horizon} period(s):"
        ]
        for p in self.projections:
            lines.append(f"- {p.label}: " + ", ".join(format_number(v) for v in p.values))
        lines.append("These are estimates based on past data, not guarantees.")
        return "\n".join(lines)


def _project(series: pd.Series, horizon: int) -> tuple[List[float], str]:
    y = series.to_numpy(dtype=float)
    n = len(y)
    if n >= 3:
        x = np.arange(n, dtype=float)
        slope, intercept = np.polyfit(x, y, 1)
        future = np.arange(n, n + horizon, dtype=float)
        raw = slope * future + intercept
        method = f"linear trend over the last {n} periods"
    else:
        raw = np.full(horizon, y.mean())
        method = f"average of the last {n} period{'s' if n != 1 else ''}"
    return [round(max(0.0, float(v)), 2) for v in raw], method


def _split_by_entity(question: str, df: pd.DataFrame) -> Optional[str]:
    """Entity column to project separately, when the question wants entities kept apart."""
    column = entity_column(df)
    if column is None:
        return None
    names = distinct_values(df, column)
    if len(names) < 2:
        return None
    if asks_for_breakdown(question) or len(mentioned_entities(question, names)) >= 2:
        return column
    return None


def build_forecast(question: str, rows: Sequence[Dict[str, Any]]) -> Optional[Forecast]:
    """
    Project each metric column forward; None when the rows hold no numeric metric.
    Breakdown questions, or questions naming several entities, get one projection
    per entity instead of a merged one.
    """
    if not rows:
        return None
    df = rows_frame(rows)
    metrics = metric_columns(df)[:MAX_METRICS]
    if not metrics:
        logger.info("No numeric metric to project")
        return None
    horizon = forecast_horizon(question)

    groups: List[tuple[Optional[str], pd.DataFrame]] = [(None, df)]
    column = _split_by_entity(question, df)
    if column is not None:
        keys = df[column].map(lambda v: str(v).strip() if v is not None else v)
        groups = [(name, df[keys == name]) for name in distinct_values(df, column)[:MAX_ENTITIES]]

    projections = []
    method = ""
    periods_used = 0
    for entity, frame in groups:
        for metric in metrics:
            series = _time_series(frame, metric)
            if series.empty:
                continue
            values, method = _project(series, horizon)
            periods_used = max(periods_used, len(series))
            projections.append(MetricProjection(metric=str(metric), values=tuple(values), entity=entity))
    if not projections:
        return None
    logger.info(
        "Forecast built: projections=%s horizon=%s per_entity=%s",
        len(projections), horizon, column is not None,
    )
    return Forecast(
        horizon=horizon,
        periods_used=periods_used,
        method=method,
        projections=tuple(projections),
    )


def summarize_metrics(rows: Sequence[Dict[str, Any]]) -> Dict[str, Dict[str, float]]:
    """Totals, averages, extremes and first-to-last growth for each metric column."""
    if not rows:
        return {}
    df = rows_frame(rows)
    out: Dict[str, Dict[str, float]] = {}
    for metric in metric_columns(df)[:MAX_METRICS]:
        series = _time_series(df, metric)
        if series.empty:
            continue
        stats = {
            "total": round(float(series.sum()), 2),
            "average": round(float(series.mean()), 2),
            "min": round(float(series.min()), 2),
            "max": round(float(series.max()), 2),
        }
        first, last = float(series.iloc[0]), float(series.iloc[-1])
        if len(series) > 1 and first != 0:
            stats["growth_pct"] = round((last - first) / abs(first) * 100, 2)
        out[str(metric)] = stats
    return out


def growth_rates(rows: Sequence[Dict[str, Any]]) -> List[float]:
    """Period-over-period percentage changes for every metric, used to vet narrated figures."""
    if not rows:
        return []
    df = rows_frame(rows)
    rates: List[float] = []
    for metric in metric_columns(df)[:MAX_METRICS]:
        series = _time_series(df, metric)
        changes = (series.diff() / series.shift().abs() * 100).replace([np.inf, -np.inf], np.nan).dropna()
        rates.extend(round(float(v), 2) for v in changes)
    return rates


@dataclass(frozen=True)
class EntityAmbiguity:
    column: str
    candidates: tuple[str, ...]
    hidden: int
    metric: Optional[str]
    totals: Dict[str, float]

    def answer(self) -> str:
        names = ", ".join(f'"{c}"' for c in self.candidates)
        more = f" (and {self.hidden} more)" if self.hidden else ""
        lines = [
            f"I found more than one match for that name: {names}{more}. "
            "Which one do you mean? I haven't combined them into a single forecast, "
            "because that would mix different businesses.",
        ]
        if self.metric and self.totals:
            lines.append("")
            lines.append(f"Quick summary from the data ({self.metric}):")
            for c in self.candidates:
                if c in self.totals:
                    lines.append(f"- {c}: {format_number(self.totals[c])}")
        return "\n".join(lines)


def find_entity_ambiguity(question: str, rows: Sequence[Dict[str, Any]]) -> Optional[EntityAmbiguity]:
    """
    Detect a question reference that matches several entities in the rows, e.g.
    "Sunset" against "Sunset" and "Sunset Arrive". Questions that ask for a
    breakdown (per store, compare, ...) are never ambiguous, nor are questions
    that spell out each matching name.
    """
    if not rows or asks_for_breakdown(question):
        return None
    df = rows_frame(rows)
    column = entity_column(df)
    if column is None:
        return None
    names = _referenced_group(question, distinct_values(df, column))
    if len(names) < 2:
        return None
    shown = names[:MAX_CANDIDATES]
    metrics = metric_columns(df)
    metric = metrics[0] if metrics else None
    totals: Dict[str, float] = {}
    if metric is not None:
        keys = df[column].map(lambda v: str(v).strip() if v is not None else v)
        values = df[metric].map(to_number)
        for name in shown:
            totals[name] = round(float(values[keys == name].sum()), 2)
    logger.info("Entity ambiguity on column=%s candidates=%s", column, len(names))
    return EntityAmbiguity(
        column=str(column),
        candidates=tuple(shown),
        hidden=len(names) - len(shown),
        metric=str(metric) if metric is not None else None,
        totals=totals,
    )
