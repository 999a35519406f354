"""
Lexical safety gate for model-generated SQL.

This is a filter, not a parser. It trades precision for simplicity:

* it can over-block: an alias such as ``"Exec Summary"`` trips the ``EXEC`` rule;
* it can under-block in theory: it does not understand string literals or comments,
  so it relies on the statement shape (must start with SELECT/WITH, no ``;``) and a
  keyword denylist.

An optional second pass (``SQLSafetyConfig.parse_check``) uses sqlglot to require a
single read-only query. It only ever tightens the lexical verdict.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

import sqlglot
from sqlglot import exp
from sqlglot.errors import ParseError, TokenError

from app.analytics.errors import PolicyRejection

logger = logging.getLogger(__name__)


ALLOWED_PREFIXES = ("SELECT", "WITH")

# Entries ending in a space only match when followed by whitespace, so identifiers
# like CreatedDate or UpdatedBy are not caught by CREATE / UPDATE.
FORBIDDEN_TOKENS: tuple[str, ...] = (
    "INSERT ",
    "UPDATE ",
    "DELETE ",
    "MERGE ",
    "DROP ",
    "ALTER ",
    "TRUNCATE ",
    "EXEC ",
    "EXEC(",
    "EXECUTE ",
    "XP_",
    "SP_EXECUTESQL",
    "CREATE ",
    "ATTACH ",
    "DETACH ",
    "GRANT ",
    "REVOKE ",
    "INTO ",
    "OPENROWSET",
    "OPENQUERY",
)


def _token_pattern(token: str) -> re.Pattern[str]:
    body = re.escape(token.rstrip(" "))
    tail = r"\s" if token.endswith(" ") else ""
    # must start at a word boundary: "EXP_DATE" does not contain the XP_ token
    return re.compile(r"(?<![A-Z0-9_@#$])" + body + tail)


_FORBIDDEN_PATTERNS = tuple((t, _token_pattern(t)) for t in FORBIDDEN_TOKENS)

_WRITE_NODES = (
    exp.Insert,
    exp.Update,
    exp.Delete,
    exp.Drop,
    exp.Create,
    exp.Merge,
    exp.Into,
    exp.Command,
)


@dataclass(frozen=True)
class SQLSafetyConfig:
    """Configuration for SQL safety enforcement."""

    parse_check: bool = False
    dialect: str = "tsql"


class SQLSafetyError(PolicyRejection, ValueError):
    pass


def _lexical_rejection(sql: str) -> Optional[str]:
    normalized = sql.strip().upper()
    if not normalized.startswith(ALLOWED_PREFIXES):
        return "query must start with SELECT or WITH"
    if ";" in normalized:
        return "statement separators are not allowed"
    for token, pattern in _FORBIDDEN_PATTERNS:
        if pattern.search(normalized):
            return f"forbidden token {token.strip()!r}"
    return None


def _parse_rejection(sql: str, dialect: str) -> Optional[str]:
    try:
        statements = [s for s in sqlglot.parse(sql, read=dialect) if s is not None]
    except (ParseError, TokenError):
        return "query could not be parsed"
    if len(statements) != 1:
        return "exactly one statement is allowed"
    root = statements[0]
    if not isinstance(root, exp.Query):
        return "only SELECT queries are allowed"
    if root.find(*_WRITE_NODES) is not None:
        return "query contains a write operation"
    return None


def rejection_reason(sql: object, cfg: Optional[SQLSafetyConfig] = None) -> Optional[str]:
    """Return why ``sql`` is rejected, or None if it is admitted."""
    cfg = cfg or SQLSafetyConfig()
    if not isinstance(sql, str) or not sql.strip():
        return "empty SQL"
    reason = _lexical_rejection(sql)
    if reason is None and cfg.parse_check:
        reason = _parse_rejection(sql.strip(), cfg.dialect)
    return reason


def is_sql_safe(sql: object, cfg: Optional[SQLSafetyConfig] = None) -> bool:
    """Pure admit/reject verdict for generated SQL."""
    return rejection_reason(sql, cfg) is None


def enforce_sql_safety(sql: str, cfg: Optional[SQLSafetyConfig] = None) -> str:
    """
    Validate SQL and return it trimmed.
    Raises SQLSafetyError if unsafe.
    """
    reason = rejection_reason(sql, cfg)
    if reason is not None:
        logger.warning("Rejected unsafe SQL: %s", reason)
        raise SQLSafetyError(reason)
    return sql.strip()
