from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from app.analytics.types import ConversationTurn, coerce_turns

DEFAULT_HISTORY_WINDOW = 4


def recent_turns(
    history: Optional[Sequence[Any]],
    limit: int = DEFAULT_HISTORY_WINDOW,
) -> List[ConversationTurn]:
    """Return at most the last ``limit`` turns, oldest first."""
    if limit <= 0:
        return []
    return coerce_turns(list(history or []))[-limit:]


def history_messages(
    history: Optional[Sequence[Any]],
    limit: int = DEFAULT_HISTORY_WINDOW,
) -> List[Dict[str, str]]:
    return [t.to_message() for t in recent_turns(history, limit)]
