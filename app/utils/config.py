from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional, Tuple

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


@dataclass(frozen=True)
class AppConfig:
    """Process-wide settings consumed by the chat pipeline and the API."""

    schema_description_path: Optional[str] = None
    history_window: int = 4
    log_level: str = "INFO"
    cors_origins: Tuple[str, ...] = ("*",)
    sql_parse_check: bool = False


def get_app_config() -> AppConfig:
    origins = tuple(
        o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()
    )
    return AppConfig(
        schema_description_path=os.getenv("SCHEMA_DESCRIPTION_PATH") or None,
        history_window=max(0, _env_int("HISTORY_WINDOW", 4)),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        cors_origins=origins or ("*",),
        sql_parse_check=_env_bool("SQL_PARSE_CHECK", False),
    )
