from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine
from dotenv import load_dotenv

from app.analytics.errors import ConfigError, ExecutionError

load_dotenv()

logger = logging.getLogger(__name__)

REQUIRED_ENV = ("DB_SERVER", "DB_DATABASE", "DB_USER", "DB_PASSWORD")


@dataclass(frozen=True)
class DBConfig:
    host: str
    port: int
    database: str
    user: str
    password: str
    driver: str = "mssql+pymssql"
    url: Optional[str] = None
    pool_size: int = 10
    pool_recycle_s: int = 30
    query_timeout_s: int = 30


def get_db_config() -> DBConfig:
    return DBConfig(
        host=os.getenv("DB_SERVER", ""),
        port=int(os.getenv("DB_PORT", "1433")),
        database=os.getenv("DB_DATABASE", ""),
        user=os.getenv("DB_USER", ""),
        password=os.getenv("DB_PASSWORD", ""),
        driver=os.getenv("DB_DRIVER", "mssql+pymssql"),
        url=os.getenv("DATABASE_URL") or None,
        pool_size=int(os.getenv("DB_POOL_SIZE", "10")),
        pool_recycle_s=int(os.getenv("DB_POOL_RECYCLE_S", "30")),
        query_timeout_s=int(os.getenv("DB_QUERY_TIMEOUT_S", "30")),
    )


def build_url(cfg: DBConfig) -> str | URL:
    """Return the SQLAlchemy URL for ``cfg``; names missing settings, never their values."""
    if cfg.url:
        return cfg.url
    values = {
        "DB_SERVER": cfg.host,
        "DB_DATABASE": cfg.database,
        "DB_USER": cfg.user,
        "DB_PASSWORD": cfg.password,
    }
    missing = [key for key in REQUIRED_ENV if not values[key]]
    if missing:
        raise ConfigError(f"Missing required database environment variables: {', '.join(missing)}")
    return URL.create(
        cfg.driver,
        username=cfg.user,
        password=cfg.password,
        host=cfg.host,
        port=cfg.port,
        database=cfg.database,
    )


def create_db_engine(cfg: DBConfig) -> Engine:
    connect_args = {}
    if cfg.driver.startswith("mssql+pymssql") and not cfg.url:
        connect_args = {"timeout": cfg.query_timeout_s, "login_timeout": cfg.query_timeout_s}
    return create_engine(
        build_url(cfg),
        pool_pre_ping=True,
        pool_size=cfg.pool_size,
        max_overflow=0,
        pool_recycle=cfg.pool_recycle_s,
        pool_timeout=cfg.query_timeout_s,
        connect_args=connect_args,
    )


def ping(engine: Engine) -> None:
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))


class ConnectionPool:
    """
    Owner of the shared store engine.

    The engine is created on first use and kept for the life of the process.
    If creation (or the first ping) fails nothing is cached, so the next call
    tries again. Creation is serialized so concurrent requests never build two.
    """

    def __init__(
        self,
        cfg: Optional[DBConfig] = None,
        factory: Optional[Callable[[DBConfig], Engine]] = None,
    ):
        self.cfg = cfg or get_db_config()
        self._factory = factory or create_db_engine
        self._engine: Optional[Engine] = None
        self._lock = threading.Lock()

    @property
    def is_ready(self) -> bool:
        return self._engine is not None

    def get(self) -> Engine:
        engine = self._engine
        if engine is not None:
            return engine
        with self._lock:
            if self._engine is None:
                self._engine = self._create()
            return self._engine

    def _create(self) -> Engine:
        logger.info("Creating database connection pool")
        try:
            engine = self._factory(self.cfg)
        except Exception as e:
            logger.error("Database connection failed: %s", e, exc_info=True)
            raise ExecutionError("Database connection failed") from e
        try:
            ping(engine)
        except Exception as e:
            logger.error("Database connection failed: %s", e, exc_info=True)
            engine.dispose()
            raise ExecutionError("Database connection failed") from e
        return engine

    def reset(self) -> None:
        """Drop the cached engine so the next ``get`` recreates it."""
        with self._lock:
            engine, self._engine = self._engine, None
        if engine is not None:
            engine.dispose()
            logger.info("Database connection pool disposed")
