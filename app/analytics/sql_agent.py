from __future__ import annotations

import logging
from typing import Any, Dict, List

from sqlalchemy.exc import SQLAlchemyError

from app.analytics.errors import ExecutionError
from app.db.engine import ConnectionPool, ping

logger = logging.getLogger(__name__)


class SQLAgent:
    def __init__(self, pool: ConnectionPool):
        """SQL executor over the shared connection pool. Expects validator-admitted SQL."""
        self.pool = pool

    def execute(self, sql: str) -> List[Dict[str, Any]]:
        """Run ``sql`` and return its rows as plain dicts; any failure becomes ExecutionError."""
        engine = self.pool.get()
        logger.info("Executing SQL via SQLAlchemy")
        logger.debug("SQL: %s", sql)
        try:
            # no_parameters keeps LIKE '%...%' patterns away from DBAPI param formatting
            with engine.connect() as conn:
                result = conn.execution_options(no_parameters=True).exec_driver_sql(sql)
                rows = [dict(r._mapping) for r in result.fetchall()] if result.returns_rows else []
        except SQLAlchemyError as e:
            logger.error("Query execution error: %s", e, exc_info=True)
            raise ExecutionError("Query execution failed") from e
        logger.info("SQL executed successfully; rows=%s", len(rows))
        return rows

    def ping(self) -> bool:
        """True when the store answers ``SELECT 1``."""
        try:
            ping(self.pool.get())
        except (ExecutionError, SQLAlchemyError):
            logger.warning("Database ping failed", exc_info=True)
            return False
        return True
