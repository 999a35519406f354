import threading
import time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from app.analytics.errors import ConfigError, ExecutionError
from app.analytics.sql_agent import SQLAgent
from app.db.engine import ConnectionPool, DBConfig, build_url
from fakes import empty_db_config


def test_execute_returns_row_dicts(sqlite_pool):
    agent = SQLAgent(sqlite_pool)
    rows = agent.execute(
        "SELECT Store_Name, SUM(COD_Amount) AS Total FROM AllOrderReport "
        "WHERE LOWER(Store_Name) LIKE LOWER('%sunset%') GROUP BY Store_Name ORDER BY Store_Name"
    )
    assert rows == [
        {"Store_Name": "Sunset", "Total": 4000.0},
        {"Store_Name": "Sunset Arrive", "Total": 2500.0},
    ]


def test_engine_errors_are_opaque(sqlite_pool):
    with pytest.raises(ExecutionError) as exc:
        SQLAgent(sqlite_pool).execute("SELECT missing_column FROM AllOrderReport")
    assert "missing_column" not in str(exc.value)


def test_pool_is_created_once():
    created = []

    def factory(_cfg):
        created.append(1)
        return create_engine("sqlite://", poolclass=StaticPool)

    pool = ConnectionPool(empty_db_config(), factory=factory)
    assert pool.get() is pool.get()
    assert len(created) == 1
    pool.reset()


def test_concurrent_first_use_creates_one_engine():
    started = threading.Event()
    release = threading.Event()
    created = []

    def slow_factory(_cfg):
        created.append(1)
        started.set()
        release.wait(timeout=5)
        return create_engine("sqlite://", poolclass=StaticPool)

    pool = ConnectionPool(empty_db_config(), factory=slow_factory)
    engines = []
    threads = [threading.Thread(target=lambda: engines.append(pool.get())) for _ in range(8)]
    for t in threads:
        t.start()
    assert started.wait(timeout=5)
    time.sleep(0.05)
    release.set()
    for t in threads:
        t.join(timeout=5)

    assert len(created) == 1
    assert len(engines) == 8
    assert all(e is engines[0] for e in engines)
    pool.reset()


def test_pool_retries_after_failed_creation():
    attempts = []

    def factory(_cfg):
        attempts.append(1)
        if len(attempts) == 1:
            raise OSError("network unreachable")
        return create_engine("sqlite://", poolclass=StaticPool)

    pool = ConnectionPool(empty_db_config(), factory=factory)
    with pytest.raises(ExecutionError):
        pool.get()
    assert not pool.is_ready
    assert pool.get() is not None
    assert len(attempts) == 2
    pool.reset()


def test_ping_failure_is_reported_not_raised():
    def factory(_cfg):
        raise OSError("network unreachable")

    assert SQLAgent(ConnectionPool(empty_db_config(), factory=factory)).ping() is False


def test_missing_settings_are_named_without_values():
    cfg = DBConfig(host="db", port=1433, database="", user="reader", password="s3cret")
    with pytest.raises(ConfigError) as exc:
        build_url(cfg)
    assert "DB_DATABASE" in str(exc.value)
    assert "s3cret" not in str(exc.value)


def test_missing_settings_fail_on_first_use_only():
    pool = ConnectionPool(empty_db_config())
    with pytest.raises(ExecutionError):
        pool.get()


def test_database_url_wins():
    cfg = DBConfig(host="", port=1433, database="", user="", password="", url="sqlite://")
    assert build_url(cfg) == "sqlite://"
