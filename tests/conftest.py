import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from app.db.engine import ConnectionPool
from fakes import empty_db_config


@pytest.fixture
def sqlite_pool():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    with engine.begin() as conn:
        conn.exec_driver_sql(
            "CREATE TABLE AllOrderReport (Id INTEGER, Store_Name TEXT, COD_Amount REAL, Order_Date TEXT)"
        )
        conn.exec_driver_sql(
            "INSERT INTO AllOrderReport VALUES "
            "(1, 'Sunset', 4000, '2024-01-05'), "
            "(2, 'Sunset Arrive', 2500, '2024-01-09'), "
            "(3, 'Trend Arabia', 3500, '2024-02-11')"
        )
    pool = ConnectionPool(empty_db_config(), factory=lambda _cfg: engine)
    yield pool
    pool.reset()
