from __future__ import annotations

import os
from collections.abc import Iterator
from typing import Any, Final

import pytest
import sqlalchemy as sa

from sqla_fluent import ColumnInfo, SqlAlchemyExecutor, cache_clear

from .models import (
    devices_table,
    metadata,
    notifications_table,
    profiles_table,
    users_table,
)


MYSQL_BACKENDS: Final[frozenset[str]] = frozenset({"mysql"})


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--db",
        default="sqlite",
        choices=["sqlite", "mysql"],
        help="Database backend to test against",
    )


@pytest.fixture(scope="session")
def db_backend(request: pytest.FixtureRequest) -> str:
    value: str = request.config.getoption("--db")

    return value


@pytest.fixture(scope="session")
def supports_mysql_syntax(db_backend: str) -> bool:
    return db_backend in MYSQL_BACKENDS


@pytest.fixture(scope="session")
def db_config(db_backend: str, tmp_path_factory: pytest.TempPathFactory) -> Iterator[str]:
    match db_backend:
        case "mysql":
            from testcontainers.mysql import MySqlContainer

            my = MySqlContainer(image="mysql:8.0")
            if os.name == "nt":
                my.get_container_host_ip = lambda: "127.0.0.1"
            with my:
                host = my.get_container_host_ip()
                port = my.get_exposed_port(my.port)
                dsn = (
                    f"mysql+pymysql://{my.username}:{my.password}"
                    f"@{host}:{port}/{my.dbname}"
                )
                yield dsn

        case "sqlite":
            tmp = tmp_path_factory.mktemp("db")
            yield f"sqlite:///{tmp}/test.db"


@pytest.fixture(scope="session")
def engine(db_config: str) -> Iterator[sa.Engine]:
    eng = sa.create_engine(db_config, echo=False)
    yield eng
    eng.dispose()


@pytest.fixture
def tables(engine: sa.Engine) -> Iterator[None]:
    # Executors commit every statement, so each test gets freshly created tables.
    metadata.create_all(engine)
    yield
    metadata.drop_all(engine)


@pytest.fixture
def executor(engine: sa.Engine, tables: None) -> SqlAlchemyExecutor:
    return SqlAlchemyExecutor(engine)


@pytest.fixture
def seed_data(engine: sa.Engine, tables: None) -> dict[str, list[dict[str, Any]]]:
    users = [
        {"Id": 1, "Name": "alice", "Active": True},
        {"Id": 2, "Name": "bob", "Active": True},
        {"Id": 3, "Name": "charlie", "Active": False},
    ]
    profiles = [
        {"Id": 1, "UserId": 1, "Bio": "Alice bio"},
        {"Id": 2, "UserId": 2, "Bio": "Bob bio"},
    ]
    devices = [
        {"Nr": 1, "UserId": 1, "DeviceToken": "alice-phone"},
        {"Nr": 2, "UserId": 1, "DeviceToken": "alice-tablet"},
        {"Nr": 3, "UserId": 2, "DeviceToken": "bob-phone"},
    ]
    notifications = [
        {"Id": 1, "DeviceNr": 1, "Message": "hello"},
        {"Id": 2, "DeviceNr": 1, "Message": "again"},
        {"Id": 3, "DeviceNr": 3, "Message": "hi bob"},
    ]

    with engine.begin() as conn:
        conn.execute(users_table.insert(), users)
        conn.execute(profiles_table.insert(), profiles)
        conn.execute(devices_table.insert(), devices)
        conn.execute(notifications_table.insert(), notifications)

    return {
        "users": users,
        "profiles": profiles,
        "devices": devices,
        "notifications": notifications,
    }


class FakeExecutor:
    """In-memory executor: serves fixed column lists and records every statement."""

    def __init__(self, columns: dict[str, list[ColumnInfo]] | None = None) -> None:
        self.columns = columns or {}
        self.statements: list[tuple[str, dict[str, Any]]] = []
        self.rows: list[Any] = []
        self.next_key: Any = None

    def run(self, sql: str, bindings: Any) -> list[dict[str, Any]]:
        self.statements.append((sql, dict(bindings)))
        return list(self.rows)

    def fetch(self, sql: str, bindings: Any, types: Any) -> list[Any]:
        self.statements.append((sql, dict(bindings)))
        return list(self.rows)

    def insert(self, sql: str, bindings: Any) -> Any:
        self.statements.append((sql, dict(bindings)))
        return self.next_key

    def columns_of(self, table: str) -> list[ColumnInfo]:
        return self.columns[table]


DEVICE_COLUMNS: Final[list[ColumnInfo]] = [
    ColumnInfo("Nr", True),
    ColumnInfo("userid", False),
    ColumnInfo("devicetoken", False),
]
PAIRING_COLUMNS: Final[list[ColumnInfo]] = [
    ColumnInfo("key", True),
    ColumnInfo("keytwo", True),
    ColumnInfo("userid", False),
]
TOKEN_COLUMNS: Final[list[ColumnInfo]] = [
    ColumnInfo("Id", True),
    ColumnInfo("userid", False),
]


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor(
        {
            "devices": DEVICE_COLUMNS,
            "test_table": PAIRING_COLUMNS,
            "test_table_c": TOKEN_COLUMNS,
        }
    )


@pytest.fixture(autouse=True)
def clear_lru_caches() -> Iterator[None]:
    yield
    cache_clear()


# Multi-dialect: auto-skip @pytest.mark.mysql on other backends

@pytest.fixture(autouse=True)
def _skip_mysql_only(request: pytest.FixtureRequest, supports_mysql_syntax: bool) -> None:
    if request.node.get_closest_marker("mysql") and not supports_mysql_syntax:
        pytest.skip("MySQL-only syntax")
