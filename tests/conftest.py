import os
import re
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlmodel import create_engine, Session, SQLModel
from sqlalchemy.pool import StaticPool

# Configure the app for testing BEFORE importing any app modules
os.environ.setdefault("HUBPANEL_DB_URL", "sqlite://")
os.environ.setdefault("HUBPANEL_SECRET_KEY", "test-secret-key")
os.environ["RATE_LIMIT_ENABLED"] = "false"

import hubpanel.database as database_module

# In-memory metadata database shared by every connection in the test process
test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
database_module.engine = test_engine

import hubpanel.drivers.registry as registry_module
from hubpanel.main import app
from hubpanel.connection_tester import get_connection_tester
from hubpanel.drivers import DatabaseDriver, DriverRegistry, QueryResult, get_driver_registry
from hubpanel.errors import DatabaseConnectionError
from hubpanel.models import (
    ActivityLog,
    ColumnInfo,
    ConnectionTestResult,
    ConstraintInfo,
    DatabaseEngineType,
    IndexInfo,
    ManagedDatabase,
    TableStructure,
    TableSummary,
    User,
)
from hubpanel.security import create_session_token, hash_password

# Test user data
TEST_USER_DATA = {
    "username": "testuser",
    "password": "testpass123",
    "email": "test@example.com",
}


# --- Fake managed database drivers ---

USERS_STRUCTURE = TableStructure(
    columns=[
        ColumnInfo(column_name="id", data_type="integer", is_nullable="NO",
                   column_default="nextval('users_id_seq'::regclass)"),
        ColumnInfo(column_name="email", data_type="character varying",
                   character_maximum_length=255, is_nullable="NO"),
        ColumnInfo(column_name="active", data_type="boolean", is_nullable="YES"),
    ],
    constraints=[ConstraintInfo(constraint_name="users_pkey", constraint_type="p", columns=["id"])],
    indexes=[IndexInfo(index_name="users_pkey", is_unique=True, is_primary=True,
                       definition="CREATE UNIQUE INDEX users_pkey ON public.users USING btree (id)")],
)

FAKE_TABLES = {
    "users": {
        "structure": USERS_STRUCTURE,
        "fields": ["id", "email", "active"],
        "rows": [
            {"id": 1, "email": "ada@example.com", "active": True},
            {"id": 2, "email": "o'brien@example.com", "active": None},
        ],
    },
    "audit": {
        "structure": TableStructure(
            columns=[ColumnInfo(column_name="note", data_type="text", is_nullable="YES")],
        ),
        "fields": ["note"],
        "rows": [],
    },
}

# Names of managed databases whose fake driver behaves as unreachable
OFFLINE_DATABASES = set()

_FROM_TABLE = re.compile(r'FROM\s+\S+\.[`"]([^`"]+)[`"]')


class FakeDriver(DatabaseDriver):
    """In-memory PostgreSQL-flavoured driver that never opens a connection."""

    drivername = "postgresql+psycopg2"
    default_port = 5432

    def __init__(self, config: ManagedDatabase):
        super().__init__(config)
        self.closed = False
        self.queries = []

    def _check_online(self):
        if self.name in OFFLINE_DATABASES:
            raise DatabaseConnectionError("connection refused")

    def get_connect_args(self, timeout):
        return {}

    def quote_identifier(self, name):
        return '"' + name.replace('"', '""') + '"'

    def resolve_schema(self, schema):
        return schema or "public"

    def list_tables(self, schema=None):
        self._check_online()
        if self.resolve_schema(schema) != "public":
            return []
        return [
            TableSummary(name=name, size_bytes=8192, size="8.00 KB", row_estimate=len(t["rows"]))
            for name, t in sorted(FAKE_TABLES.items())
        ]

    def get_table_structure(self, schema, table):
        self._check_online()
        if self.resolve_schema(schema) != self.resolve_schema(None) or table not in FAKE_TABLES:
            return TableStructure()
        return FAKE_TABLES[table]["structure"]

    def schema_exists(self, schema):
        self._check_online()
        return self.resolve_schema(schema) in ("public", "empty")

    def get_server_stats(self):
        self._check_online()
        return {"version": "PostgreSQL 16.2", "db_size": "7.50 MB", "active_connections": 3}

    def get_active_connections(self):
        self._check_online()
        return [
            {"pid": 4242, "user": "reader", "database": self.config.database,
             "state": "active", "query": "SELECT 1", "query_duration": Decimal("0.25")},
        ]

    def get_slow_queries(self):
        self._check_online()
        return []

    def _result_for(self, sql):
        match = _FROM_TABLE.search(sql)
        if not match or match.group(1) not in FAKE_TABLES:
            return QueryResult([], [])
        table = FAKE_TABLES[match.group(1)]
        if sql.startswith("SELECT COUNT(*)"):
            return QueryResult([{"total": len(table["rows"])}], ["total"])
        return QueryResult([dict(r) for r in table["rows"]], list(table["fields"]))

    def query(self, sql, params=None):
        self._check_online()
        self.queries.append(sql)
        return self._result_for(sql)

    def execute(self, sql):
        self._check_online()
        self.queries.append(sql)
        if "missing_table" in sql:
            raise DatabaseConnectionError('relation "missing_table" does not exist')
        return self._result_for(sql)

    def close(self):
        self.closed = True


class FakeMySQLDriver(FakeDriver):
    """In-memory MySQL-flavoured driver."""

    drivername = "mysql+pymysql"
    default_port = 3306

    def quote_identifier(self, name):
        return "`" + name.replace("`", "``") + "`"

    def resolve_schema(self, schema):
        if not schema or schema == "public":
            return self.config.database
        return schema

    def list_tables(self, schema=None):
        self._check_online()
        if self.resolve_schema(schema) != self.config.database:
            return []
        return [
            TableSummary(name=name, size_bytes=16384, size="16.00 KB", row_estimate=len(t["rows"]))
            for name, t in sorted(FAKE_TABLES.items())
        ]

    def show_create_table(self, schema, table):
        return f"CREATE TABLE `{table}` (\n  `id` int NOT NULL\n) ENGINE=InnoDB"


def fake_driver_class(engine_type):
    if DatabaseEngineType(engine_type) in (DatabaseEngineType.MYSQL, DatabaseEngineType.MARIADB):
        return FakeMySQLDriver
    return FakeDriver


MANAGED_DATABASES = [
    ManagedDatabase(name="analytics", host="pg.internal", port=5432, user="reader",
                    password="pg-secret", database="analytics",
                    engine_type=DatabaseEngineType.POSTGRESQL),
    ManagedDatabase(name="shop", host="mysql.internal", port=3306, user="shop",
                    password="mysql-secret", database="shop",
                    engine_type=DatabaseEngineType.MYSQL),
]


class StubConnectionTester:
    """Connection tester returning a preset result."""

    def __init__(self, result: ConnectionTestResult):
        self.result = result
        self.calls = []

    def test(self, params):
        self.calls.append(params)
        return self.result


# --- Fixtures ---

@pytest.fixture(name="session")
def session_fixture():
    """Fresh metadata tables for each test."""
    SQLModel.metadata.create_all(test_engine)
    with Session(test_engine) as session:
        yield session
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(name="client")
def client_fixture(session):
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture(name="test_user")
def test_user_fixture(session):
    user = User(
        username=TEST_USER_DATA["username"],
        email=TEST_USER_DATA["email"],
        hashed_password=hash_password(TEST_USER_DATA["password"]),
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture(name="auth_headers")
def auth_headers_fixture(test_user):
    token = create_session_token(test_user.username)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(name="registry")
def registry_fixture(monkeypatch):
    """Driver registry over fake drivers, wired into the app."""
    monkeypatch.setattr(registry_module, "get_driver_class", fake_driver_class)
    OFFLINE_DATABASES.clear()

    registry = DriverRegistry(
        env_loader=lambda: list(MANAGED_DATABASES),
        stored_loader=lambda: [],
    )
    app.dependency_overrides[get_driver_registry] = lambda: registry
    yield registry
    OFFLINE_DATABASES.clear()
    app.dependency_overrides.pop(get_driver_registry, None)


@pytest.fixture(name="passing_tester")
def passing_tester_fixture():
    tester = StubConnectionTester(ConnectionTestResult(ok=True, latency_ms=12))
    app.dependency_overrides[get_connection_tester] = lambda: tester
    return tester


@pytest.fixture(name="failing_tester")
def failing_tester_fixture():
    tester = StubConnectionTester(
        ConnectionTestResult(ok=False, latency_ms=40, error='password authentication failed for user "u"')
    )
    app.dependency_overrides[get_connection_tester] = lambda: tester
    return tester


def _add_log_entries(session, entries):
    base = datetime(2026, 1, 1, 12, 0, 0)
    for i, (user, database, operation) in enumerate(entries):
        session.add(ActivityLog(
            timestamp=base + timedelta(minutes=i),
            user=user,
            database=database,
            operation=operation,
            details=f"entry {i}",
        ))
    session.commit()


@pytest.fixture(name="add_log_entries")
def add_log_entries_fixture(session):
    """
    Insert activity log entries with increasing timestamps.
    Each entry is a (user, database, operation) tuple; later entries are newer.
    """
    return lambda entries: _add_log_entries(session, entries)


@pytest.fixture(name="offline_databases")
def offline_databases_fixture(registry):
    """Names added to this set make the matching fake driver unreachable."""
    return OFFLINE_DATABASES
