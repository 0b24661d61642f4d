"""Shared fixtures.

Service tests run against FakeCassandraSession, an in-memory stand-in for a
cassandra-asyncio session. It builds its tables from the modules' own CQL
definitions and understands the statement shapes the services prepare:
INSERT [IF NOT EXISTS], SELECT * ... WHERE, UPDATE with plain and
collection assignments [IF EXISTS | IF col = ?], DELETE [IF col = ?].
"""

import os
import re
import tempfile
from collections.abc import Callable
from decimal import Decimal
from types import SimpleNamespace
from typing import Any
from uuid import UUID, uuid4


os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="lms-core-logs-"))
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from lms_core.auth.permissions import UserRole
from lms_core.auth.security import create_access_token
from lms_core.catalog.models import CATALOG_TABLES_CQL, Course
from lms_core.catalog.service import CourseCatalog
from lms_core.config import get_settings
from lms_core.enrollments.coordinator import EnrollmentCoordinator
from lms_core.enrollments.ledger import PurchaseLedger
from lms_core.enrollments.models import ENROLLMENTS_TABLES_CQL
from lms_core.progress.models import PROGRESS_TABLES_CQL
from lms_core.progress.service import ProgressService
from lms_core.users.models import USERS_TABLES_CQL
from lms_core.users.service import UserDirectory


KEYSPACE = "lms_test"

_WS = re.compile(r"\s+")
_TABLE_NAME = re.compile(r"CREATE TABLE IF NOT EXISTS \w+\.(\w+)")
_COLUMN = re.compile(r"^\s*(\w+)\s+([A-Z]+(?:<\w+>)?),?\s*$", re.MULTILINE)
_PRIMARY_KEY = re.compile(r"PRIMARY KEY \((.*)\)")

_INSERT = re.compile(
    r"^INSERT INTO \w+\.(\w+) \((.*?)\) VALUES \((.*?)\)( IF NOT EXISTS)?$"
)
_SELECT = re.compile(r"^SELECT \* FROM \w+\.(\w+)(?: WHERE (.*))?$")
_UPDATE = re.compile(r"^UPDATE \w+\.(\w+) SET (.*?) WHERE (.*?)(?: IF (.*))?$")
_DELETE = re.compile(r"^DELETE FROM \w+\.(\w+) WHERE (.*?)(?: IF (.*))?$")
_ASSIGNMENT = re.compile(r"^(\w+) = (?:(\w+) ([+-]) )?\?$")
_CONDITION = re.compile(r"^(\w+) = \?$")


# ==============================================================================
# In-memory Cassandra
# ==============================================================================


class FakeTable:
    """Rows of one table keyed by their full primary key."""

    def __init__(
        self,
        name: str,
        columns: dict[str, str],
        partition_key: list[str],
        clustering_key: list[str],
    ):
        self.name = name
        self.columns = columns
        self.partition_key = partition_key
        self.clustering_key = clustering_key
        self.rows: dict[tuple, dict[str, Any]] = {}

    @classmethod
    def from_cql(cls, cql: str) -> "FakeTable":
        name = _TABLE_NAME.search(cql).group(1)
        columns = dict(_COLUMN.findall(cql))
        key = _PRIMARY_KEY.search(cql).group(1)

        if key.startswith("("):
            close = key.index(")")
            partition = [c.strip() for c in key[1:close].split(",")]
            rest = key[close + 1 :]
        else:
            first, _, rest = key.partition(",")
            partition = [first.strip()]
        clustering = [c.strip() for c in rest.split(",") if c.strip()]

        return cls(name, columns, partition, clustering)

    @property
    def primary_key(self) -> list[str]:
        return self.partition_key + self.clustering_key

    def key_of(self, values: dict[str, Any]) -> tuple:
        return tuple(values[column] for column in self.primary_key)

    def empty_row(self) -> dict[str, Any]:
        return dict.fromkeys(self.columns)

    def matching(self, conditions: dict[str, Any]) -> list[dict[str, Any]]:
        return [
            row
            for row in self.rows.values()
            if all(row.get(column) == value for column, value in conditions.items())
        ]


class FakeResult:
    """Subset of the driver's ResultSet used by the services."""

    def __init__(self, rows: list[Any] | None = None, applied: bool = True):
        self._rows = rows or []
        self.was_applied = applied

    def one(self) -> Any:
        return self._rows[0] if self._rows else None

    def __iter__(self):
        return iter(self._rows)


class FakeStatement:
    """A prepared statement parsed into its table, kind and bind layout."""

    def __init__(self, query: str):
        self.query = _WS.sub(" ", query).strip()
        self.kind = "ddl"
        self.table: str | None = None
        self.columns: list[str] = []
        self.assignments: list[tuple[str, str | None]] = []
        self.where: list[str] = []
        self.condition: str | None = None

        if match := _INSERT.match(self.query):
            self.kind = "insert"
            self.table = match.group(1)
            self.columns = [c.strip() for c in match.group(2).split(",")]
            self.condition = "NOT EXISTS" if match.group(4) else None
        elif match := _SELECT.match(self.query):
            self.kind = "select"
            self.table = match.group(1)
            self.where = self._conditions(match.group(2))
        elif match := _UPDATE.match(self.query):
            self.kind = "update"
            self.table = match.group(1)
            for part in match.group(2).split(","):
                assignment = _ASSIGNMENT.match(part.strip())
                self.assignments.append((assignment.group(1), assignment.group(3)))
            self.where = self._conditions(match.group(3))
            self.condition = match.group(4)
        elif match := _DELETE.match(self.query):
            self.kind = "delete"
            self.table = match.group(1)
            self.where = self._conditions(match.group(2))
            self.condition = match.group(3)

    @staticmethod
    def _conditions(text: str | None) -> list[str]:
        if not text:
            return []
        return [_CONDITION.match(part.strip()).group(1) for part in text.split(" AND ")]

    @property
    def condition_column(self) -> str | None:
        if self.condition and self.condition not in ("EXISTS", "NOT EXISTS"):
            return _CONDITION.match(self.condition).group(1)
        return None

    def __repr__(self) -> str:
        return f"<FakeStatement {self.kind} {self.table}>"


Hook = Callable[[FakeStatement, list[Any]], None]


class FakeCassandraSession:
    """In-memory session exposing prepare() and aexecute()."""

    def __init__(self, table_cql: list[str]):
        self.tables = {
            table.name: table
            for table in (
                FakeTable.from_cql(cql.format(keyspace=KEYSPACE)) for cql in table_cql
            )
        }
        self.before_execute: list[Hook] = []
        self.executed: list[tuple[FakeStatement, list[Any]]] = []
        self.keyspace: str | None = None

    def prepare(self, query: str) -> FakeStatement:
        return FakeStatement(query)

    def set_keyspace(self, keyspace: str) -> None:
        self.keyspace = keyspace

    async def aexecute(self, statement, parameters=None) -> FakeResult:
        if isinstance(statement, str):
            statement = self.prepare(statement)
        params = list(parameters or [])

        for hook in list(self.before_execute):
            hook(statement, params)
        self.executed.append((statement, params))

        if statement.kind == "insert":
            return self._insert(statement, params)
        if statement.kind == "select":
            return self._select(statement, params)
        if statement.kind == "update":
            return self._update(statement, params)
        if statement.kind == "delete":
            return self._delete(statement, params)
        return FakeResult()

    # Test helpers

    def put(self, table: str, **values: Any) -> dict[str, Any]:
        """Write a row directly, bypassing statements."""
        target = self.tables[table]
        row = target.empty_row()
        row.update(values)
        target.rows[target.key_of(row)] = row
        return row

    def rows(self, table: str, **conditions: Any) -> list[dict[str, Any]]:
        """Read rows directly, optionally filtered by column values."""
        return self.tables[table].matching(conditions)

    def writes(self, table: str) -> list[FakeStatement]:
        """Mutating statements executed against a table."""
        return [
            statement
            for statement, _ in self.executed
            if statement.table == table and statement.kind in ("insert", "update", "delete")
        ]

    # Statement execution

    @staticmethod
    def _as_row(row: dict[str, Any]) -> SimpleNamespace:
        copied = {}
        for column, value in row.items():
            if isinstance(value, set | list):
                value = type(value)(value)
            copied[column] = value
        return SimpleNamespace(**copied)

    def _insert(self, statement: FakeStatement, params: list[Any]) -> FakeResult:
        table = self.tables[statement.table]
        values = dict(zip(statement.columns, params, strict=True))
        key = table.key_of(values)
        existing = table.rows.get(key)

        if statement.condition == "NOT EXISTS" and existing is not None:
            return FakeResult([self._as_row(existing)], applied=False)

        if existing is not None:
            existing.update(values)
        else:
            row = table.empty_row()
            row.update(values)
            table.rows[key] = row
        return FakeResult()

    def _select(self, statement: FakeStatement, params: list[Any]) -> FakeResult:
        table = self.tables[statement.table]
        conditions = dict(zip(statement.where, params, strict=True))
        return FakeResult([self._as_row(row) for row in table.matching(conditions)])

    def _update(self, statement: FakeStatement, params: list[Any]) -> FakeResult:
        table = self.tables[statement.table]
        set_count = len(statement.assignments)
        where_count = len(statement.where)
        set_params = params[:set_count]
        key_values = dict(
            zip(statement.where, params[set_count : set_count + where_count], strict=True)
        )
        condition_params = params[set_count + where_count :]

        key = table.key_of(key_values)
        existing = table.rows.get(key)

        if statement.condition == "EXISTS" and existing is None:
            return FakeResult(applied=False)
        if column := statement.condition_column:
            if existing is None or existing.get(column) != condition_params[0]:
                rows = [self._as_row(existing)] if existing else []
                return FakeResult(rows, applied=False)

        row = existing if existing is not None else table.empty_row()
        row.update(key_values)
        for (column, operator), value in zip(statement.assignments, set_params, strict=True):
            if operator == "+":
                row[column] = set(row.get(column) or ()) | set(value)
            elif operator == "-":
                row[column] = set(row.get(column) or ()) - set(value)
            else:
                row[column] = value
        table.rows[key] = row
        return FakeResult()

    def _delete(self, statement: FakeStatement, params: list[Any]) -> FakeResult:
        table = self.tables[statement.table]
        where_count = len(statement.where)
        conditions = dict(zip(statement.where, params[:where_count], strict=True))

        if column := statement.condition_column:
            key = table.key_of(conditions)
            existing = table.rows.get(key)
            if existing is None or existing.get(column) != params[where_count]:
                return FakeResult(applied=False)
            del table.rows[key]
            return FakeResult()

        for row in table.matching(conditions):
            del table.rows[table.key_of(row)]
        return FakeResult()


# ==============================================================================
# Fixtures
# ==============================================================================


@pytest.fixture
def cassandra_session() -> FakeCassandraSession:
    """Empty in-memory keyspace with every module's tables."""
    return FakeCassandraSession(
        [
            *USERS_TABLES_CQL,
            *CATALOG_TABLES_CQL,
            *PROGRESS_TABLES_CQL,
            *ENROLLMENTS_TABLES_CQL,
        ]
    )


@pytest.fixture
def catalog(cassandra_session) -> CourseCatalog:
    return CourseCatalog(session=cassandra_session, keyspace=KEYSPACE)


@pytest.fixture
def users(cassandra_session) -> UserDirectory:
    return UserDirectory(session=cassandra_session, keyspace=KEYSPACE)


@pytest.fixture
def ledger(cassandra_session, catalog) -> PurchaseLedger:
    return PurchaseLedger(session=cassandra_session, keyspace=KEYSPACE, catalog=catalog)


@pytest.fixture
def progress_service(cassandra_session, catalog) -> ProgressService:
    return ProgressService(
        session=cassandra_session,
        keyspace=KEYSPACE,
        catalog=catalog,
        max_write_retries=3,
    )


@pytest.fixture
def coordinator(ledger, catalog, users) -> EnrollmentCoordinator:
    return EnrollmentCoordinator(ledger=ledger, catalog=catalog, users=users)


@pytest.fixture
def user_id() -> UUID:
    """Test user ID."""
    return uuid4()


@pytest.fixture
def make_course(cassandra_session) -> Callable[..., Course]:
    """Factory seeding a course row with N lectures."""

    def _make(lectures: int = 2, price: Decimal | int = 0, title: str = "Course") -> Course:
        course = Course(
            title=title,
            price=Decimal(price),
            currency="INR",
            lecture_ids=[uuid4() for _ in range(lectures)],
        )
        cassandra_session.put(
            "courses",
            id=course.id,
            title=course.title,
            status=course.status,
            price=course.price,
            currency=course.currency,
            lecture_ids=list(course.lecture_ids),
            enrolled_students=set(),
            created_at=course.created_at,
        )
        return course

    return _make


# ==============================================================================
# HTTP Fixtures
# ==============================================================================


def auth_headers(user_id: UUID, role: UserRole = UserRole.STUDENT) -> dict[str, str]:
    """Bearer header for a freshly minted access token."""
    token = create_access_token(
        {"sub": str(user_id), "email": f"{role.value}@lms-core.io", "role": role.value}
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def app(cassandra_session) -> FastAPI:
    """Application with services wired on the in-memory session."""
    from lms_core.main import create_app, wire_services

    application = create_app()
    wire_services(application.state, cassandra_session, get_settings())
    return application


@pytest.fixture
def client(app) -> TestClient:
    """Test client (lifespan not started: no real Cassandra or Redis)."""
    return TestClient(app)


@pytest.fixture
def student_headers(user_id) -> dict[str, str]:
    return auth_headers(user_id)


@pytest.fixture
def instructor_headers() -> dict[str, str]:
    return auth_headers(uuid4(), UserRole.INSTRUCTOR)


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return auth_headers(uuid4(), UserRole.ADMIN)


@pytest.fixture
def webhook_headers() -> dict[str, str]:
    return {"X-Webhook-Secret": get_settings().payment_webhook_secret}
