"""
Shared test fixtures.

Supabase is replaced by a chainable in-memory mock; Keepa and Claude by the
scripted fakes in tests/fakes.py.
"""

import os
import sys
from pathlib import Path

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

# Settings are read at import time
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")

import pytest
from unittest.mock import patch
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Generator, Optional

from tests.fakes import InMemoryCorrelationStore, ScriptedCatalog, ScriptedJudge

# ===================
# MOCK SUPABASE CLIENT
# ===================

class MockSupabaseResponse:
    """Mock Supabase query response."""

    def __init__(self, data: list = None, count: int = None):
        self.data = data if data is not None else []
        self.count = count if count is not None else len(self.data)


@dataclass
class MockSupabaseCall:
    """One executed query, as seen by the client."""
    table: str
    operation: str
    payload: Any = None
    options: dict = field(default_factory=dict)
    filters: list = field(default_factory=list)

    def filter_value(self, column: str) -> Any:
        for _, col, value in self.filters:
            if col == column:
                return value
        return None


class MockSupabaseQuery:
    """Mock Supabase query builder with chainable methods."""

    def __init__(self, client: "MockSupabaseClient", table: str, data: list, count: int = None):
        self._client = client
        self._table = table
        self._data = data
        self._count = count
        self._call = MockSupabaseCall(table=table, operation="select")

    def select(self, *args, **kwargs):
        self._call.operation = "select"
        self._call.payload = args[0] if args else "*"
        self._call.options = kwargs
        return self

    def insert(self, data):
        # Simulate insert - add id and timestamps
        self._call.operation = "insert"
        self._call.payload = data
        rows = [data] if isinstance(data, dict) else data
        inserted = []
        for item in rows:
            row = dict(item)
            row.setdefault("id", "test-uuid-123")
            row.setdefault("created_at", datetime.utcnow().isoformat() + "Z")
            row.setdefault("updated_at", datetime.utcnow().isoformat() + "Z")
            inserted.append(row)
        self._data = inserted
        return self

    def upsert(self, data, **kwargs):
        self._call.operation = "upsert"
        self._call.payload = data
        self._call.options = kwargs
        rows = [data] if isinstance(data, dict) else data
        self._data = [dict(row) for row in rows]
        return self

    def update(self, data):
        # Simulate update - merge into whatever the table holds
        self._call.operation = "update"
        self._call.payload = data
        self._data = [{**item, **data} for item in self._data]
        return self

    def delete(self):
        self._call.operation = "delete"
        return self

    def eq(self, column, value):
        self._call.filters.append(("eq", column, value))
        return self

    def neq(self, column, value):
        self._call.filters.append(("neq", column, value))
        return self

    def in_(self, column, values):
        self._call.filters.append(("in", column, list(values)))
        return self

    def order(self, column, **kwargs):
        return self

    def limit(self, count):
        self._call.options = {**self._call.options, "limit": count}
        return self

    def execute(self) -> MockSupabaseResponse:
        self._client.calls.append(self._call)

        error = self._client._failures.get((self._table, self._call.operation))
        if error is not None:
            raise error

        return MockSupabaseResponse(
            data=self._data,
            count=self._count if self._count is not None else len(self._data)
        )


class MockSupabaseTable:
    """Mock Supabase table with configurable responses."""

    def __init__(self, client: "MockSupabaseClient", name: str, data: list = None, count: int = None):
        self._client = client
        self._name = name
        self._data = data or []
        self._count = count

    def _query(self) -> MockSupabaseQuery:
        return MockSupabaseQuery(self._client, self._name, [dict(row) for row in self._data], self._count)

    def select(self, *args, **kwargs):
        return self._query().select(*args, **kwargs)

    def insert(self, data):
        return self._query().insert(data)

    def upsert(self, data, **kwargs):
        return self._query().upsert(data, **kwargs)

    def update(self, data):
        return self._query().update(data)

    def delete(self):
        return self._query().delete()


class MockSupabaseClient:
    """Mock Supabase client. Every executed query is recorded in calls."""

    def __init__(self):
        self._tables = {}
        self._failures = {}
        self.calls: list[MockSupabaseCall] = []

    def set_table_data(self, table_name: str, data: list, count: int = None):
        """Configure mock data for a table."""
        self._tables[table_name] = {"data": data, "count": count}

    def fail_on(self, table_name: str, operation: str, error: Exception):
        """Make every <operation> on table raise error."""
        self._failures[(table_name, operation)] = error

    def calls_for(self, table_name: str, operation: Optional[str] = None) -> list[MockSupabaseCall]:
        return [
            c for c in self.calls
            if c.table == table_name and (operation is None or c.operation == operation)
        ]

    def table(self, name: str) -> MockSupabaseTable:
        """Get mock table."""
        config = self._tables.get(name, {"data": [], "count": None})
        return MockSupabaseTable(self, name, config["data"], config["count"])


# ===================
# FIXTURES
# ===================

@pytest.fixture
def mock_supabase() -> MockSupabaseClient:
    """
    Create a mock Supabase client.

    Usage:
        def test_something(mock_supabase):
            mock_supabase.set_table_data("import_jobs", [
                {"id": "job-1", "search_asin": "B01KJEOCDW", ...}
            ])
    """
    return MockSupabaseClient()


@pytest.fixture
def mock_db(mock_supabase) -> Generator:
    """
    Patch the database client with mock.

    Usage:
        def test_something(mock_db, mock_supabase):
            mock_supabase.set_table_data("asin_correlations", [...])
            # Now CorrelationStore() talks to the mock
    """
    with patch("services.correlation_store_service.get_supabase_client", return_value=mock_supabase):
        yield mock_supabase


@pytest.fixture
def store():
    """In-memory correlation store."""
    return InMemoryCorrelationStore()


@pytest.fixture
def catalog():
    """Scripted catalog (Keepa stand-in)."""
    return ScriptedCatalog()


@pytest.fixture
def judge():
    """Scripted YES/NO judge (Claude stand-in)."""
    return ScriptedJudge()


# ===================
# API TEST CLIENT
# ===================

@pytest.fixture
def job_service(store, catalog, judge):
    """CorrelationJobService wired to the fakes."""
    from services.correlation_job_service import CorrelationJobService

    return CorrelationJobService(catalog=catalog, judge=judge, store=store)


@pytest.fixture
def test_client(job_service, store):
    """
    FastAPI test client backed by the fakes.

    Usage:
        def test_endpoint(test_client):
            response = test_client.post("/api/correlations/jobs", json={...})
            assert response.status_code == 202
    """
    from fastapi.testclient import TestClient
    from services.correlation_feedback_service import CorrelationFeedbackService
    import services.correlation_job_service as job_module
    import services.correlation_feedback_service as feedback_module
    from main import app

    healthy = {"status": "healthy", "correlations_count": 0, "jobs_count": 0}

    with patch("main.check_connection", return_value=healthy), \
            patch.object(job_module, "_correlation_job_service", job_service), \
            patch.object(feedback_module, "_feedback_service", CorrelationFeedbackService(store=store)):
        with TestClient(app) as client:
            yield client
