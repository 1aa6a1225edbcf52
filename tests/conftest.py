"""Shared fixtures: fake Kusto responses and a scriptable fake client."""

from types import SimpleNamespace

import pytest

from adx_mcp.config import Settings
from adx_mcp.formatting import QueryResult


def make_response(rows, columns=None, table_name="PrimaryResult"):
    """Build an object shaped like a KustoResponseDataSet with one primary table."""
    if columns is None:
        columns = list(rows[0].keys()) if rows else []
    table = SimpleNamespace(
        table_name=table_name,
        columns=[SimpleNamespace(column_name=c) for c in columns],
        rows=[dict(r) for r in rows],
    )
    return SimpleNamespace(primary_results=[table])


EMPTY_RESPONSE = SimpleNamespace(primary_results=[])


class FakeKustoClient:
    """Answers queries from a list of (prefix, response-or-exception) rules."""

    def __init__(self, rules=None):
        self.rules = list(rules or [])
        self.calls = []
        self.closed = False

    def add(self, prefix, outcome):
        self.rules.append((prefix, outcome))

    def execute(self, database, query):
        self.calls.append((database, query))
        for prefix, outcome in self.rules:
            if query.startswith(prefix):
                if callable(outcome) and not isinstance(outcome, SimpleNamespace):
                    outcome = outcome()
                if isinstance(outcome, BaseException):
                    raise outcome
                return outcome
        raise AssertionError(f"unexpected query: {query}")

    def close(self):
        self.closed = True


def connectable_client(database="Samples"):
    client = FakeKustoClient()
    client.add(".show version", make_response([{"BuildVersion": "1.0"}]))
    client.add(".show databases", make_response([{"DatabaseName": database}]))
    return client


@pytest.fixture
def settings():
    return Settings(
        client_id="app",
        client_secret="secret",
        tenant_id="tenant",
        auth_method="app-key",
        max_retries=2,
        retry_base_delay_ms=0,
        query_timeout_ms=2000,
    )


@pytest.fixture
def fake_client():
    return connectable_client()


def make_items(count):
    return [
        {
            "id": i + 1,
            "name": f"Item {i + 1}",
            "description": f"This is a description for item {i + 1} with some additional text to make it longer",
            "value": round((i + 1) * 12.5, 2),
        }
        for i in range(count)
    ]


@pytest.fixture
def item_result():
    def build(count, message="Test query result"):
        result = QueryResult.from_rows(make_items(count), requested_limit=20, name="TestResult", message=message)
        return result

    return build
