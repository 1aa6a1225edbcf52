"""Tests for AdxConnection against a scripted Kusto client."""

import time
from types import SimpleNamespace

import pytest
from azure.kusto.data.exceptions import KustoServiceError

from adx_mcp.config import Settings
from adx_mcp.connection import AdxConnection, normalize_cluster_url, primary_rows
from adx_mcp.errors import (
    AdxAuthenticationError,
    AdxConnectionError,
    AdxQueryError,
    AdxTimeoutError,
)
from tests.conftest import EMPTY_RESPONSE, connectable_client, make_response


def service_error(message, status):
    return KustoServiceError(message, http_response=SimpleNamespace(status_code=status))


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("help", "https://help.kusto.windows.net"),
        ("help.westus.kusto.windows.net", "https://help.westus.kusto.windows.net"),
        ("https://help.kusto.windows.net/", "https://help.kusto.windows.net"),
        ("  http://localhost:8080 ", "http://localhost:8080"),
    ],
)
def test_normalize_cluster_url(raw, expected):
    assert normalize_cluster_url(raw) == expected


def test_primary_rows():
    response = make_response([{"a": 1, "b": "x"}, {"a": 2, "b": "y"}])
    assert primary_rows(response) == [{"a": 1, "b": "x"}, {"a": 2, "b": "y"}]
    assert primary_rows(EMPTY_RESPONSE) == []
    assert primary_rows(None) == []


class TestInitialize:
    @pytest.mark.asyncio
    async def test_success(self, settings, fake_client):
        conn = AdxConnection(settings, client_factory=lambda kcsb: fake_client)
        result = await conn.initialize("help", "Samples")
        assert result == {"success": True, "cluster": "https://help.kusto.windows.net", "database": "Samples"}
        assert conn.is_initialized
        assert conn.database == "Samples"
        queries = [q for _, q in fake_client.calls]
        assert queries[0] == ".show version"
        assert queries[1] == ".show databases | where DatabaseName == 'Samples'"

    @pytest.mark.asyncio
    async def test_missing_database(self, settings):
        client = connectable_client(database="Other")
        client.rules[1] = (".show databases", make_response([], columns=["DatabaseName"]))
        conn = AdxConnection(settings, client_factory=lambda kcsb: client)
        with pytest.raises(AdxConnectionError, match="Database 'Samples' not found"):
            await conn.initialize("help", "Samples")
        assert not conn.is_initialized
        assert client.closed

    @pytest.mark.asyncio
    async def test_probe_failure_becomes_connection_error(self, settings):
        client = connectable_client()
        client.rules.insert(0, (".show version", service_error("Forbidden", 403)))
        conn = AdxConnection(settings, client_factory=lambda kcsb: client)
        with pytest.raises(AdxConnectionError) as exc_info:
            await conn.initialize("help", "Samples")
        assert exc_info.value.status_code == 403
        assert isinstance(exc_info.value.__cause__, AdxQueryError)
        # 403 is permanent, so the probe ran once
        assert len(client.calls) == 1

    @pytest.mark.asyncio
    async def test_client_creation_failure(self, settings):
        def broken(kcsb):
            raise RuntimeError("bad credentials")

        conn = AdxConnection(settings, client_factory=broken)
        with pytest.raises(AdxAuthenticationError, match="bad credentials"):
            await conn.initialize("help", "Samples")

    @pytest.mark.asyncio
    async def test_reinitialize_closes_previous_client(self, settings):
        first, second = connectable_client(), connectable_client("Logs")
        clients = iter([first, second])
        conn = AdxConnection(settings, client_factory=lambda kcsb: next(clients))
        await conn.initialize("help", "Samples")
        await conn.initialize("help", "Logs")
        assert first.closed
        assert conn.database == "Logs"


class TestExecute:
    @pytest.mark.asyncio
    async def test_not_initialized(self, settings):
        with pytest.raises(AdxConnectionError, match="not initialized"):
            await AdxConnection(settings).execute("T | take 1")

    @pytest.mark.asyncio
    async def test_returns_raw_response(self, settings, fake_client):
        conn = AdxConnection(settings, client_factory=lambda kcsb: fake_client)
        await conn.initialize("help", "Samples")
        fake_client.add("StormEvents", make_response([{"State": "TEXAS"}]))
        response = await conn.execute("StormEvents | take 1")
        assert primary_rows(response) == [{"State": "TEXAS"}]
        assert fake_client.calls[-1] == ("Samples", "StormEvents | take 1")

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self, settings, fake_client):
        conn = AdxConnection(settings, client_factory=lambda kcsb: fake_client)
        await conn.initialize("help", "Samples")
        outcomes = iter([service_error("Service unavailable", 503), make_response([{"n": 1}])])
        fake_client.add("T", lambda: next(outcomes))
        response = await conn.execute("T | count")
        assert primary_rows(response) == [{"n": 1}]
        assert sum(1 for _, q in fake_client.calls if q == "T | count") == 2

    @pytest.mark.asyncio
    async def test_permanent_errors_are_not_retried(self, settings, fake_client):
        conn = AdxConnection(settings, client_factory=lambda kcsb: fake_client)
        await conn.initialize("help", "Samples")
        fake_client.add("T", service_error("Syntax error: unexpected token", 400))
        with pytest.raises(AdxQueryError) as exc_info:
            await conn.execute("T | wher x")
        assert exc_info.value.status_code == 400
        assert isinstance(exc_info.value.__cause__, KustoServiceError)
        assert sum(1 for _, q in fake_client.calls if q == "T | wher x") == 1

    @pytest.mark.asyncio
    async def test_timeout(self, fake_client):
        settings = Settings(
            client_id="app",
            client_secret="secret",
            tenant_id="tenant",
            auth_method="app-key",
            max_retries=0,
            query_timeout_ms=50,
        )
        conn = AdxConnection(settings, client_factory=lambda kcsb: fake_client)
        await conn.initialize("help", "Samples")

        def slow():
            time.sleep(0.5)
            return EMPTY_RESPONSE

        fake_client.add("Slow", slow)
        with pytest.raises(AdxTimeoutError, match="timed out after 50ms"):
            await conn.execute("Slow | take 1")

    @pytest.mark.asyncio
    async def test_close(self, settings, fake_client):
        conn = AdxConnection(settings, client_factory=lambda kcsb: fake_client)
        await conn.initialize("help", "Samples")
        conn.close()
        assert fake_client.closed
        assert not conn.is_initialized
        assert conn.cluster_url is None
