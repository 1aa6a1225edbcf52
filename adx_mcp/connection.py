import asyncio
import logging
from typing import Any, Callable

from azure.identity import DefaultAzureCredential
from azure.kusto.data import KustoClient, KustoConnectionStringBuilder
from azure.kusto.data.exceptions import (
    KustoAuthenticationError,
    KustoClientError,
    KustoServiceError,
)

from adx_mcp.config import AuthMethod, Settings
from adx_mcp.errors import (
    AdxAuthenticationError,
    AdxConnectionError,
    AdxMcpError,
    AdxQueryError,
    AdxTimeoutError,
)
from adx_mcp.retry import with_retry

logger = logging.getLogger(__name__)


def normalize_cluster_url(cluster: str) -> str:
    """Expand ``help`` or ``help.kusto.windows.net`` to a full cluster URL."""
    cluster = cluster.strip().rstrip("/")
    if cluster.startswith(("http://", "https://")):
        return cluster
    if "." in cluster:
        return f"https://{cluster}"
    return f"https://{cluster}.kusto.windows.net"


def make_connection_string(settings: Settings, cluster_url: str) -> KustoConnectionStringBuilder:
    method = settings.auth_method
    if method is AuthMethod.APP_KEY:
        return KustoConnectionStringBuilder.with_aad_application_key_authentication(
            cluster_url, settings.client_id, settings.client_secret, settings.tenant_id
        )
    if method is AuthMethod.AZURE_CLI:
        return KustoConnectionStringBuilder.with_az_cli_authentication(cluster_url)
    if method is AuthMethod.AZURE_IDENTITY:
        return KustoConnectionStringBuilder.with_azure_token_credential(
            cluster_url, DefaultAzureCredential()
        )
    raise AdxAuthenticationError(f"Unsupported authentication method: {method}")


def _http_status(error: KustoServiceError) -> int | None:
    response = getattr(error, "http_response", None)
    status = getattr(response, "status_code", None) or getattr(response, "status", None)
    return status if isinstance(status, int) else None


def primary_rows(response) -> list[dict[str, Any]]:
    """Turn the primary result table of a Kusto response into records."""
    if response is None or not response.primary_results:
        return []
    table = response.primary_results[0]
    columns = [c.column_name for c in table.columns]
    return [{c: row[c] for c in columns} for row in table.rows]


class AdxConnection:
    """A Kusto client bound to one cluster and database.

    Every call goes through ``with_retry`` using the settings' retry policy,
    and runs the blocking SDK call in a worker thread so the event loop stays
    free while a query is in flight.
    """

    def __init__(self, settings: Settings, client_factory: Callable[[Any], Any] = KustoClient):
        self.settings = settings
        self._client_factory = client_factory
        self._client = None
        self._cluster_url: str | None = None
        self._database: str | None = None

    @property
    def is_initialized(self) -> bool:
        return self._client is not None and self._database is not None

    @property
    def database(self) -> str:
        if not self._database:
            raise AdxConnectionError("Connection not initialized")
        return self._database

    @property
    def cluster_url(self) -> str | None:
        return self._cluster_url

    async def initialize(self, cluster_url: str, database: str) -> dict[str, Any]:
        cluster_url = normalize_cluster_url(cluster_url)
        logger.info(f"Initializing connection to {cluster_url}, database: {database}")

        self.close()
        try:
            self._client = self._client_factory(make_connection_string(self.settings, cluster_url))
        except AdxMcpError:
            raise
        except Exception as e:
            raise AdxAuthenticationError.from_error(f"Failed to create client: {e}", e)
        self._cluster_url = cluster_url
        self._database = database

        try:
            await self.execute(".show version")
            response = await self.execute(
                f".show databases | where DatabaseName == '{database}'"
            )
        except AdxMcpError as e:
            self.close()
            raise AdxConnectionError.from_error(str(e), e)
        except Exception:
            self.close()
            raise

        if not primary_rows(response):
            self.close()
            raise AdxConnectionError(f"Database '{database}' not found in the cluster")

        logger.info("Connection initialized successfully")
        return {"success": True, "cluster": cluster_url, "database": database}

    async def execute(self, query: str, database: str | None = None):
        """Run a query or management command and return the raw Kusto response."""
        if self._client is None:
            raise AdxConnectionError("Connection not initialized")
        client = self._client
        database = database or self.database
        timeout_ms = self.settings.query_timeout_ms

        async def attempt():
            logger.debug(f"Executing on {database}: {query}")
            try:
                return await asyncio.wait_for(
                    asyncio.to_thread(client.execute, database, query),
                    timeout_ms / 1000,
                )
            except asyncio.TimeoutError as e:
                raise AdxTimeoutError(f"Query timed out after {timeout_ms}ms") from e
            except KustoServiceError as e:
                raise AdxQueryError(
                    str(e), status_code=_http_status(e)
                ) from e
            except KustoAuthenticationError as e:
                raise AdxAuthenticationError(f"authentication failed: {e}") from e
            except KustoClientError as e:
                raise AdxQueryError(str(e)) from e

        return await with_retry(attempt, self.settings.retry_policy(), label=f"query on {database}")

    def close(self) -> None:
        if self._client is not None:
            close = getattr(self._client, "close", None)
            if callable(close):
                close()
        self._client = None
        self._cluster_url = None
        self._database = None
