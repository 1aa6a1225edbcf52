import logging
import os
from collections.abc import Mapping
from enum import Enum

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from adx_mcp.errors import ConfigurationError
from adx_mcp.formatting import ResponseFormat
from adx_mcp.response_limiter import MIN_RESPONSE_LENGTH, ResponseLimitOptions
from adx_mcp.retry import RetryPolicy

logger = logging.getLogger(__name__)


class AuthMethod(str, Enum):
    APP_KEY = "app-key"
    AZURE_CLI = "azure-cli"
    AZURE_IDENTITY = "azure-identity"


class Settings(BaseModel):
    """Server settings, normally read from the environment (and ``.env``)."""

    cluster_url: str | None = None
    database: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    tenant_id: str | None = None
    auth_method: AuthMethod = AuthMethod.AZURE_IDENTITY

    query_timeout_ms: int = Field(60_000, gt=0)
    response_format: ResponseFormat = ResponseFormat.JSON
    max_cell_length: int = Field(1000, gt=3)
    max_response_length: int = Field(12_000, ge=MIN_RESPONSE_LENGTH)
    min_response_rows: int = Field(1, ge=0)
    default_row_limit: int = Field(20, gt=0)

    max_retries: int = Field(3, ge=0)
    retry_base_delay_ms: float = Field(100, ge=0)
    retry_backoff_multiplier: float = Field(2.0, ge=1)

    log_level: str = "WARNING"
    host: str = "127.0.0.1"
    port: int = 8765
    transport: str = "streamable-http"

    @property
    def has_auto_connection(self) -> bool:
        return bool(self.cluster_url and self.database)

    @property
    def has_app_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret and self.tenant_id)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay_ms=self.retry_base_delay_ms,
            backoff_multiplier=self.retry_backoff_multiplier,
        )

    def limit_options(self) -> ResponseLimitOptions:
        return ResponseLimitOptions(
            max_length=self.max_response_length,
            min_rows=self.min_response_rows,
            format=self.response_format,
            max_column_width=self.max_cell_length,
        )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        if environ is None:
            load_dotenv()
            environ = os.environ
        return cls.from_mapping(environ)

    @classmethod
    def from_mapping(cls, environ: Mapping[str, str]) -> "Settings":
        def get(name):
            value = environ.get(name)
            if value is None or not value.strip():
                return None
            return value.strip()

        values = {}
        for field_name, env_name in _ENV_FIELDS.items():
            value = get(env_name)
            if value is not None:
                values[field_name] = value

        raw_format = get("ADX_RESPONSE_FORMAT")
        if raw_format is not None:
            try:
                values["response_format"] = ResponseFormat.parse(raw_format)
            except ValueError:
                logger.warning(f"Unknown response format: {raw_format}, falling back to json")

        raw_auth = get("ADX_AUTH_METHOD")
        if raw_auth is None:
            has_credentials = all(get(n) for n in ("AZURE_CLIENT_ID", "AZURE_CLIENT_SECRET", "AZURE_TENANT_ID"))
            values["auth_method"] = AuthMethod.APP_KEY if has_credentials else AuthMethod.AZURE_IDENTITY
        else:
            values["auth_method"] = raw_auth.lower()

        try:
            settings = cls(**values)
        except ValidationError as e:
            problems = "; ".join(
                f"{_FIELD_ENV.get(str(err['loc'][0]), err['loc'][0])}: {err['msg']}"
                for err in e.errors()
            )
            raise ConfigurationError(f"Invalid configuration: {problems}") from e

        if settings.auth_method is AuthMethod.APP_KEY and not settings.has_app_credentials:
            raise ConfigurationError(
                "AZURE_CLIENT_ID, AZURE_CLIENT_SECRET, and AZURE_TENANT_ID must be set "
                "for app-key authentication"
            )
        if settings.transport not in ("streamable-http", "stdio"):
            raise ConfigurationError(f"MCP_TRANSPORT: unsupported transport {settings.transport!r}")
        return settings


_ENV_FIELDS = {
    "cluster_url": "ADX_CLUSTER_URI",
    "database": "ADX_DATABASE",
    "client_id": "AZURE_CLIENT_ID",
    "client_secret": "AZURE_CLIENT_SECRET",
    "tenant_id": "AZURE_TENANT_ID",
    "query_timeout_ms": "ADX_QUERY_TIMEOUT_MS",
    "max_cell_length": "ADX_MAX_CELL_LENGTH",
    "max_response_length": "ADX_MAX_RESPONSE_LENGTH",
    "min_response_rows": "ADX_MIN_RESPONSE_ROWS",
    "default_row_limit": "ADX_DEFAULT_ROW_LIMIT",
    "max_retries": "ADX_MAX_RETRIES",
    "retry_base_delay_ms": "ADX_RETRY_BASE_DELAY_MS",
    "retry_backoff_multiplier": "ADX_RETRY_BACKOFF_MULTIPLIER",
    "log_level": "ADX_LOG_LEVEL",
    "host": "MCP_HOST",
    "port": "MCP_PORT",
    "transport": "MCP_TRANSPORT",
}
_FIELD_ENV = dict(
    _ENV_FIELDS,
    auth_method="ADX_AUTH_METHOD",
    response_format="ADX_RESPONSE_FORMAT",
)
