"""Tests for reading Settings from the environment."""

import pytest

from adx_mcp.config import AuthMethod, Settings
from adx_mcp.errors import ConfigurationError
from adx_mcp.formatting import ResponseFormat

APP_CREDENTIALS = {
    "AZURE_CLIENT_ID": "client",
    "AZURE_CLIENT_SECRET": "secret",
    "AZURE_TENANT_ID": "tenant",
}


class TestFromMapping:
    def test_defaults(self):
        settings = Settings.from_mapping({})
        assert settings.cluster_url is None
        assert settings.has_auto_connection is False
        assert settings.auth_method is AuthMethod.AZURE_IDENTITY
        assert settings.response_format is ResponseFormat.JSON
        assert settings.max_response_length == 12_000
        assert settings.default_row_limit == 20
        assert settings.transport == "streamable-http"
        assert settings.port == 8765

    def test_auto_connection(self):
        settings = Settings.from_mapping(
            {"ADX_CLUSTER_URI": "https://help.kusto.windows.net", "ADX_DATABASE": "Samples"}
        )
        assert settings.has_auto_connection is True
        assert settings.database == "Samples"

    def test_app_key_is_picked_when_credentials_are_set(self):
        settings = Settings.from_mapping(APP_CREDENTIALS)
        assert settings.auth_method is AuthMethod.APP_KEY
        assert settings.has_app_credentials is True

    def test_explicit_auth_method(self):
        settings = Settings.from_mapping({**APP_CREDENTIALS, "ADX_AUTH_METHOD": "Azure-CLI"})
        assert settings.auth_method is AuthMethod.AZURE_CLI

    def test_app_key_without_credentials(self):
        with pytest.raises(ConfigurationError, match="AZURE_CLIENT_ID"):
            Settings.from_mapping({"ADX_AUTH_METHOD": "app-key", "AZURE_CLIENT_ID": "client"})

    def test_unknown_auth_method(self):
        with pytest.raises(ConfigurationError, match="ADX_AUTH_METHOD"):
            Settings.from_mapping({"ADX_AUTH_METHOD": "kerberos"})

    def test_numbers_are_parsed(self):
        settings = Settings.from_mapping(
            {
                "ADX_MAX_RESPONSE_LENGTH": "5000",
                "ADX_MIN_RESPONSE_ROWS": "2",
                "ADX_MAX_RETRIES": "0",
                "ADX_RETRY_BASE_DELAY_MS": "250",
                "ADX_RETRY_BACKOFF_MULTIPLIER": "1.5",
                "MCP_PORT": "9000",
            }
        )
        assert settings.max_response_length == 5000
        assert settings.min_response_rows == 2
        assert settings.port == 9000
        policy = settings.retry_policy()
        assert policy.max_retries == 0
        assert policy.base_delay_ms == 250
        assert policy.backoff_multiplier == 1.5

    def test_blank_values_are_ignored(self):
        settings = Settings.from_mapping({"ADX_DATABASE": "   ", "ADX_MAX_RETRIES": ""})
        assert settings.database is None
        assert settings.max_retries == 3

    @pytest.mark.parametrize(
        "env,name",
        [
            ({"ADX_MAX_RESPONSE_LENGTH": "50"}, "ADX_MAX_RESPONSE_LENGTH"),
            ({"ADX_MIN_RESPONSE_ROWS": "-1"}, "ADX_MIN_RESPONSE_ROWS"),
            ({"ADX_MAX_RETRIES": "many"}, "ADX_MAX_RETRIES"),
            ({"ADX_RETRY_BACKOFF_MULTIPLIER": "0.5"}, "ADX_RETRY_BACKOFF_MULTIPLIER"),
        ],
    )
    def test_invalid_values_name_the_variable(self, env, name):
        with pytest.raises(ConfigurationError, match=name):
            Settings.from_mapping(env)

    @pytest.mark.parametrize(
        "raw,expected",
        [("markdown", ResponseFormat.MARKDOWN), ("tabular", ResponseFormat.MARKDOWN), ("structured", ResponseFormat.JSON)],
    )
    def test_response_format(self, raw, expected):
        assert Settings.from_mapping({"ADX_RESPONSE_FORMAT": raw}).response_format is expected

    def test_unknown_response_format_falls_back(self, caplog):
        with caplog.at_level("WARNING", logger="adx_mcp.config"):
            settings = Settings.from_mapping({"ADX_RESPONSE_FORMAT": "xml"})
        assert settings.response_format is ResponseFormat.JSON
        assert "xml" in caplog.text

    def test_stdio_transport(self):
        assert Settings.from_mapping({"MCP_TRANSPORT": "stdio"}).transport == "stdio"

    def test_unknown_transport(self):
        with pytest.raises(ConfigurationError, match="MCP_TRANSPORT"):
            Settings.from_mapping({"MCP_TRANSPORT": "carrier-pigeon"})


class TestDerivedOptions:
    def test_limit_options(self):
        settings = Settings(max_response_length=800, min_response_rows=2, max_cell_length=50)
        options = settings.limit_options()
        assert options.max_length == 800
        assert options.min_rows == 2
        assert options.max_column_width == 50
        assert options.format is ResponseFormat.JSON

    def test_from_env_reads_process_environment(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("ADX_DATABASE", "FromEnv")
        monkeypatch.delenv("ADX_AUTH_METHOD", raising=False)
        monkeypatch.delenv("MCP_TRANSPORT", raising=False)
        assert Settings.from_env().database == "FromEnv"
