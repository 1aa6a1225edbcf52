"""Error types raised by the ADX MCP server."""


def _status_of(error) -> int | None:
    status = getattr(error, "status_code", None)
    if isinstance(status, int) and not isinstance(status, bool):
        return status
    return None


class AdxMcpError(Exception):
    """Base error for the ADX MCP server.

    Wrappers built with ``from_error`` keep the original error as ``__cause__``
    and copy its HTTP status so the retry classifier still sees it.
    """

    prefix = ""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(f"{self.prefix}{message}")
        self.status_code = status_code

    @classmethod
    def from_error(cls, message: str, error: BaseException):
        wrapped = cls(message, status_code=_status_of(error))
        wrapped.__cause__ = error
        return wrapped


class AdxConnectionError(AdxMcpError):
    prefix = "Connection error: "


class AdxAuthenticationError(AdxMcpError):
    prefix = "Authentication error: "


class AdxQueryError(AdxMcpError):
    pass


class AdxResourceNotFoundError(AdxMcpError):
    prefix = "Resource not found: "


class AdxValidationError(AdxMcpError):
    prefix = "Validation error: "


class AdxDataConversionError(AdxMcpError):
    prefix = "Data conversion error: "


class AdxTimeoutError(AdxMcpError):
    prefix = "Timeout error: "


class ConfigurationError(AdxMcpError, ValueError):
    """Invalid settings or response-limit options. Never retried."""


_LABELS = [
    (AdxConnectionError, "ADX Connection Error"),
    (AdxAuthenticationError, "ADX Authentication Error"),
    (AdxQueryError, "ADX Query Error"),
    (AdxResourceNotFoundError, "ADX Resource Not Found"),
    (AdxValidationError, "ADX Validation Error"),
    (AdxDataConversionError, "ADX Data Conversion Error"),
    (AdxTimeoutError, "ADX Timeout Error"),
    (ConfigurationError, "ADX Configuration Error"),
]


def format_error(error: BaseException) -> str:
    """Render an error as the one-line text returned to tool callers."""
    if isinstance(error, AdxMcpError):
        for error_type, label in _LABELS:
            if isinstance(error, error_type):
                return f"{label}: {error}"
        return f"ADX Error: {error}"
    return f"Error: {error}"
