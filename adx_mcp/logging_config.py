import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(level: str = "WARNING") -> None:
    """Send log output to stderr; stdout is reserved for the MCP stdio transport."""
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        numeric = logging.WARNING
    logging.basicConfig(level=numeric, format=LOG_FORMAT, stream=sys.stderr, force=True)

    # The Azure SDK logs every HTTP request at INFO.
    logging.getLogger("azure").setLevel(max(numeric, logging.WARNING))
