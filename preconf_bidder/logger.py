import logging
import sys

from typing import Dict, Optional

DEFAULT_LOGGER_NAME = "preconf_bidder"


class ColorFormatter(logging.Formatter):
    """Custom formatter for colored log output."""
    COLORS: Dict[str, str] = {
        "DEBUG": "\033[94m",    # Blue
        "INFO": "\033[92m",     # Green
        "WARNING": "\033[93m",  # Yellow
        "ERROR": "\033[91m",    # Red
        "CRITICAL": "\033[91m\033[1m", # Bold Red
        "RESET": "\033[0m",     # Reset
    }

    def format(self, record: logging.LogRecord) -> str:
        """Formats a log record with colors."""
        # Work on a copy so other handlers still see the plain record
        record = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelname, self.COLORS["RESET"])
        reset = self.COLORS["RESET"]
        record.levelname = f"{color}{record.levelname}{reset}"
        record.msg = f"{color}{record.getMessage()}{reset}"
        record.args = None
        return super().format(record)


def configure_logging(
    level: int = logging.INFO,
    app_name: str = DEFAULT_LOGGER_NAME,
    version: str = "",
) -> None:
    """Configures the root logger with a single colored stdout handler."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        ColorFormatter(
            f"%(asctime)s [%(levelname)s] {app_name} {version} %(name)s: %(message)s".replace("  ", " ")
        )
    )
    logging.basicConfig(level=level, handlers=[handler], force=True)


def get_logger(name: Optional[str] = None, level: int = logging.INFO) -> logging.Logger:
    """Returns a logger instance, configuring logging if it hasn't been yet."""
    if not logging.getLogger().hasHandlers():
        configure_logging(level)
    return logging.getLogger(name if name else DEFAULT_LOGGER_NAME)


def mask_endpoint(endpoint: Optional[str]) -> str:
    """
    Hide everything past the first 10 characters of an endpoint.

    :param endpoint: URL or address to mask.
    :return: Masked string safe for log output.
    """
    if endpoint and len(endpoint) > 10:
        return endpoint[:10] + "*****"
    return "*****"
