"""Logging configuration service for the library sync application."""

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Any

import structlog


class LoggingService:
    """Service for configuring and managing application logging."""

    def __init__(
        self,
        log_level: str = "INFO",
        log_dir: Path | None = None,
    ) -> None:
        """Initialize the logging service.

        Args:
            log_level: The minimum log level to capture
            log_dir: Directory for log files (None for console only)
        """
        self.log_level = log_level.upper()
        self.log_dir = log_dir
        self.is_development = os.getenv("ENVIRONMENT", "development") == "development"
        self._leveled_handlers: list[logging.Handler] = []

    def configure(self) -> None:
        """Configure structlog with appropriate processors and handlers."""
        self._configure_stdlib_logging()

        structlog.configure(
            processors=self._get_processors(),
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

    def _configure_stdlib_logging(self) -> None:
        """Configure standard library logging handlers."""
        root_logger = logging.getLogger()
        root_logger.handlers.clear()

        numeric_level = getattr(logging, self.log_level, logging.INFO)
        root_logger.setLevel(numeric_level)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(logging.Formatter("%(message)s"))
        root_logger.addHandler(console_handler)
        self._leveled_handlers = [console_handler]

        # httpx logs every request at INFO; our own request logging covers it
        logging.getLogger("httpx").setLevel(max(numeric_level, logging.WARNING))

        if self.log_dir:
            self._setup_file_logging(root_logger, numeric_level)

    def _setup_file_logging(self, root_logger: logging.Logger, level: int) -> None:
        """Set up file-based logging with rotation."""
        if not self.log_dir:
            return

        self.log_dir.mkdir(parents=True, exist_ok=True)

        file_formatter = logging.Formatter("%(message)s")

        file_handler = logging.handlers.RotatingFileHandler(
            filename=self.log_dir / "app.log",
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding="utf-8"
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)
        self._leveled_handlers.append(file_handler)

        # Error log (ERROR and CRITICAL only)
        error_handler = logging.handlers.RotatingFileHandler(
            filename=self.log_dir / "error.log",
            maxBytes=5 * 1024 * 1024,  # 5MB
            backupCount=3,
            encoding="utf-8"
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(file_formatter)
        root_logger.addHandler(error_handler)

    def _get_processors(self) -> list[Any]:
        """Get the appropriate structlog processors for the environment."""
        common_processors = [
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
        ]

        if self.is_development and not self.log_dir:
            return common_processors + [
                structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
            ]
        # Files and production consoles get one JSON object per line
        return common_processors + [
            structlog.processors.JSONRenderer()
        ]

    def set_level(self, log_level: str) -> None:
        """Change the minimum level after configure(), e.g. once the config file is read.

        The error log keeps capturing ERROR and above regardless.
        """
        self.log_level = log_level.upper()
        numeric_level = getattr(logging, self.log_level, logging.INFO)
        logging.getLogger().setLevel(numeric_level)
        for handler in self._leveled_handlers:
            handler.setLevel(numeric_level)
        logging.getLogger("httpx").setLevel(max(numeric_level, logging.WARNING))


def setup_logging(
    log_level: str = "INFO",
    log_dir: Path | None = None,
) -> LoggingService:
    """Set up application logging with the specified configuration.

    Args:
        log_level: Minimum log level to capture
        log_dir: Directory for log files (None for console only)

    Returns:
        Configured LoggingService instance
    """
    service = LoggingService(log_level=log_level, log_dir=log_dir)
    service.configure()
    return service


def progress_interval(total: int) -> int:
    """How many items to process between progress lines for a batch of ``total``."""
    if total > 1000:
        return 100
    if total > 500:
        return 50
    if total > 100:
        return 20
    return 10


def log_progress(
    logger: structlog.stdlib.BoundLogger,
    index: int,
    total: int,
    noun: str,
) -> bool:
    """Log a progress line for the 1-based ``index`` if it falls on the cadence.

    Returns:
        True if a line was logged
    """
    if total <= 0:
        return False
    if index % progress_interval(total) != 0 and index != total:
        return False
    logger.info(
        "Progress",
        item=noun,
        index=index,
        total=total,
        percent=round(index / total * 100),
    )
    return True
