"""Logging configuration for the NetPulse engine.

All engine modules log through child loggers of a single ``netpulse`` root
logger. The host application calls ``setup_logging`` once; library use
without setup still works through a basic fallback configuration.

Usage:
    from config.logging_config import setup_logging, get_logger

    setup_logging(data_dir=Path.home() / ".netpulse")

    logger = get_logger(__name__)
    logger.info("Discovery started")
"""
import logging
import sys
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from config.constants import STORAGE

ROOT_LOGGER_NAME = 'netpulse'

# Module-level logger cache
_loggers: dict = {}
_initialized: bool = False


class ConsoleFormatter(logging.Formatter):
    """Formatter that colors the level name when writing to a terminal."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def __init__(self, use_colors: bool = True):
        self.use_colors = use_colors
        super().__init__(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    def format(self, record: logging.LogRecord) -> str:
        if self.use_colors and sys.stderr.isatty():
            color = self.COLORS.get(record.levelname, '')
            record = logging.makeLogRecord(record.__dict__)
            record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


def setup_logging(
    data_dir: Optional[Path] = None,
    debug: bool = False,
    console_output: bool = True,
    log_to_file: bool = True
) -> logging.Logger:
    """Initialize the engine's logging.

    Calling it again replaces the handlers installed by the previous call.

    Args:
        data_dir: Directory for the rotating log file. Defaults to ~/.netpulse/
        debug: Enable debug-level logging.
        console_output: Also log to stderr.
        log_to_file: Write logs to a rotating file.

    Returns:
        The ``netpulse`` root logger.
    """
    global _initialized

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(logging.DEBUG if debug else logging.INFO)
    root_logger.handlers.clear()
    # Handlers below replace the basicConfig fallback used before setup.
    root_logger.propagate = False

    if log_to_file:
        if data_dir is None:
            data_dir = Path.home() / STORAGE.DATA_DIR_NAME
        data_dir.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            data_dir / STORAGE.LOG_FILE,
            maxBytes=STORAGE.LOG_MAX_BYTES,
            backupCount=STORAGE.LOG_BACKUP_COUNT,
            encoding='utf-8'
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        root_logger.addHandler(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.DEBUG if debug else logging.WARNING)
        console_handler.setFormatter(ConsoleFormatter(use_colors=True))
        root_logger.addHandler(console_handler)

    root_logger.info(
        f"Logging initialized - level={'DEBUG' if debug else 'INFO'}, "
        f"file={log_to_file}, console={console_output}"
    )

    _initialized = True
    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a child logger of ``netpulse`` for a module.

    Only the last two components of a dotted module name are kept, so
    ``engine.discovery`` logs as ``netpulse.engine.discovery``.

    Args:
        name: Usually __name__ of the calling module.
    """
    parts = name.split('.')
    short_name = '.'.join(parts[-2:])

    if short_name not in _loggers:
        if not _initialized:
            logging.basicConfig(level=logging.INFO)
        _loggers[short_name] = logging.getLogger(f'{ROOT_LOGGER_NAME}.{short_name}')

    return _loggers[short_name]


def log_subprocess_call(
    logger: logging.Logger,
    command: list,
    returncode: int,
    duration_ms: float,
    success: bool
) -> None:
    """Log an external command with its exit code and duration."""
    level = logging.DEBUG if success else logging.WARNING
    logger.log(
        level,
        f"Command: {' '.join(command[:3])}{'...' if len(command) > 3 else ''} "
        f"-> rc={returncode}, {duration_ms:.1f}ms"
    )


class LogContext:
    """Context manager that logs how long an operation took.

    Example:
        >>> with LogContext(logger, "ARP scan"):
        ...     probe.read_arp_table()
        # Logs: "ARP scan completed in 42ms"
    """

    def __init__(self, logger: logging.Logger, operation: str, level: int = logging.DEBUG):
        self.logger = logger
        self.operation = operation
        self.level = level
        self.start_time: Optional[float] = None

    def __enter__(self):
        self.start_time = time.monotonic()
        self.logger.log(self.level, f"{self.operation} starting...")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = (time.monotonic() - self.start_time) * 1000

        if exc_type:
            self.logger.error(f"{self.operation} failed after {duration:.0f}ms: {exc_val}")
        else:
            self.logger.log(self.level, f"{self.operation} completed in {duration:.0f}ms")

        return False
