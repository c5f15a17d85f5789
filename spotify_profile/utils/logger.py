"""
Logging configuration and utilities for spotify-profile
Provides colored console output and file logging with separation between user and technical messages
"""

import logging
import logging.handlers
import re
import sys
from pathlib import Path
from typing import Optional
import colorama
from colorama import Fore, Back, Style


# Initialize colorama for Windows compatibility
colorama.init()

# Set once by setup_logging(); decides which logger components receive
_logging_configured = False

FILE_FORMAT = '%(asctime)s | %(name)-32s | %(levelname)-8s | %(funcName)-20s | %(message)s'
FALLBACK_FORMAT = '%(name)s.%(levelname)s: %(message)s'


class ConsoleMessageFilter(logging.Filter):
    """Filter to allow only user-facing messages to console"""

    def __init__(self, verbose: bool = False):
        super().__init__()
        self.verbose = verbose

    def filter(self, record):
        # Allow all WARNING+ messages
        if record.levelno >= logging.WARNING:
            return True

        # Allow messages explicitly marked for console
        if getattr(record, 'console_output', False):
            return True

        # Technical INFO/DEBUG messages only in verbose mode
        return self.verbose


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colored output for console"""

    # Color mapping for log levels
    COLORS = {
        'DEBUG': Fore.CYAN,
        'INFO': Fore.GREEN,
        'WARNING': Fore.YELLOW,
        'ERROR': Fore.RED,
        'CRITICAL': Fore.RED + Back.WHITE + Style.BRIGHT,
    }

    def __init__(self, fmt: Optional[str] = None, use_colors: bool = True):
        """
        Initialize colored formatter

        Args:
            fmt: Log format string
            use_colors: Whether to use colored output
        """
        self.use_colors = use_colors
        self.fmt = fmt or '%(message)s'
        super().__init__(self.fmt)

    def format(self, record: logging.LogRecord) -> str:
        """Format log record, coloring the level name and warnings/errors"""
        if not self.use_colors or record.levelname not in self.COLORS:
            return super().format(record)

        # Work on a copy so other handlers see the untouched record
        record_copy = logging.makeLogRecord(record.__dict__)
        record_copy.levelname = f"{self.COLORS[record.levelname]}{record.levelname}{Style.RESET_ALL}"
        message = super().format(record_copy)
        if record.levelno >= logging.WARNING:
            message = f"{self.COLORS[record.levelname]}{message}{Style.RESET_ALL}"
        return message


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    console_output: bool = True,
    colored_output: bool = True,
    max_size: str = "10MB",
    backup_count: int = 3,
    verbose: bool = False
) -> None:
    """
    Setup application logging configuration with separated console/file output

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file (None to disable file logging)
        console_output: Enable console logging
        colored_output: Enable colored console output
        max_size: Maximum log file size before rotation
        backup_count: Number of backup log files to keep
        verbose: Show technical INFO/DEBUG messages on the console
    """
    global _logging_configured

    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)

    # Console handler - only user-facing messages (WARNING+ or explicitly marked)
    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.addFilter(ConsoleMessageFilter(verbose=verbose))
        console_handler.setFormatter(ColoredFormatter(
            fmt='%(levelname)s %(message)s' if verbose else '%(message)s',
            use_colors=colored_output
        ))
        root_logger.addHandler(console_handler)

    # File handler with full detail logging
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=parse_size(max_size),
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(logging.Formatter(fmt=FILE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
        root_logger.addHandler(file_handler)

    # Keep library chatter out of both outputs
    for lib in ('aiohttp.access', 'aiohttp.server', 'aiohttp.web', 'asyncio'):
        logging.getLogger(lib).setLevel(logging.WARNING)

    _logging_configured = True

    logger = logging.getLogger('spotify_profile')
    logger.debug(f"Logging initialized - Level: {level}, Console: {console_output}, File: {log_file}")


def parse_size(size_str: str) -> int:
    """
    Parse size string to bytes

    Args:
        size_str: Size string like "10MB", "1GB", "500KB"

    Returns:
        Size in bytes
    """
    size_str = size_str.upper().strip()

    multipliers = {
        'B': 1,
        'KB': 1024,
        'MB': 1024 ** 2,
        'GB': 1024 ** 3,
    }

    match = re.match(r'^(\d+(?:\.\d+)?)\s*([KMG]?B)$', size_str)
    if not match:
        raise ValueError(f"Invalid size format: {size_str}")

    number, unit = match.groups()
    return int(float(number) * multipliers[unit])


def get_logger(name: str) -> logging.Logger:
    """
    Get logger instance for a module

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance with a console_info method for user-facing messages
    """
    logger = logging.getLogger(name)

    def console_info(message: str):
        """Log message that should appear on console for user"""
        logger.info(message, extra={'console_output': True})

    logger.console_info = console_info
    return logger


def get_fallback_logger(name: str) -> logging.Logger:
    """
    Console-only logger used when logging was never configured

    Writes ``name.LEVEL: message`` lines to stderr and does not propagate,
    so it behaves the same whether or not the root logger has handlers.
    """
    logger = get_logger(f"{name}.fallback")
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(FALLBACK_FORMAT))
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
        logger.propagate = False
    return logger


def select_logger(name: str) -> logging.Logger:
    """
    Logger handed to a component at construction

    The configured application logger once setup_logging() has run,
    the console fallback otherwise.
    """
    if _logging_configured:
        return get_logger(name)
    return get_fallback_logger(name)


def configure_from_settings(settings, verbose: bool = False) -> None:
    """
    Configure logging from application settings

    Falls back to console-only logging when the configured file cannot be
    opened; the failure is reported through the fallback configuration.
    """
    log_file_path = None
    if settings.logging.file:
        if Path(settings.logging.file).expanduser().is_absolute():
            log_file_path = Path(settings.logging.file).expanduser()
        else:
            log_file_path = settings.get_config_directory() / settings.logging.file

    level = "DEBUG" if verbose else settings.logging.level
    try:
        setup_logging(
            level=level,
            log_file=str(log_file_path) if log_file_path else None,
            console_output=settings.logging.console_output,
            colored_output=settings.logging.colored_output,
            max_size=settings.logging.max_size,
            backup_count=settings.logging.backup_count,
            verbose=verbose
        )
    except (OSError, ValueError) as e:
        setup_logging(level=level, console_output=True, verbose=verbose)
        get_logger('spotify_profile').warning(f"File logging disabled: {e}")
