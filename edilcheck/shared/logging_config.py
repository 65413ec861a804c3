"""
Centralized logging configuration for Edil-Check.
Provides consistent logging across store, remote client, sync and server components.
"""

import logging
import sys
from datetime import datetime

from termcolor import colored

from edilcheck.shared.utils import env_flag, get_data_path


class EdilCheckFormatter(logging.Formatter):
    """Custom formatter with component identification and colors for console"""

    LEVEL_COLORS = {
        'DEBUG': 'cyan',
        'INFO': 'green',
        'WARNING': 'yellow',
        'ERROR': 'red',
        'CRITICAL': 'magenta'
    }

    def __init__(self, component: str, use_colors: bool = True):
        self.component = component
        try:
            self.use_colors = bool(use_colors and sys.stdout and sys.stdout.isatty())
        except (AttributeError, OSError, ValueError):
            self.use_colors = False

        # Format: [TIMESTAMP] [COMPONENT] [LEVEL] Message
        super().__init__(
            fmt='[%(asctime)s] [%(component)s] [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    def format(self, record):
        record.component = self.component
        formatted = super().format(record)

        if self.use_colors:
            color = self.LEVEL_COLORS.get(record.levelname, 'white')
            return colored(formatted, color)
        return formatted


def setup_logging(component: str, level: str = "INFO", log_to_file: bool = None) -> logging.Logger:
    """Setup standardized logging for an Edil-Check component.

    Args:
        component: Component name (e.g., 'STORE', 'SYNC', 'SERVER')
        level: Log level name. Defaults to INFO
        log_to_file: Also log to a file in the data directory's logs/ folder.
            Defaults to the EDILCHECK_LOG_TO_FILE environment flag (on).

    Returns:
        Configured logger instance

    Note:
        Prevents duplicate handlers if called multiple times with same component.
    """
    logger = logging.getLogger(f"edilcheck.{component.lower()}")

    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    console_handler = logging.StreamHandler(sys.stdout or sys.stderr)
    console_handler.setFormatter(EdilCheckFormatter(component, use_colors=True))
    logger.addHandler(console_handler)

    if log_to_file is None:
        log_to_file = env_flag('EDILCHECK_LOG_TO_FILE', True)

    if log_to_file:
        try:
            log_dir = get_data_path('logs')
            log_dir.mkdir(exist_ok=True)

            log_file = log_dir / f"edilcheck_{component.lower()}_{datetime.now().strftime('%Y-%m-%d')}.log"

            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setFormatter(EdilCheckFormatter(component, use_colors=False))
            logger.addHandler(file_handler)
        except OSError as e:
            logger.warning(f"Could not setup file logging: {e}")

    return logger


def get_logger(component: str) -> logging.Logger:
    """Get existing logger for component or create with default settings"""
    existing = logging.getLogger(f"edilcheck.{component.lower()}")
    if existing.handlers:
        return existing
    return setup_logging(component)


def get_store_logger() -> logging.Logger:
    """Get logger for the local store"""
    return get_logger("STORE")


def get_remote_logger() -> logging.Logger:
    """Get logger for the remote database client"""
    return get_logger("REMOTE")


def get_sync_logger() -> logging.Logger:
    """Get logger for sync operations"""
    return get_logger("SYNC")


def get_context_logger() -> logging.Logger:
    """Get logger for the database context"""
    return get_logger("CONTEXT")


def get_server_logger() -> logging.Logger:
    """Get logger for the backup server"""
    return get_logger("SERVER")


def get_launcher_logger() -> logging.Logger:
    """Get logger for the command-line launcher"""
    return get_logger("LAUNCHER")


def set_log_level(level: str):
    """Set log level for all Edil-Check loggers"""
    level_obj = getattr(logging, level.upper(), logging.INFO)

    for name in list(logging.root.manager.loggerDict):
        if name.startswith('edilcheck.'):
            logger = logging.getLogger(name)
            logger.setLevel(level_obj)
            for handler in logger.handlers:
                handler.setLevel(level_obj)


def enable_debug_logging():
    """Enable debug logging for troubleshooting"""
    set_log_level("DEBUG")


def disable_debug_logging():
    """Disable debug logging for production"""
    set_log_level("INFO")
