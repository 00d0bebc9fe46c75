"""
utils/logger.py

Logging system for the auto-recovery engine.

- Python logging throughout; modules obtain loggers via get_logger(__name__).
- Colored console output via colorama.
- RotatingFileHandler writing structured JSON for persistent logs.
- setup_logging(config) initializes the global logging configuration.

Structured context fields (correlation_id, component, recovery_action_id) are
attached by passing ``extra`` to a logging call; both the JSON and pretty
formatters render them.
"""

import json
import logging
import os
import sys
import uuid
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

from colorama import Back, Fore, Style, init as colorama_init

from utils.time import utc_now

# Module-level logger for internal errors
logger = logging.getLogger(__name__)

# Initialize colorama (for Windows support)
colorama_init(autoreset=True)

LOGS_DIR = Path("logs")
DEFAULT_LOG_FILE = LOGS_DIR / "ces_recovery.log"

_STANDARD_ATTRS = {
    "name", "msg", "args", "levelname", "levelno", "pathname", "filename",
    "module", "exc_info", "exc_text", "stack_info", "lineno", "funcName",
    "created", "msecs", "relativeCreated", "thread", "threadName",
    "processName", "process", "taskName", "message", "asctime",
}

_CONTEXT_FIELDS = ("correlation_id", "component", "recovery_action_id")

# Handlers installed by setup_logging, removed again on reconfiguration
_INSTALLED_HANDLERS = []


class ColorFormatter(logging.Formatter):
    """Formatter that adds simple color codes based on levelname."""

    LEVEL_COLORS = {
        "DEBUG": Fore.CYAN,
        "INFO": Fore.GREEN,
        "WARNING": Fore.YELLOW,
        "ERROR": Fore.RED,
        "CRITICAL": Fore.WHITE + Back.RED,
    }

    def __init__(self, fmt=None, datefmt=None):
        super().__init__(fmt or "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                         datefmt or "%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname, "")
        message = super().format(record)
        return f"{color}{message}{Style.RESET_ALL}"


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": utc_now().isoformat(),
            "level": record.levelname,
            "module": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
        }

        # Extra fields passed through `extra=`
        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and key not in log_entry and value is not None:
                log_entry[key] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class PrettyFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    def __init__(self, fmt=None, datefmt=None):
        default_fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
        super().__init__(fmt or default_fmt, datefmt or "%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        """Format with context information."""
        formatted = super().format(record)
        context_parts = [
            f"{name}={getattr(record, name)}"
            for name in _CONTEXT_FIELDS
            if getattr(record, name, None)
        ]
        if context_parts:
            formatted = f"{formatted} ({' | '.join(context_parts)})"
        return formatted


def setup_logging(config: Optional[Dict[str, Any]] = None) -> logging.Logger:
    """
    Configure root logging for the recovery engine.

    Supports environment variables:
    - LOG_LEVEL: DEBUG, INFO, WARNING, ERROR, CRITICAL (default: INFO)
    - LOG_FILE: Path to log file (default: logs/ces_recovery.log)
    - LOG_FORMAT: json, pretty, or color (default: color)

    Args:
        config: Optional dict with logging configuration. Expected keys:
            - level (str or int)
            - file_logging (bool)
            - log_file (str)
            - max_size (int)
            - backup_count (int)
            - console (bool)
            - format (str): json, pretty, or color

    Returns:
        The configured root logger
    """
    env_level = os.getenv("LOG_LEVEL", "INFO").upper()
    env_log_file = os.getenv("LOG_FILE")
    env_format = os.getenv("LOG_FORMAT", "color").lower()

    valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if env_level not in valid_levels:
        print(f"Warning: Invalid LOG_LEVEL '{env_level}', using INFO", file=sys.stderr)
        env_level = "INFO"

    cfg = {
        "level": env_level,
        "file_logging": True,
        "log_file": env_log_file or str(DEFAULT_LOG_FILE),
        "max_size": 10 * 1024 * 1024,
        "backup_count": 5,
        "console": True,
        "format": env_format,
    }
    if config:
        cfg.update(config)

    level = cfg.get("level", "INFO")
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    # Remove handlers from a previous call to avoid duplication
    for handler in list(_INSTALLED_HANDLERS):
        root.removeHandler(handler)
        handler.close()
    _INSTALLED_HANDLERS.clear()

    log_format = cfg.get("format", "color")

    if cfg.get("console", True):
        console_handler = logging.StreamHandler(sys.stdout)
        if log_format == "json":
            console_handler.setFormatter(JSONFormatter())
        elif log_format == "pretty":
            console_handler.setFormatter(PrettyFormatter())
        else:
            console_handler.setFormatter(ColorFormatter())
        console_handler.setLevel(level)
        root.addHandler(console_handler)
        _INSTALLED_HANDLERS.append(console_handler)

    # File handler (always JSON for structured logging)
    if cfg.get("file_logging", True):
        log_file = Path(cfg.get("log_file"))
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                str(log_file),
                maxBytes=int(cfg.get("max_size", 10 * 1024 * 1024)),
                backupCount=int(cfg.get("backup_count", 5)),
                encoding="utf-8",
            )
        except OSError as e:
            logger.warning(f"File logging disabled, cannot open {log_file}: {e}")
        else:
            file_handler.setFormatter(JSONFormatter())
            file_handler.setLevel(level)
            root.addHandler(file_handler)
            _INSTALLED_HANDLERS.append(file_handler)

    return root


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the given name."""
    return logging.getLogger(name)


def generate_correlation_id() -> str:
    """Generate a short unique correlation id for tracing one monitoring tick."""
    return uuid.uuid4().hex
