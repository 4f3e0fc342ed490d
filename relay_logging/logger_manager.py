"""
Centralized logging for the Pump Log Relay.

Provides standardized logging with human-readable and JSON formatters,
per-module log files, and structured event-flow tracing.

Usage:
    from relay_logging.logger_manager import setup_module_logger, create_module_log_directories

    create_module_log_directories()
    logger = setup_module_logger('upstream', 'upstream.log', module_folder='Upstream_Logs')
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

# Resolve project root
_PROJECT_ROOT = Path(__file__).parent.parent

# Load logging config
try:
    from config.loader import get_config

    _app_config = get_config().get_app_config()
except ImportError:
    _app_config = {}

_logging_config = _app_config.get("logging", {})
_LOG_DIR = str(_PROJECT_ROOT / _logging_config.get("log_dir", "logs"))
_CONSOLE_ENABLED: bool = _logging_config.get("console", True)
_MODULE_FOLDERS = _logging_config.get(
    "module_folders",
    {
        "main": "Main_Logs",
        "upstream": "Upstream_Logs",
        "classifier": "Classifier_Logs",
        "registry": "Registry_Logs",
        "broadcaster": "Broadcaster_Logs",
        "connections": "Connection_Logs",
        "event_flow": "Event_Flow_Logs",
    },
)


# ============================================================================
# FORMATTERS
# ============================================================================


# Trace fields passed through `extra=` by log_event_flow
_EXTRA_FIELDS = ("stage", "source_module", "signature", "data", "next_stage")


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter; used for the event-flow trace."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        # Include extra fields if present
        for key in _EXTRA_FIELDS:
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Pretty-printed log formatter for console and human-readable files."""

    FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s"
    DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

    def __init__(self) -> None:
        super().__init__(fmt=self.FORMAT, datefmt=self.DATE_FORMAT)


# ============================================================================
# LOGGER FACTORY
# ============================================================================

_logger_cache: dict[str, logging.Logger] = {}


def create_module_log_directories() -> dict[str, str]:
    """
    Create organized log directory structure.

    Returns dict mapping folder key to absolute path.
    """
    created = {}
    os.makedirs(_LOG_DIR, exist_ok=True)
    for key, folder_name in _MODULE_FOLDERS.items():
        folder_path = os.path.join(_LOG_DIR, folder_name)
        os.makedirs(folder_path, exist_ok=True)
        created[key] = folder_path
    return created


def setup_module_logger(
    name: str,
    log_file: str,
    level: int = logging.INFO,
    module_folder: str | None = None,
    use_json_formatter: bool = False,
    console: bool | None = None,
) -> logging.Logger:
    """
    Create a module-specific logger with file and optional console handlers.

    Args:
        name: Logger name (should be unique per module/component).
        log_file: Log filename (placed inside module_folder if specified).
        level: Logging level (default INFO).
        module_folder: Subfolder within logs/ directory (e.g., 'Upstream_Logs').
        use_json_formatter: Use structured JSON format (default False = human-readable).
        console: Also log to stderr. None falls back to app.json logging.console.

    Returns:
        Configured logging.Logger instance.
    """
    # Return cached logger if already created
    cache_key = f"{name}:{module_folder}:{log_file}"
    if cache_key in _logger_cache:
        return _logger_cache[cache_key]

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Prevent duplicate handlers
    if logger.handlers:
        _logger_cache[cache_key] = logger
        return logger

    # Determine log file path
    if module_folder:
        log_path = os.path.join(_LOG_DIR, module_folder, log_file)
    else:
        log_path = os.path.join(_LOG_DIR, log_file)
    os.makedirs(os.path.dirname(log_path), exist_ok=True)

    # Select formatter
    formatter: logging.Formatter
    if use_json_formatter:
        formatter = JSONFormatter()
    else:
        formatter = HumanReadableFormatter()

    # File handler
    file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if console is None:
        console = _CONSOLE_ENABLED and not use_json_formatter
    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(HumanReadableFormatter())
        logger.addHandler(console_handler)

    # Prevent propagation to root logger
    logger.propagate = False

    _logger_cache[cache_key] = logger
    return logger


_event_flow_logger: logging.Logger | None = None


def get_event_flow_logger() -> logging.Logger:
    """Get or create the event-flow trace logger (lazy singleton)."""
    global _event_flow_logger
    if _event_flow_logger is None:
        _event_flow_logger = setup_module_logger(
            "event_flow",
            "event_flow_trace.log",
            module_folder=_MODULE_FOLDERS.get("event_flow", "Event_Flow_Logs"),
            use_json_formatter=True,
        )
    return _event_flow_logger


# ============================================================================
# STRUCTURED LOGGING HELPERS (event-flow tracing)
# ============================================================================


def log_event_flow(
    stage: str,
    source_module: str,
    what: str,
    data: Any,
    signature: str | None = None,
    next_stage: str | None = None,
) -> None:
    """Log one pipeline hop (classified, enqueued, delivered) to the trace log."""
    get_event_flow_logger().info(
        what,
        extra={
            "stage": stage,
            "source_module": source_module,
            "signature": signature,
            "data": data,
            "next_stage": next_stage,
        },
    )
