"""
Centralized logging for the Ethereum Event Engine.

Provides standardized logging with JSON and human-readable formatters
and per-module log files.

Usage:
    from engine_logging.logger_manager import setup_module_logger, create_module_log_directories

    create_module_log_directories()
    logger = setup_module_logger('my_logger', 'my_module.log', module_folder='Multiplexer_Logs')
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path

# Resolve project root
_PROJECT_ROOT = Path(__file__).parent.parent

# Load logging config
try:
    from config.loader import get_config

    _app_config = get_config().get_app_config()
except ImportError:
    _app_config = {}

_LOG_DIR = os.getenv(
    "ENGINE_LOG_DIR",
    str(_PROJECT_ROOT / _app_config.get("logging", {}).get("log_dir", "logs")),
)
_MODULE_FOLDERS = _app_config.get("logging", {}).get(
    "module_folders",
    {
        "main": "Main_Logs",
        "multiplexer": "Multiplexer_Logs",
        "gateway": "Gateway_Logs",
        "eth_connection": "Eth_Connection_Logs",
        "registry": "Registry_Logs",
        "sink": "Sink_Logs",
    },
)
_DEFAULT_LEVEL = logging.getLevelName(
    os.getenv("LOG_LEVEL", _app_config.get("logging", {}).get("level", "INFO")).upper()
)
if not isinstance(_DEFAULT_LEVEL, int):
    _DEFAULT_LEVEL = logging.INFO


# ============================================================================
# FORMATTERS
# ============================================================================


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter with correlation ID support."""

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
        for key in (
            "trace_id",
            "canonical_key",
            "response_key",
            "address",
            "event_type",
            "channel",
            "error",
        ):
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Pretty-printed log formatter for console and human-readable files."""

    FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s"
    DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

    def __init__(self) -> None:
        super().__init__(fmt=self.FORMAT, datefmt=self.DATE_FORMAT)


class RawMessageFormatter(logging.Formatter):
    """Pass-through formatter for pre-formatted log messages (e.g., Redis payloads)."""

    def format(self, record: logging.LogRecord) -> str:
        return record.getMessage()


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
    level: int | None = None,
    module_folder: str | None = None,
    use_json_formatter: bool = False,
    use_raw_formatter: bool = False,
    console: bool = False,
) -> logging.Logger:
    """
    Create a module-specific logger with file and optional console handlers.

    Args:
        name: Logger name (should be unique per module/component).
        log_file: Log filename (placed inside module_folder if specified).
        level: Logging level (default from LOG_LEVEL / app.json).
        module_folder: Subfolder within logs/ directory (e.g., 'Gateway_Logs').
        use_json_formatter: Use structured JSON format (default False = human-readable).
        use_raw_formatter: Use raw pass-through format (for Redis payload logging).
        console: Also emit to stderr.

    Returns:
        Configured logging.Logger instance.
    """
    # Return cached logger if already created
    cache_key = f"{name}:{module_folder}:{log_file}"
    if cache_key in _logger_cache:
        return _logger_cache[cache_key]

    if level is None:
        level = _DEFAULT_LEVEL

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
    if use_raw_formatter:
        formatter = RawMessageFormatter()
    elif use_json_formatter:
        formatter = JSONFormatter()
    else:
        formatter = HumanReadableFormatter()

    # File handler
    file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(HumanReadableFormatter())
        logger.addHandler(console_handler)

    # Prevent propagation to root logger
    logger.propagate = False

    _logger_cache[cache_key] = logger
    return logger
