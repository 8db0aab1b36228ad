"""
Logging Configuration for Islet.

Provides structured logging with JSON output and performance monitoring.
"""

import json
import logging
import logging.handlers
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Optional

from ...utils.config_paths import get_logs_dir

# Attributes present on every LogRecord; anything else came in through ``extra``
_RESERVED_RECORD_KEYS = frozenset((
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
    'module', 'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
    'thread', 'threadName', 'processName', 'process', 'exc_info', 'exc_text',
    'stack_info', 'taskName', 'message',
))


class JSONFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        # Add extra fields
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_entry[key] = value

        return json.dumps(log_entry, ensure_ascii=False, default=str)


def cleanup_old_logs(log_dir: Path, retention_days: int) -> int:
    """
    Clean up old log files beyond the retention period.

    Args:
        log_dir: Directory containing log files
        retention_days: Number of days to retain log files

    Returns:
        Number of files cleaned up
    """
    cutoff_date = datetime.now() - timedelta(days=retention_days)
    cleaned_count = 0

    # Rotated main and error logs
    for pattern in ('islet.log.*', 'islet-errors.log.*'):
        for log_file in log_dir.glob(pattern):
            try:
                file_mtime = datetime.fromtimestamp(log_file.stat().st_mtime)
                if file_mtime < cutoff_date:
                    log_file.unlink()
                    cleaned_count += 1
            except OSError as e:
                logging.getLogger("islet.logging").warning(f"Failed to clean up log file {log_file}: {e}")

    return cleaned_count


def _rotating_handler(path: Path, level: int, retention_days: int) -> logging.Handler:
    handler = logging.handlers.TimedRotatingFileHandler(
        str(path),
        when='midnight',  # Rotate at midnight
        interval=1,
        backupCount=retention_days,
        encoding='utf-8'
    )
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter())
    return handler


def setup_logging(debug: bool = False, log_dir: Optional[str] = None, retention_days: int = 10) -> None:
    """
    Setup logging configuration for Islet with daily rotation.

    Args:
        debug: Enable debug level logging
        log_dir: Directory for log files (defaults to user data dir)
        retention_days: Number of days to retain log files (default: 10)
    """
    if log_dir:
        log_dir_path = Path(log_dir)
        log_dir_path.mkdir(parents=True, exist_ok=True)
    else:
        log_dir_path = get_logs_dir()

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if debug else logging.INFO)

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    # Console handler with simple format
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG if debug else logging.INFO)
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    root_logger.addHandler(console_handler)

    root_logger.addHandler(_rotating_handler(log_dir_path / 'islet.log', logging.DEBUG, retention_days))
    root_logger.addHandler(_rotating_handler(log_dir_path / 'islet-errors.log', logging.ERROR, retention_days))

    cleanup_old_logs(log_dir_path, retention_days)

    logging.getLogger("islet").setLevel(logging.DEBUG if debug else logging.INFO)
    logging.getLogger("PyQt6").setLevel(logging.WARNING)

    logger = logging.getLogger("islet.logging")
    logger.info(f"Logging initialized - Debug: {debug}, Log dir: {log_dir_path}")


def setup_logging_from_settings(settings_manager) -> None:
    """Configure logging from the ``advanced.*`` settings."""
    setup_logging(
        debug=str(settings_manager.get('advanced.log_level', 'INFO')).upper() == 'DEBUG',
        log_dir=settings_manager.get('advanced.log_location', '') or None,
        retention_days=settings_manager.get('advanced.log_retention_days', 10),
    )


def get_performance_logger() -> logging.Logger:
    """Get a logger specifically for performance metrics."""
    return logging.getLogger("islet.performance")


def log_performance(operation: str, duration: float, metadata: Optional[Dict[str, Any]] = None):
    """
    Log performance metrics.

    Args:
        operation: Name of the operation
        duration: Duration in seconds
        metadata: Additional metadata
    """
    perf_logger = get_performance_logger()
    extra = {
        "operation": operation,
        "duration_ms": round(duration * 1000, 2),
        "metadata": metadata or {}
    }
    perf_logger.info(f"Performance: {operation} took {duration:.3f}s", extra=extra)
