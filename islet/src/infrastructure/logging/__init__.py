"""Logging configuration for Islet."""

from .logging_config import setup_logging, get_performance_logger, log_performance

__all__ = [
    'setup_logging',
    'get_performance_logger',
    'log_performance',
]
