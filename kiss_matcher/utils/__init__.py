"""
KISS-Matcher utilities: settings and logging
"""

from .config import Settings, settings
from .logging_config import PerformanceLogger, performance_logger, setup_logging

__all__ = [
    'Settings',
    'settings',
    'PerformanceLogger',
    'performance_logger',
    'setup_logging'
]
