"""
Logging Configuration for KISS-Matcher
Console and rotating-file logging with performance records
"""

import logging
import logging.config
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .config import settings


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None):
    """
    Setup application logging configuration

    Args:
        level: Log level (defaults to settings.LOG_LEVEL)
        log_file: Rotating log file path (defaults to settings.LOG_FILE)
    """
    level = (level or settings.LOG_LEVEL).upper()
    log_file = log_file or settings.LOG_FILE

    handlers = ['console']
    config = {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'detailed': {
                'format': '[%(asctime)s] %(levelname)s [%(name)s:%(lineno)d] %(message)s',
                'datefmt': '%Y-%m-%d %H:%M:%S'
            },
            'simple': {
                'format': '%(levelname)s %(message)s'
            }
        },
        'handlers': {
            'console': {
                'level': level,
                'class': 'logging.StreamHandler',
                'formatter': 'detailed' if settings.DEBUG else 'simple',
                'stream': sys.stderr
            }
        },
        'loggers': {
            'kiss_matcher': {
                'level': level,
                'handlers': handlers,
                'propagate': False
            },
            'performance': {
                'level': 'DEBUG' if settings.DEBUG else 'WARNING',
                'handlers': handlers,
                'propagate': False
            }
        }
    }

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        config['handlers']['file'] = {
            'level': 'INFO',
            'class': 'logging.handlers.RotatingFileHandler',
            'formatter': 'detailed',
            'filename': str(log_file),
            'maxBytes': 10 * 1024 * 1024,  # 10MB
            'backupCount': 5,
            'encoding': 'utf-8'
        }
        handlers.append('file')

    # Apply configuration
    logging.config.dictConfig(config)

    logger = logging.getLogger(__name__)
    logger.debug(f"KISS-Matcher logging initialized - Level: {level}, Environment: {settings.ENVIRONMENT}")


class PerformanceLogger:
    """Performance monitoring logger"""

    def __init__(self):
        self.logger = logging.getLogger('performance')

    def log_registration(self, success: bool, processing_time: float,
                         num_correspondences: int = None, num_inliers: int = None,
                         solver: str = None, error: str = None):
        """Log registration performance metrics"""

        metrics = {
            'operation': 'registration',
            'success': success,
            'processing_time': processing_time,
            'timestamp': datetime.now(timezone.utc).isoformat()
        }

        if num_correspondences is not None:
            metrics['num_correspondences'] = num_correspondences
        if num_inliers is not None:
            metrics['num_inliers'] = num_inliers
        if solver is not None:
            metrics['solver'] = solver
        if error is not None:
            metrics['error'] = error

        if success:
            self.logger.info(f"Registration success: {metrics}")
        else:
            self.logger.warning(f"Registration failed: {metrics}")


# Global performance logger instance
performance_logger = PerformanceLogger()
