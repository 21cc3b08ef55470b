"""
Simplified logging utilities for Tableau Migrator.

This module provides a streamlined logging interface that:
1. Centralizes logging configuration and formatting
2. Provides function-based logging for the migration services
3. Filters out the audit copies of rewritten workbooks unless enabled
"""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Optional, Dict, Any

# Environment variables for logging control
ENV_LOG_LEVEL = 'TABLEAU_MIGRATOR_LOG_LEVEL'
ENV_LOG_OUTPUT_FILES = 'TABLEAU_MIGRATOR_LOG_OUTPUT_FILES'

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

_LEVELS = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warning': logging.WARNING,
    'error': logging.ERROR,
    'critical': logging.CRITICAL
}

# Configure logger
logger = logging.getLogger('tableau_migrator')


def should_log_output_files() -> bool:
    """Check if logging of staged publish copies is enabled.

    Returns:
        True unless the environment switch is set to false
    """
    return os.environ.get(ENV_LOG_OUTPUT_FILES, 'true').lower() == 'true'


def resolve_log_level(level_name: Optional[str] = None) -> int:
    """Map a level name (or the environment setting) to a logging level."""
    name = (level_name or os.environ.get(ENV_LOG_LEVEL, 'info')).lower()
    return _LEVELS.get(name, logging.INFO)


def configure_logging(run_name: Optional[str] = None,
                      level_name: Optional[str] = None,
                      logs_dir: str = 'logs') -> Optional[Path]:
    """Configure the logging system.

    Args:
        run_name: Optional name of the run; when given a log file is written
        level_name: Optional level overriding the environment variable
        logs_dir: Directory that receives the log file

    Returns:
        Path of the log file, or None when only console logging is set up
    """
    log_level = resolve_log_level(level_name)
    formatter = logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT)

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if not run_name:
        return None

    log_dir = Path(logs_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    clean_name = ''.join(c if c.isalnum() else '_' for c in run_name)
    log_file = log_dir / f'tableau_migrator_{clean_name}_{timestamp}.log'

    file_handler = logging.FileHandler(log_file, encoding='utf-8')
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    logger.info(f"Logging configured with level: {logging.getLevelName(log_level)}")
    logger.info(f"Log file: {log_file}")
    return log_file


def log_info(message: str, context: Optional[Dict[str, Any]] = None) -> None:
    """Log an informational message."""
    logger.info(message)


def log_debug(message: str, context: Optional[Dict[str, Any]] = None) -> None:
    """Log a debug message."""
    logger.debug(message)


def log_warning(message: str, context: Optional[Dict[str, Any]] = None) -> None:
    """Log a warning message."""
    logger.warning(message)


def log_error(message: str, exception: Optional[Exception] = None, context: Optional[Dict[str, Any]] = None) -> None:
    """Log an error message.

    Args:
        message: Message to log
        exception: Optional exception that caused the error
        context: Optional context dictionary
    """
    if exception:
        logger.error(f"{message}: {str(exception)}", exc_info=exception)
    else:
        logger.error(message)


def log_fatal(message: str) -> None:
    """Log a message that precedes aborting the run."""
    logger.critical(message)


def log_file_operation(file_path: str, operation_type: str, details: Optional[str] = None) -> None:
    """Log a file operation, filtering publish copies unless explicitly enabled.

    Args:
        file_path: Path to the file being operated on
        operation_type: Type of operation (e.g., 'Saved', 'Downloaded')
        details: Optional additional details about the operation
    """
    is_publish_copy = str(file_path).endswith('_publish.twb')

    if not is_publish_copy or should_log_output_files():
        message = f"{operation_type} {file_path}"
        if details:
            message += f" - {details}"

        logger.info(message)


def log_file_saved(file_path: str, details: Optional[str] = None) -> None:
    """Log a file save operation."""
    log_file_operation(file_path, "Saved", details)


def log_file_downloaded(file_path: str, details: Optional[str] = None) -> None:
    """Log a file download."""
    log_file_operation(file_path, "Downloaded", details)
