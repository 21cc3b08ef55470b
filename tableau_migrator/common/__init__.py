"""
Shared utilities for Tableau Migrator.

Re-exports the logging helpers from log_utils and the small string and
configuration helpers used across the services.
"""

from .log_utils import (
    configure_logging, log_info, log_debug, log_warning, log_error, log_fatal,
    log_file_operation, log_file_saved, log_file_downloaded,
    should_log_output_files, ENV_LOG_LEVEL, ENV_LOG_OUTPUT_FILES
)
from .helpers import (
    load_config, get_valid_file_name, equals_ignore_case, append_uri, split_identity
)

__all__ = [
    'configure_logging', 'log_info', 'log_debug', 'log_warning', 'log_error', 'log_fatal',
    'log_file_operation', 'log_file_saved', 'log_file_downloaded',
    'should_log_output_files', 'ENV_LOG_LEVEL', 'ENV_LOG_OUTPUT_FILES',
    'load_config', 'get_valid_file_name', 'equals_ignore_case', 'append_uri', 'split_identity'
]
