"""
Monitoring infrastructure - structured logging and audit events.
"""

from .logging_service import (
    get_logger,
    log_auth_event,
    log_execution_time,
    mask_token,
    setup_logging
)

__all__ = [
    'get_logger',
    'log_auth_event',
    'log_execution_time',
    'mask_token',
    'setup_logging'
]
