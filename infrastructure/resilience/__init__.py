"""
Resilience infrastructure - handles retry logic for transient store failures.
"""

from .retry_service import (
    RetryService,
    exponential_backoff_delay
)

__all__ = [
    'RetryService',
    'exponential_backoff_delay'
]
