"""
Resilience service for retry logic around store operations.
Callers choose which exceptions are transient.
"""

import time
import random
from typing import Callable, Any, Tuple, Type, Optional

from infrastructure.monitoring.logging_service import get_logger

logger = get_logger(__name__)


def exponential_backoff_delay(attempt: int, base_delay: float = 1.0, max_delay: float = 60.0) -> float:
    """
    Calculate exponential backoff delay with jitter
    
    Args:
        attempt: Current attempt number (0-indexed)
        base_delay: Base delay in seconds
        max_delay: Maximum delay in seconds
        
    Returns:
        Delay in seconds
    """
    # Exponential backoff: base_delay * 2^attempt
    delay = base_delay * (2 ** attempt)
    
    # Cap at maximum delay
    delay = min(delay, max_delay)
    
    # Add jitter to avoid thundering herd effect
    jitter = random.uniform(0, 0.1 * delay)
    
    return delay + jitter


class RetryService:
    """
    Service for handling retry logic.
    Provides infrastructure-level fault tolerance capabilities.
    """
    
    def __init__(self, sleep: Callable[[float], None] = time.sleep):
        self.logger = get_logger(__name__)
        self._sleep = sleep
    
    def retry_with_backoff(
        self,
        func: Callable[[], Any],
        retriable: Tuple[Type[BaseException], ...],
        max_retries: int = 1,
        base_delay: float = 0.0,
        max_delay: float = 5.0,
        on_retry: Optional[Callable[[int, Exception], None]] = None
    ) -> Any:
        """
        Execute a function with retry logic and exponential backoff
        
        Args:
            func: Function to execute; called afresh on every attempt
            retriable: Exception types that trigger another attempt
            max_retries: Maximum number of retry attempts
            base_delay: Base delay between retries in seconds (0 retries immediately)
            max_delay: Maximum delay between retries in seconds
            on_retry: Optional callback for retry events (attempt_number, exception)
            
        Returns:
            Function result if successful
            
        Raises:
            The last exception if all retries are exhausted
        """
        for attempt in range(max_retries + 1):  # +1 for initial attempt
            try:
                result = func()
                
                if attempt > 0:
                    self.logger.info(f"Operation succeeded after {attempt} retries")
                
                return result
                
            except retriable as e:
                if attempt == max_retries:
                    self.logger.error(f"Operation failed after {max_retries} retries: {e.__class__.__name__}")
                    raise
                
                delay = exponential_backoff_delay(attempt, base_delay, max_delay) if base_delay > 0 else 0.0
                
                self.logger.warning(f"Attempt {attempt + 1} failed ({e.__class__.__name__}), retrying in {delay:.2f}s")
                
                if on_retry:
                    on_retry(attempt + 1, e)
                
                if delay:
                    self._sleep(delay)
