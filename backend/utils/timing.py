import logging
import time
from functools import wraps

logger = logging.getLogger('timing')


def log_timing(operation: str, slow_ms: float = 1000, log: logging.Logger = None):
    """Decorator to log operation timing."""
    log = log or logger

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
                elapsed = (time.perf_counter() - start) * 1000
                log.info(f"{operation} completed in {elapsed:.1f}ms")
                if elapsed > slow_ms:
                    log.warning(f"SLOW OPERATION: {operation} took {elapsed:.1f}ms")
                return result
            except Exception as e:
                elapsed = (time.perf_counter() - start) * 1000
                log.error(f"{operation} failed after {elapsed:.1f}ms: {e}")
                raise
        return wrapper
    return decorator
