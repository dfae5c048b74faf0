"""Retry decorator for flaky outbound calls."""
import asyncio
import functools
from typing import List, Optional, Type

from webgate_mcp_server.utils.logging import get_logger

logger = get_logger("webgate_mcp_server.utils.retry")


def with_retry(
    max_retries: int = 3,
    retry_delay: float = 1.0,
    backoff_factor: float = 2.0,
    retry_exceptions: Optional[List[Type[Exception]]] = None,
):
    """Decorator to add retry logic to an async function.

    Args:
        max_retries: Maximum number of retry attempts
        retry_delay: Initial delay between retries in seconds
        backoff_factor: Factor to increase delay by on each retry
        retry_exceptions: Exception types to retry on (defaults to all)

    Returns:
        Decorated function
    """
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            delay = retry_delay
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if retry_exceptions and not isinstance(e, tuple(retry_exceptions)):
                        raise
                    if attempt >= max_retries:
                        logger.error(
                            f"Call failed after {max_retries} retries: {e}",
                            emoji_key="error",
                            call=func.__qualname__,
                        )
                        raise
                    logger.warning(
                        f"Call failed, retrying ({attempt + 1}/{max_retries}): {e}",
                        emoji_key="warning",
                        call=func.__qualname__,
                        delay=delay,
                    )
                    await asyncio.sleep(delay)
                    delay *= backoff_factor
        return wrapper
    return decorator
