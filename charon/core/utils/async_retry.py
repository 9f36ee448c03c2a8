import asyncio
import functools
import logging
from typing import Dict, List, Optional, Type

from charon.exceptions import LedgerOperationError


class AllTriesFailedException(LedgerOperationError):
    pass


def async_retry(retry_count: int = 2,
                exception_types: Optional[List[Type[Exception]]] = None,
                logger: Optional[logging.Logger] = None,
                stats: Optional[Dict[str, int]] = None,
                retry_interval: float = 0.5
                ):
    """
    :param retry_count: Number of attempts
    :param exception_types: Exception types triggering a retry, anything else propagates immediately
    :param logger: logger receiving one line per failed attempt
    :param stats: optional dict collecting retry counters
    :param retry_interval: interval between attempts in seconds
    :return: the decorated coroutine function, raising AllTriesFailedException once all attempts failed
    """
    exception_types = exception_types or [Exception]
    logger = logger or logging.getLogger("retry")

    def decorator(fn):
        @functools.wraps(fn)
        async def retry(*args, _stats=stats, **kwargs):
            last_exception: Optional[Exception] = None
            for count in range(1, retry_count + 1):
                try:
                    return await fn(*args, **kwargs)
                except tuple(exception_types) as exc:
                    last_exception = exc
                    logger.info(f"Exception raised for {last_exception!r}: {fn.__name__}. "
                                f"Retrying {count}/{retry_count} times.")
                    if _stats is not None:
                        metric_name: str = f"retry.{fn.__name__}.count"
                        _stats[metric_name] = _stats.get(metric_name, 0) + 1
                if count < retry_count:
                    await asyncio.sleep(retry_interval)
            raise AllTriesFailedException(
                f"{fn.__name__} failed after {retry_count} attempts.") from last_exception
        return retry

    return decorator
