import asyncio
from typing import Any


async def safe_gather(*coros, return_exceptions: bool = False) -> Any:
    """
    Gathers coroutines, cancelling the ones still pending when one of them fails.
    """
    tasks = [asyncio.ensure_future(coro) for coro in coros]
    try:
        return await asyncio.gather(*tasks, return_exceptions=return_exceptions)
    except Exception:
        for task in tasks:
            if not task.done():
                task.cancel()
        raise
