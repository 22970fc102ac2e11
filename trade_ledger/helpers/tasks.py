from __future__ import annotations

import asyncio
from typing import Any, Awaitable, List


async def gather_or_cancel(*aws: Awaitable[Any]) -> List[Any]:
    """Run *aws* concurrently and return their results in order.

    If any of them fails (or this call is cancelled) the others are
    cancelled and awaited before the first error is re-raised, so no request
    outlives the call that issued it.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
