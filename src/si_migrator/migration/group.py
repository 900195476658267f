"""Concurrent fan-out with first-error propagation."""

import asyncio
from typing import Awaitable, Iterable, Optional

from loguru import logger


async def gather_group(
    coroutines: Iterable[Awaitable], semaphore: Optional[asyncio.Semaphore] = None
) -> None:
    """Run coroutines concurrently and wait for all of them.

    Siblings keep running when one fails. Once all are done the first
    error is raised; any further errors are logged.

    Args:
        coroutines: Work to run
        semaphore: Optional bound on how many run at once
    """

    async def run(coroutine: Awaitable):
        if semaphore is None:
            return await coroutine
        async with semaphore:
            return await coroutine

    results = await asyncio.gather(*(run(c) for c in coroutines), return_exceptions=True)
    errors = [r for r in results if isinstance(r, BaseException)]
    if not errors:
        return

    for extra in errors[1:]:
        logger.error(f'Additional task failure: {extra}')
    raise errors[0]
