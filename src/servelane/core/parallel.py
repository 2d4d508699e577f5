"""
Fan-out/fan-in helper used for fetching, applying and deleting cluster objects.

Every action is started concurrently and all of them are awaited before the
call returns, even when one fails early: the side effects of the siblings are
not safely abortable, and callers re-read cluster state right afterwards.
"""

import asyncio
from typing import Awaitable, Callable, List, Optional

Action = Callable[[], Awaitable[object]]


async def run_all(*actions: Action) -> List[Optional[BaseException]]:
    """Run every action concurrently and return each one's error (or None) in launch order."""
    results = await asyncio.gather(
        *(action() for action in actions),
        return_exceptions=True,
    )
    return [
        result if isinstance(result, BaseException) else None
        for result in results
    ]


async def run_first_error(*actions: Action) -> None:
    """
    Run every action concurrently and raise the first error by launch order.

    All actions run to completion before anything is raised; any further
    errors are discarded.
    """
    for error in await run_all(*actions):
        if error is not None:
            raise error


__all__ = ["run_all", "run_first_error"]
