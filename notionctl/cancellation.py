"""
Cancellation helpers.

Every suspending operation (rate-limit wait, backoff sleep, pagination loop,
queue wait) takes an optional stop event. When the event fires the pending
wait is abandoned and NotionCancelled is raised.
"""

import asyncio
import contextlib
from typing import Awaitable, Optional, TypeVar

from .errors import NotionCancelled

T = TypeVar("T")


def check_cancelled(cancel: Optional[asyncio.Event], what: str = "operation") -> None:
    """Raise NotionCancelled if the stop event has already fired."""
    if cancel is not None and cancel.is_set():
        raise NotionCancelled(f"{what} cancelled")


async def wait_cancellable(
    aw: Awaitable[T], cancel: Optional[asyncio.Event], what: str = "wait"
) -> T:
    """Await `aw` unless `cancel` fires first."""
    if cancel is None:
        return await aw
    if cancel.is_set():
        # Close the coroutine so it does not warn about never being awaited.
        if asyncio.iscoroutine(aw):
            aw.close()
        raise NotionCancelled(f"{what} cancelled")

    task = asyncio.ensure_future(aw)
    stopper = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait(
            {task, stopper}, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        task.cancel()
        stopper.cancel()
        raise

    if task in done:
        stopper.cancel()
        return task.result()

    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task
    raise NotionCancelled(f"{what} cancelled")
