# backend/src/wikigen/generation/heartbeat.py
"""Keep-alive multiplexing for slow asynchronous work.

Both helpers race outstanding work against a timer. Each time the timer wins
a ``Ping`` is yielded and the timer restarts; each time work finishes its
result is yielded as ``Resolved``. A failure propagates out of the iterator.
Closing the iterator early cancels whatever is still running.

Example:
    async with aclosing(await_with_heartbeat(planner.plan(...), 2.0)) as events:
        async for event in events:
            if isinstance(event, Ping):
                yield PingEvent()
            else:
                plan = event.value
"""

import asyncio
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Generic, Hashable, Mapping, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Ping:
    """Emitted when the interval elapses with work still outstanding."""

    message: str | None = None


@dataclass(frozen=True)
class Resolved(Generic[T]):
    """Emitted once per finished awaitable.

    Attributes:
        value: The awaitable's result.
        key: The key it was submitted under (as_completed_with_heartbeat only).
    """

    value: T
    key: Any = None


def _release(tasks: list[asyncio.Future]) -> None:
    """Cancel unfinished tasks and mark finished failures as retrieved."""
    for task in tasks:
        if not task.done():
            task.cancel()
        elif not task.cancelled():
            task.exception()


async def await_with_heartbeat(
    awaitable: Awaitable[T],
    interval: float,
    message: str | None = None,
) -> AsyncIterator[Ping | Resolved[T]]:
    """Yield pings every interval seconds until awaitable finishes.

    Args:
        awaitable: The slow operation.
        interval: Seconds between pings.
        message: Optional text echoed on every ping.

    Yields:
        Ping while waiting, then exactly one Resolved carrying the result.

    Raises:
        Exception: Whatever the awaitable raised; nothing is yielded after it.
    """
    task = asyncio.ensure_future(awaitable)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=interval)
            if done:
                value = task.result()
                break
            yield Ping(message)
        yield Resolved(value)
    finally:
        _release([task])


async def as_completed_with_heartbeat(
    awaitables: Mapping[Hashable, Awaitable[T]],
    interval: float,
    message: str | None = None,
) -> AsyncIterator[Ping | Resolved[T]]:
    """Run awaitables concurrently, yielding each result as it lands.

    Results that land in the same wakeup are yielded in submission order.
    The first failure cancels everything still running and propagates.

    Args:
        awaitables: Work to run, keyed by an identifier echoed on Resolved.
        interval: Seconds between pings while nothing finishes.
        message: Optional text echoed on every ping.

    Yields:
        Ping while waiting, one Resolved per awaitable.
    """
    keyed = [(key, asyncio.ensure_future(aw)) for key, aw in awaitables.items()]
    order = {task: index for index, (_, task) in enumerate(keyed)}
    keys = {task: key for key, task in keyed}
    pending: set[asyncio.Future] = set(order)
    try:
        while pending:
            done, pending = await asyncio.wait(
                pending, timeout=interval, return_when=asyncio.FIRST_COMPLETED
            )
            if not done:
                yield Ping(message)
                continue
            for task in sorted(done, key=order.__getitem__):
                yield Resolved(task.result(), key=keys[task])
    finally:
        _release(list(order))
