"""
Execution Helpers - Cooperative cancellation for batch loops.

Batch operations (captioning a folder, optimizing a list of prompts)
share a single CancellationToken across the loop. The token is checked
before each iteration, and every network call inside the loop is raced
against it so an aborted call fails fast instead of finishing after the
user pressed stop.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Iterable, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class CancellationToken:
    """
    Cooperative cancellation flag shared by a batch loop.

    Optionally linked to an ``external_cancelled`` callable so a UI
    stop button can be polled without holding a reference to the token.
    """

    def __init__(self, external_cancelled: Callable[[], bool] | None = None):
        self._external_cancelled = external_cancelled
        self._cancelled = False
        self._event: asyncio.Event | None = None

    @property
    def is_cancelled(self) -> bool:
        if not self._cancelled and self._external_cancelled and self._external_cancelled():
            self.cancel()
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True
        if self._event is not None:
            self._event.set()

    def check_cancelled(self) -> None:
        """Raise if cancelled."""
        if self.is_cancelled:
            raise asyncio.CancelledError("Operation cancelled")

    def _get_event(self) -> asyncio.Event:
        if self._event is None:
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        return self._event

    async def run(self, awaitable: Awaitable[T]) -> T:
        """
        Await ``awaitable`` unless the token is cancelled first.

        Raises:
            asyncio.CancelledError: The token was (or became) cancelled
        """
        if self.is_cancelled:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise asyncio.CancelledError("Operation cancelled")

        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._get_event().wait())
        try:
            done, _ = await asyncio.wait(
                {work, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()

        if work in done:
            return work.result()

        work.cancel()
        try:
            await work
        except asyncio.CancelledError:
            pass
        raise asyncio.CancelledError("Operation cancelled")


async def guarded(token: CancellationToken | None, awaitable: Awaitable[T]) -> T:
    """Await ``awaitable``, racing it against ``token`` when one is given."""
    if token is None:
        return await awaitable
    return await token.run(awaitable)


@dataclass
class BatchResult(Generic[R]):
    """Outcome of a batch loop; ``results`` holds committed work only."""
    results: list[R] = field(default_factory=list)
    completed: int = 0
    total: int = 0
    cancelled: bool = False
    errors: list[tuple[int, str]] = field(default_factory=list)


async def run_batch(
    items: Iterable[T],
    worker: Callable[[T, CancellationToken], Awaitable[R]],
    token: CancellationToken,
    on_progress: Callable[[int, int], None] | None = None,
    stop_on_error: bool = False,
) -> BatchResult[R]:
    """
    Run ``worker`` over ``items`` sequentially under one token.

    The token is checked before every item. Cancellation stops the loop
    but never discards results already produced. Per-item failures are
    recorded in ``errors`` and the loop continues unless ``stop_on_error``.
    """
    pending = list(items)
    batch: BatchResult[R] = BatchResult(total=len(pending))

    for index, item in enumerate(pending):
        if token.is_cancelled:
            batch.cancelled = True
            logger.info("Batch cancelled after %d/%d items", batch.completed, batch.total)
            break
        try:
            result: Any = await worker(item, token)
        except asyncio.CancelledError:
            if not token.is_cancelled:
                raise
            batch.cancelled = True
            logger.info("Batch cancelled during item %d", index)
            break
        except Exception as e:
            logger.warning("Batch item %d failed: %s", index, e)
            batch.errors.append((index, str(e)))
            if stop_on_error:
                break
            continue

        batch.results.append(result)
        batch.completed += 1
        if on_progress:
            on_progress(batch.completed, batch.total)

    return batch
