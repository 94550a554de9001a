"""Chunked concurrent execution with fixed pauses between rounds."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence, TypeVar

logger = logging.getLogger(__name__)

ItemT = TypeVar("ItemT")

Sleep = Callable[[float], Awaitable[None]]
ItemWork = Callable[[ItemT, int], Awaitable[bool]]


@dataclass(slots=True)
class BatchOutcome:
    """Success and failure counts for one batch run."""

    succeeded: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.succeeded + self.failed


async def run_batches(
    items: Sequence[ItemT],
    concurrency: int,
    inter_round_delay: float,
    work: ItemWork[ItemT],
    *,
    describe: Callable[[ItemT], str] = str,
    sleep: Sleep = asyncio.sleep,
) -> BatchOutcome:
    """Run ``work(item, index)`` over ``items`` in rounds of ``concurrency``.

    Each round runs concurrently and fully settles before the next one starts,
    with ``inter_round_delay`` seconds between rounds (none after the last).
    ``work`` returns ``True`` on success and ``False`` for an expected miss; an
    exception counts as a failure and is logged, never propagated.
    """

    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")

    outcome = BatchOutcome()
    for start in range(0, len(items), concurrency):
        chunk = items[start : start + concurrency]
        results = await asyncio.gather(
            *(work(item, start + offset) for offset, item in enumerate(chunk)),
            return_exceptions=True,
        )
        for item, result in zip(chunk, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.warning("Batch item %s failed: %s", describe(item), result)
                outcome.failed += 1
            elif result is False:
                outcome.failed += 1
            else:
                outcome.succeeded += 1
        if start + concurrency < len(items):
            await sleep(inter_round_delay)
    return outcome
