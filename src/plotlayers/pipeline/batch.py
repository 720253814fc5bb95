"""Bounded-concurrency batch runner for offline enrichment sweeps.

Items are split into `concurrency` contiguous slices. Each slice is worked
sequentially by one worker and the workers run concurrently. Retryable
failures (429, 5xx, network errors) are retried with capped exponential
backoff plus jitter; anything else, or exhausting the retries, is recorded
and the worker moves on. A fixed delay follows every attempt so upstream
rate limits hold regardless of outcome.
"""

import asyncio
import logging
import math
import random
from typing import Any, Awaitable, Callable

import httpx

from plotlayers.core.errors import RetryableTransient
from plotlayers.core.types import BatchItemOutcome, BatchReport
from plotlayers.observability.tracing import start_span

logger = logging.getLogger(__name__)

MIN_BACKOFF_SECONDS = 0.5
MAX_BACKOFF_SECONDS = 60.0
MAX_JITTER_SECONDS = 0.5


def is_retryable(exc: BaseException) -> bool:
    """429, 5xx and transport-level failures are worth another attempt."""
    if isinstance(exc, RetryableTransient):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or 500 <= status < 600
    return isinstance(exc, httpx.TransportError)


def split_slices(items: list, concurrency: int) -> list[tuple[int, list]]:
    """Contiguous (start_index, slice) pairs of size ceil(n / concurrency)."""
    if not items:
        return []
    size = math.ceil(len(items) / max(1, concurrency))
    return [(start, items[start:start + size]) for start in range(0, len(items), size)]


class BatchWorkerPool:
    def __init__(
        self,
        concurrency: int = 2,
        max_retries: int = 3,
        delay_seconds: float = 0.0,
        max_backoff_seconds: float = MAX_BACKOFF_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.concurrency = max(1, concurrency)
        self.max_retries = max(0, max_retries)
        self.delay_seconds = max(0.0, delay_seconds)
        self.max_backoff_seconds = max_backoff_seconds
        self._sleep = sleep

    def backoff(self, attempt: int) -> float:
        """Seconds to wait before retry number `attempt` (0-based)."""
        base = max(MIN_BACKOFF_SECONDS, self.delay_seconds)
        return min(self.max_backoff_seconds, base * (2 ** attempt)) + random.uniform(0, MAX_JITTER_SECONDS)

    async def _run_item(
        self,
        index: int,
        item: Any,
        work: Callable[[Any], Awaitable[Any]],
        total: int,
        label: Callable[[Any], str],
    ) -> BatchItemOutcome:
        attempts = 0
        while True:
            attempts += 1
            try:
                result = await work(item)
                logger.info("[%d/%d] Done: %s", index + 1, total, label(item))
                return BatchItemOutcome(index=index, item=item, status="succeeded", attempts=attempts, result=result)
            except Exception as e:
                retry = attempts <= self.max_retries and is_retryable(e)
                if not retry:
                    logger.error("[%d/%d] Failed %s after %d attempt(s): %s", index + 1, total, label(item), attempts, e)
                    return BatchItemOutcome(
                        index=index, item=item, status="failed", attempts=attempts,
                        error=f"{type(e).__name__}: {e}",
                    )
                wait = self.backoff(attempts - 1)
                logger.warning(
                    "[%d/%d] Retry %d/%d for %s in %.2fs: %s",
                    index + 1, total, attempts, self.max_retries, label(item), wait, e,
                )
                await self._sleep(wait)
            finally:
                if self.delay_seconds > 0:
                    await self._sleep(self.delay_seconds)

    async def _worker(
        self,
        start: int,
        chunk: list,
        work: Callable[[Any], Awaitable[Any]],
        total: int,
        label: Callable[[Any], str],
    ) -> list[BatchItemOutcome]:
        outcomes = []
        for offset, item in enumerate(chunk):
            outcomes.append(await self._run_item(start + offset, item, work, total, label))
        return outcomes

    async def run(
        self,
        items: list,
        work: Callable[[Any], Awaitable[Any]],
        label: Callable[[Any], str] = str,
    ) -> BatchReport:
        """Process every item; one item's failure never stops the others."""
        slices = split_slices(list(items), self.concurrency)
        total = sum(len(chunk) for _, chunk in slices)

        with start_span(name="batch_pool", span_type="CHAIN") as span:
            span.set_inputs({"items": total, "concurrency": self.concurrency, "max_retries": self.max_retries})

            per_worker = await asyncio.gather(
                *(self._worker(start, chunk, work, total, label) for start, chunk in slices)
            )
            outcomes = sorted((o for chunk in per_worker for o in chunk), key=lambda o: o.index)
            report = BatchReport(outcomes=outcomes)

            span.set_outputs({"succeeded": report.succeeded, "failed": report.failed})

        logger.info("Batch complete: %d succeeded, %d failed", report.succeeded, report.failed)
        return report
