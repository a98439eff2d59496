"""
Batch runner used for the per-course fan-out.

Work is split into fixed-size batches, each batch goes through a
ConcurrencyGate, and a short pause is inserted between batches to stay inside
Canvas fair-use limits.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeVar

from coursepilot.core.concurrency import ConcurrencyGate, FetchOutcome, Rejected
from coursepilot.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

I = TypeVar("I")  # noqa: E741
O = TypeVar("O")  # noqa: E741

DEFAULT_MAX_CONCURRENT = 12


@dataclass
class PerformanceMetrics:
    """
    Request counters for one Canvas session.

    Updated only by BatchOrchestrator after a batch completes. Lives as long as
    the session and is reset on logout.
    """

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    window_start: float = field(default_factory=time.time)

    def record_outcomes(self, outcomes: Sequence[FetchOutcome[Any]]) -> None:
        self.total_requests += len(outcomes)
        succeeded = sum(1 for outcome in outcomes if outcome.ok)
        self.successful_requests += succeeded
        self.failed_requests += len(outcomes) - succeeded

    def record_failed_batch(self, size: int) -> None:
        self.total_requests += size
        self.failed_requests += size

    def reset(self) -> None:
        self.total_requests = 0
        self.successful_requests = 0
        self.failed_requests = 0
        self.window_start = time.time()

    def snapshot(self) -> dict[str, Any]:
        """
        Serializable view of the counters.

        requests_per_second is total requests over uptime since the last reset.
        It is not windowed, so treat it as a coarse gauge only.
        """
        uptime_seconds = max(time.time() - self.window_start, 1e-6)
        success_rate = (
            round(self.successful_requests / self.total_requests * 100, 2)
            if self.total_requests > 0
            else 0.0
        )
        return {
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "uptime_ms": round(uptime_seconds * 1000, 1),
            "requests_per_second": round(self.total_requests / uptime_seconds, 3),
            "success_rate_percent": success_rate,
        }


class BatchOrchestrator:
    """
    Runs work in contiguous batches with bounded concurrency and pacing.

    Never raises for worker failures: the returned list always has one outcome
    per input item.
    """

    def __init__(
        self,
        metrics: PerformanceMetrics,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.metrics = metrics
        self.max_concurrent = max_concurrent
        self._sleep = sleep

    async def run_batches(
        self,
        items: Sequence[I],
        worker: Callable[[I], Awaitable[O]],
        batch_size: int,
        inter_batch_delay: float = 0.0,
    ) -> list[FetchOutcome[O]]:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")

        items = list(items)
        batches = [items[i : i + batch_size] for i in range(0, len(items), batch_size)]
        results: list[FetchOutcome[O]] = []

        for batch_number, batch in enumerate(batches, 1):
            batch_start = time.perf_counter()
            try:
                gate = ConcurrencyGate(self.max_concurrent)
                outcomes = await gate.run(batch, worker)
                self.metrics.record_outcomes(outcomes)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "Batch processing error",
                    batch_number=batch_number,
                    batch_size=len(batch),
                    error=str(e),
                )
                outcomes = [Rejected(e) for _ in batch]
                self.metrics.record_failed_batch(len(batch))

            results.extend(outcomes)

            logger.debug(
                "Batch processed",
                batch_number=batch_number,
                total_batches=len(batches),
                batch_size=len(batch),
                succeeded=sum(1 for outcome in outcomes if outcome.ok),
                duration_ms=round((time.perf_counter() - batch_start) * 1000, 2),
            )

            # Pause between batches to avoid overwhelming Canvas
            if batch_number < len(batches) and inter_batch_delay > 0:
                await self._sleep(inter_batch_delay)

        return results
