"""
Bounded-parallelism primitive shared by the Canvas client and the batch runner.

Every unit of work is reported as a FetchOutcome so callers always get exactly
one result per input, in input order, no matter how individual workers behave.
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import ClassVar, Generic, TypeVar, Union

I = TypeVar("I")  # noqa: E741
O = TypeVar("O")  # noqa: E741
T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Fulfilled(Generic[T]):
    """Worker finished and produced a value."""

    value: T
    ok: ClassVar[bool] = True


@dataclass(frozen=True, slots=True)
class Rejected:
    """Worker raised; the exception is kept for logging and metrics."""

    reason: BaseException
    ok: ClassVar[bool] = False


FetchOutcome = Union[Fulfilled[T], Rejected]


class ConcurrencyGate:
    """
    Admits at most `limit` coroutines at a time.

    Waiters are released in the order they arrived, so work submitted through
    the gate starts in submission order once a slot frees up.
    """

    def __init__(self, limit: int):
        if limit < 1:
            raise ValueError(f"Concurrency limit must be >= 1, got {limit}")
        self.limit = limit
        self._semaphore = asyncio.Semaphore(limit)
        self._in_flight = 0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Hold one slot for the duration of the block."""
        async with self._semaphore:
            self._in_flight += 1
            try:
                yield
            finally:
                self._in_flight -= 1

    async def run(
        self, items: Iterable[I], worker: Callable[[I], Awaitable[O]]
    ) -> list[FetchOutcome[O]]:
        """
        Run `worker` over `items` without exceeding the gate limit.

        Returns one outcome per item; outcomes[i] always belongs to items[i].
        """
        items = list(items)
        if not items:
            return []

        outcomes: list[FetchOutcome[O] | None] = [None] * len(items)

        async def _run_slot(index: int, item: I) -> None:
            async with self.slot():
                try:
                    value = await worker(item)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    outcomes[index] = Rejected(e)
                else:
                    outcomes[index] = Fulfilled(value)

        await asyncio.gather(*(_run_slot(i, item) for i, item in enumerate(items)))
        return outcomes  # type: ignore[return-value]


async def run_bounded(
    items: Iterable[I], worker: Callable[[I], Awaitable[O]], limit: int
) -> list[FetchOutcome[O]]:
    """Run `worker` over `items` with at most `limit` invocations in flight."""
    return await ConcurrencyGate(limit).run(items, worker)


def fulfilled_values(outcomes: Iterable[FetchOutcome[O]]) -> list[O]:
    """Values of the fulfilled outcomes, in order."""
    return [outcome.value for outcome in outcomes if isinstance(outcome, Fulfilled)]


def rejected_reasons(outcomes: Iterable[FetchOutcome[O]]) -> list[BaseException]:
    return [outcome.reason for outcome in outcomes if isinstance(outcome, Rejected)]
