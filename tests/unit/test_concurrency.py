import asyncio

import pytest

from coursepilot.core.concurrency import (
    ConcurrencyGate,
    Fulfilled,
    Rejected,
    fulfilled_values,
    rejected_reasons,
    run_bounded,
)


@pytest.mark.asyncio
async def test_run_bounded_never_exceeds_limit_and_keeps_order():
    in_flight = 0
    peak = 0

    async def worker(item: int) -> int:
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        # Later items finish first to shake up completion order
        await asyncio.sleep(0.001 * (10 - item))
        in_flight -= 1
        return item * 2

    outcomes = await run_bounded(range(10), worker, limit=3)

    assert peak <= 3
    assert [outcome.value for outcome in outcomes] == [i * 2 for i in range(10)]


@pytest.mark.asyncio
async def test_failures_become_rejected_in_place():
    async def worker(item: int) -> int:
        if item % 2:
            raise ValueError(f"bad {item}")
        return item

    outcomes = await run_bounded([0, 1, 2, 3], worker, limit=2)

    assert [type(o) for o in outcomes] == [Fulfilled, Rejected, Fulfilled, Rejected]
    assert fulfilled_values(outcomes) == [0, 2]
    assert [str(reason) for reason in rejected_reasons(outcomes)] == ["bad 1", "bad 3"]
    assert outcomes[1].ok is False
    assert outcomes[0].ok is True


@pytest.mark.asyncio
async def test_empty_input_returns_empty_list():
    async def worker(item):
        raise AssertionError("should not be called")

    assert await run_bounded([], worker, limit=5) == []


def test_gate_rejects_non_positive_limit():
    with pytest.raises(ValueError):
        ConcurrencyGate(0)


@pytest.mark.asyncio
async def test_slot_tracks_in_flight():
    gate = ConcurrencyGate(2)

    async with gate.slot():
        assert gate.in_flight == 1
        async with gate.slot():
            assert gate.in_flight == 2

    assert gate.in_flight == 0
