"""Tests for local candidate gathering."""

import asyncio
import threading

import pytest

from gistlink.errors import GatherTimeoutError
from gistlink.rtc.gatherer import CandidateGatherer


async def test_gather_returns_candidates_in_order_and_clears_queue() -> None:
    gatherer = CandidateGatherer(interval=0.01)
    for n in range(3):
        gatherer.push({"candidate": f"c{n}"})
    gatherer.end()

    candidates = await gatherer.gather(timeout=1)

    assert [c["candidate"] for c in candidates] == ["c0", "c1", "c2"]
    assert len(gatherer) == 0


async def test_gather_waits_for_late_end_marker() -> None:
    gatherer = CandidateGatherer(interval=0.01)
    gatherer.push({"candidate": "early"})

    async def finish_later() -> None:
        await asyncio.sleep(0.05)
        gatherer.push({"candidate": "late"})
        gatherer.end()

    task = asyncio.ensure_future(finish_later())
    candidates = await gatherer.gather(timeout=1)
    await task

    assert [c["candidate"] for c in candidates] == ["early", "late"]


async def test_gather_times_out_without_end_marker() -> None:
    gatherer = CandidateGatherer(interval=0.01)
    gatherer.push({"candidate": "c0"})

    with pytest.raises(GatherTimeoutError):
        await gatherer.gather(timeout=0.05)

    # nothing was handed out, the partial round is still pending
    assert len(gatherer) == 1


async def test_gather_timeout_is_a_timeout_error() -> None:
    with pytest.raises(TimeoutError):
        await CandidateGatherer(interval=0.01).gather(timeout=0.02)


async def test_gather_accepts_pushes_from_other_threads() -> None:
    gatherer = CandidateGatherer(interval=0.01)

    def produce() -> None:
        for n in range(50):
            gatherer.push({"candidate": f"c{n}"})
        gatherer.end()

    thread = threading.Thread(target=produce)
    thread.start()
    candidates = await gatherer.gather(timeout=2)
    thread.join()

    assert [c["candidate"] for c in candidates] == [f"c{n}" for n in range(50)]


async def test_reset_drops_pending_round() -> None:
    gatherer = CandidateGatherer(interval=0.01)
    gatherer.push({"candidate": "stale"})
    gatherer.end()

    gatherer.reset()

    assert len(gatherer) == 0
    with pytest.raises(GatherTimeoutError):
        await gatherer.gather(timeout=0.03)
