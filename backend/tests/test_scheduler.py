"""
Tests for the fixed-cadence detector scheduler.
"""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from detector.news import ChangeDetector
from scheduler.service import DetectorScheduler, log_cycle_result
from shared.config import Settings
from shared.models.domain import CycleResult


@pytest.fixture
def detector() -> MagicMock:
    mock = MagicMock(spec=ChangeDetector)
    mock.run_cycle = AsyncMock(return_value=CycleResult(changes_detected=2))
    return mock


@pytest.mark.parametrize(
    "result",
    [
        CycleResult(error="boom"),
        CycleResult(is_initial_run=True),
        CycleResult(skipped=True),
        CycleResult(changes_detected=3),
    ],
)
def test_log_cycle_result_handles_every_outcome(result: CycleResult) -> None:
    log_cycle_result(result)


@pytest.mark.asyncio
async def test_runs_immediately_and_stops_on_shutdown(detector: MagicMock) -> None:
    scheduler = DetectorScheduler(detector, Settings(detector_interval_s=3600))

    task = asyncio.create_task(scheduler.run())
    await asyncio.sleep(0.01)
    scheduler.request_shutdown()
    await asyncio.wait_for(task, timeout=1)

    detector.run_cycle.assert_awaited_once()


@pytest.mark.asyncio
async def test_repeats_on_interval(detector: MagicMock) -> None:
    scheduler = DetectorScheduler(detector, Settings(detector_interval_s=0.01))

    task = asyncio.create_task(scheduler.run())
    await asyncio.sleep(0.1)
    scheduler.request_shutdown()
    await asyncio.wait_for(task, timeout=1)

    assert detector.run_cycle.await_count >= 2


@pytest.mark.asyncio
async def test_failed_cycle_does_not_stop_the_loop(detector: MagicMock) -> None:
    detector.run_cycle.side_effect = [
        CycleResult(error="upstream down"),
        CycleResult(changes_detected=1),
        CycleResult(changes_detected=0),
    ] + [CycleResult()] * 50
    scheduler = DetectorScheduler(detector, Settings(detector_interval_s=0.01))

    task = asyncio.create_task(scheduler.run())
    await asyncio.sleep(0.1)
    scheduler.request_shutdown()
    await asyncio.wait_for(task, timeout=1)

    assert detector.run_cycle.await_count >= 2
