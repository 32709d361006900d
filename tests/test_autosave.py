"""Tests for the autosave loop."""

from __future__ import annotations

import asyncio

import pytest

from meetscribe.services.transcript import AutosaveLoop


def test_tick_skips_when_nothing_to_save() -> None:
    saves: list[int] = []

    async def save() -> None:
        saves.append(1)

    loop = AutosaveLoop(interval=1, should_save=lambda: False, save=save)

    assert asyncio.run(loop.tick()) is False
    assert saves == []


def test_tick_never_overlaps_a_save_in_flight() -> None:
    started = 0
    concurrent = 0
    max_concurrent = 0

    async def slow_save() -> None:
        nonlocal started, concurrent, max_concurrent
        started += 1
        concurrent += 1
        max_concurrent = max(max_concurrent, concurrent)
        await asyncio.sleep(0.05)
        concurrent -= 1

    loop = AutosaveLoop(interval=1, should_save=lambda: True, save=slow_save)

    async def scenario() -> list[bool]:
        return await asyncio.gather(loop.tick(), loop.tick(), loop.tick())

    results = asyncio.run(scenario())

    assert results.count(True) == 1
    assert started == 1
    assert max_concurrent == 1
    assert not loop.save_in_flight


def test_failed_save_reports_error_and_clears_flag() -> None:
    errors: list[Exception] = []

    async def failing_save() -> None:
        raise OSError("disk full")

    loop = AutosaveLoop(
        interval=1, should_save=lambda: True, save=failing_save, on_error=errors.append
    )

    assert asyncio.run(loop.tick()) is True
    assert len(errors) == 1
    assert isinstance(errors[0], OSError)
    assert not loop.save_in_flight


def test_timer_saves_periodically_and_stop_awaits_in_flight_save() -> None:
    completed: list[int] = []

    async def save() -> None:
        await asyncio.sleep(0.03)
        completed.append(1)

    loop = AutosaveLoop(interval=0.01, should_save=lambda: True, save=save)

    async def scenario() -> None:
        loop.start()
        assert loop.running
        await asyncio.sleep(0.05)
        await loop.stop()

    asyncio.run(scenario())

    assert completed
    assert not loop.running
    assert not loop.save_in_flight


def test_interval_must_be_positive() -> None:
    async def save() -> None:
        return None

    with pytest.raises(ValueError):
        AutosaveLoop(interval=0, should_save=lambda: True, save=save)
