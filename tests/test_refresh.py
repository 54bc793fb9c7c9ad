from __future__ import annotations

import asyncio

import pytest

from core.render.refresh import RefreshScheduler


@pytest.mark.anyio
async def test_burst_of_requests_runs_callback_once() -> None:
    calls: list[int] = []
    scheduler = RefreshScheduler(lambda: calls.append(1), delay_ms=10)

    for _ in range(5):
        scheduler.schedule()
    await asyncio.sleep(0.1)

    assert calls == [1]
    assert scheduler.run_count == 1
    assert scheduler.pending is False


@pytest.mark.anyio
async def test_requests_after_window_start_a_new_run() -> None:
    calls: list[int] = []
    scheduler = RefreshScheduler(lambda: calls.append(1), delay_ms=5)

    scheduler.schedule()
    await asyncio.sleep(0.05)
    scheduler.schedule()
    await asyncio.sleep(0.05)

    assert len(calls) == 2


@pytest.mark.anyio
async def test_flush_runs_pending_refresh_immediately() -> None:
    calls: list[str] = []

    async def refresh() -> None:
        calls.append("refresh")

    scheduler = RefreshScheduler(refresh, delay_ms=60_000)
    scheduler.schedule()
    scheduler.schedule()

    await scheduler.flush()

    assert calls == ["refresh"]
    assert scheduler.pending is False


@pytest.mark.anyio
async def test_flush_without_pending_refresh_is_noop() -> None:
    calls: list[int] = []
    scheduler = RefreshScheduler(lambda: calls.append(1))

    await scheduler.flush()

    assert calls == []
    assert scheduler.run_count == 0


@pytest.mark.anyio
async def test_request_during_running_refresh_triggers_follow_up() -> None:
    state = {"value": 0}
    rendered: list[int] = []

    async def refresh() -> None:
        snapshot = state["value"]
        await asyncio.sleep(0.05)
        rendered.append(snapshot)

    scheduler = RefreshScheduler(refresh, delay_ms=5)
    scheduler.schedule()
    await asyncio.sleep(0.02)
    state["value"] = 1
    scheduler.schedule()
    await asyncio.sleep(0.2)

    assert rendered == [0, 1]
    assert scheduler.pending is False


@pytest.mark.anyio
async def test_flush_waits_for_follow_up_refresh() -> None:
    state = {"value": 0}
    rendered: list[int] = []

    async def refresh() -> None:
        snapshot = state["value"]
        await asyncio.sleep(0.02)
        rendered.append(snapshot)

    scheduler = RefreshScheduler(refresh, delay_ms=0)
    scheduler.schedule()
    await asyncio.sleep(0.005)
    state["value"] = 1
    scheduler.schedule()

    await scheduler.flush()

    assert rendered == [0, 1]
    assert scheduler.pending is False
