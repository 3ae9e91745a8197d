import asyncio
import logging

import pytest

from phone_sim.events import EventEmitter
from phone_sim.scheduling import TimerRegistry


def test_emit_reports_whether_anyone_listened():
    emitter = EventEmitter()
    assert emitter.emit("nothing") is False

    received = []
    emitter.on("ping", received.append)
    assert emitter.emit("ping", 1) is True
    assert received == [1]


def test_off_and_listener_count():
    emitter = EventEmitter()
    handler = emitter.on("ping", lambda *_: None)
    emitter.on("ping", lambda *_: None)
    assert emitter.listener_count("ping") == 2

    assert emitter.off("ping", handler) is True
    assert emitter.off("ping", handler) is False
    assert emitter.listener_count("ping") == 1

    emitter.remove_all_listeners("ping")
    assert emitter.listener_count("ping") == 0


def test_once_fires_a_single_time():
    emitter = EventEmitter()
    received = []
    emitter.once("ping", received.append)

    emitter.emit("ping", "a")
    emitter.emit("ping", "b")
    assert received == ["a"]


def test_failing_listener_does_not_stop_others(caplog):
    emitter = EventEmitter()
    received = []

    def broken(_):
        raise RuntimeError("listener bug")

    emitter.on("ping", broken)
    emitter.on("ping", received.append)

    with caplog.at_level(logging.ERROR, logger="phone_sim.events"):
        assert emitter.emit("ping", 1)
    assert received == [1]
    assert "Listener for 'ping' raised" in caplog.text


@pytest.mark.asyncio
async def test_async_listeners_are_scheduled():
    emitter = EventEmitter()
    done = asyncio.Event()

    async def handler(value):
        await asyncio.sleep(0)
        if value == "go":
            done.set()

    emitter.on("ping", handler)
    emitter.emit("ping", "go")
    await asyncio.wait_for(done.wait(), timeout=1)


@pytest.mark.asyncio
async def test_timer_fires_with_arguments():
    timers = TimerRegistry("test")
    fired = asyncio.Event()
    received = []

    def callback(a, b):
        received.append((a, b))
        fired.set()

    timers.schedule("job", 0.01, callback, 1, 2)
    assert "job" in timers and timers.get_job("job")["function"] == "callback"

    await asyncio.wait_for(fired.wait(), timeout=1)
    assert received == [(1, 2)]
    assert "job" not in timers and len(timers) == 0


@pytest.mark.asyncio
async def test_rescheduling_replaces_the_job():
    timers = TimerRegistry("test")
    calls = []
    timers.schedule("job", 0.01, calls.append, "first")
    timers.schedule("job", 0.02, calls.append, "second")

    await asyncio.sleep(0.06)
    assert calls == ["second"]


@pytest.mark.asyncio
async def test_cancel_and_cancel_all():
    timers = TimerRegistry("test")
    calls = []
    for name in ("a", "b", "c"):
        timers.schedule(name, 0.01, calls.append, name)

    assert timers.cancel("a") is True
    assert timers.cancel("a") is False
    assert timers.cancel_all() == 2

    await asyncio.sleep(0.03)
    assert calls == []
    assert len(timers) == 0


@pytest.mark.asyncio
async def test_callback_may_reschedule_itself():
    timers = TimerRegistry("test")
    ticks = []

    def tick():
        ticks.append(len(ticks))
        if len(ticks) < 3:
            timers.schedule("tick", 0.005, tick)

    timers.schedule("tick", 0.005, tick)
    await asyncio.sleep(0.1)
    assert ticks == [0, 1, 2]
    assert "tick" not in timers


@pytest.mark.asyncio
async def test_failing_job_is_logged(caplog):
    timers = TimerRegistry("test")

    async def boom():
        raise RuntimeError("job failed")

    with caplog.at_level(logging.ERROR, logger="phone_sim.scheduling"):
        timers.schedule("boom", 0, boom)
        await asyncio.sleep(0.02)
    assert "test job boom failed" in caplog.text
