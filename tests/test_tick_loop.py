import logging

import pytest

from voxorch.tick_loop import TickLoop


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_systems_run_each_tick():
    counter = []
    loop = TickLoop()
    loop.add_system("counter", lambda: counter.append(1))
    loop.tick()
    loop.tick()
    loop.tick()
    assert len(counter) == 3
    assert loop.tick_count() == 3


def test_multiple_systems_run_in_order():
    log = []
    loop = TickLoop()
    loop.add_system("first", lambda: log.append("first"))
    loop.add_system("second", lambda: log.append("second"))
    loop.tick()
    assert log == ["first", "second"]


def test_p99_tracks_history():
    loop = TickLoop()
    loop.add_system("noop", lambda: None)
    for _ in range(10):
        loop.tick()
    assert loop.p99_tick_ms() >= 0.0


def test_p99_empty_history_is_zero():
    assert TickLoop().p99_tick_ms() == 0.0


def test_interval_is_twenty_hz():
    assert TickLoop().interval() == pytest.approx(0.05)


def test_last_tick_and_p99_with_fake_clock():
    clock = FakeClock()
    loop = TickLoop(clock)
    durations = iter([0.001 * n for n in range(1, 11)])
    loop.add_system("work", lambda: setattr(clock, "now", clock.now + next(durations)))
    for _ in range(10):
        loop.tick()
    assert loop.last_tick_ms == pytest.approx(10.0)
    assert loop.p99_tick_ms() == pytest.approx(10.0)


def test_history_keeps_last_hundred():
    clock = FakeClock()
    loop = TickLoop(clock)
    step = {"seconds": 0.1}
    loop.add_system("work", lambda: setattr(clock, "now", clock.now + step["seconds"]))
    for _ in range(50):
        loop.tick()
    step["seconds"] = 0.001
    for _ in range(100):
        loop.tick()
    assert loop.p99_tick_ms() == pytest.approx(1.0)
    assert loop.tick_count() == 150


def test_over_budget_tick_warns(caplog):
    clock = FakeClock()
    loop = TickLoop(clock)
    loop.add_system("slow", lambda: setattr(clock, "now", clock.now + 0.2))
    with caplog.at_level(logging.WARNING, logger="voxorch.tick_loop"):
        loop.tick()
    assert any("exceeded budget" in r.getMessage() for r in caplog.records)